"""Error taxonomy for question clustering."""


class ClusteringError(Exception):
    """Base class for clustering failures."""


class ValidationError(ClusteringError):
    """Missing or malformed identifiers supplied by the caller. Not retried."""


class NotFoundError(ClusteringError):
    """Project, organization link or question does not exist."""


class UpstreamError(ClusteringError):
    """Embedding provider or vector index failure. Aborts the current run."""


class ConfigurationError(ClusteringError):
    """Organization settings could not be loaded. Callers fall back to defaults."""
