"""
Clustering configuration.

Settings are read from environment variables once per job and passed
explicitly to the services that need them.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Vector metadata type tag for question embeddings
QUESTION_EMBEDDING_TYPE = "question"

# Default thresholds (org settings may override)
DEFAULT_CLUSTER_THRESHOLD = 0.80
DEFAULT_SIMILAR_THRESHOLD = 0.50

# Similar-question lookup limits
MAX_SIMILAR_QUESTIONS = 10
MAX_SIMILAR_QUESTIONS_CAP = 50
SIMILAR_QUERY_HEADROOM = 5  # Extra neighbors fetched to survive self/stale filtering

# Upper bound on neighbors per match query (Firestore find_nearest limit)
MAX_MATCH_CANDIDATES = 1000

DEFAULT_EMBED_BATCH_SIZE = 10
DEFAULT_PAGE_SIZE = 500

# Vector metadata text is truncated to keep index documents small
MAX_METADATA_TEXT_LENGTH = 1000
ANSWER_PREVIEW_LENGTH = 150


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using default {default}")
        return default
    if value < 1:
        logger.warning(f"{name} must be positive, got {value}, using default {default}")
        return default
    return value


def _env_threshold(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid float for {name}={raw!r}, using default {default}")
        return default
    if not 0.0 <= value <= 1.0:
        logger.warning(f"{name} must be within [0, 1], got {value}, using default {default}")
        return default
    return value


@dataclass
class ClusteringSettings:
    """Runtime configuration for clustering jobs."""
    gcp_project: Optional[str] = None
    gcp_region: str = "europe-west4"
    embedding_model: str = "gemini-embedding-001"
    embedding_dimensions: int = 768
    embed_batch_size: int = DEFAULT_EMBED_BATCH_SIZE
    page_size: int = DEFAULT_PAGE_SIZE
    cluster_threshold: float = DEFAULT_CLUSTER_THRESHOLD
    similar_threshold: float = DEFAULT_SIMILAR_THRESHOLD
    max_similar_questions: int = MAX_SIMILAR_QUESTIONS


def load_settings() -> ClusteringSettings:
    """
    Build settings from environment variables.

    Environment Variables:
        GCP_PROJECT: Google Cloud project ID
        GCP_REGION: Google Cloud region (default: europe-west4)
        EMBEDDING_MODEL: Vertex AI embedding model (default: gemini-embedding-001)
        EMBEDDING_DIMENSIONS: Output dimensionality (default: 768)
        EMBED_BATCH_SIZE: Questions embedded in parallel per batch (default: 10)
        QUESTIONS_PAGE_SIZE: Firestore page size for listings (default: 500)
        CLUSTER_THRESHOLD: Fallback cluster threshold (default: 0.80)
        SIMILAR_THRESHOLD: Fallback similar-question threshold (default: 0.50)
        MAX_SIMILAR_QUESTIONS: Default similar-question limit (default: 10)
    """
    settings = ClusteringSettings(
        gcp_project=os.getenv("GCP_PROJECT"),
        gcp_region=os.getenv("GCP_REGION", "europe-west4"),
        embedding_model=os.getenv("EMBEDDING_MODEL", "gemini-embedding-001"),
        embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", 768),
        embed_batch_size=_env_int("EMBED_BATCH_SIZE", DEFAULT_EMBED_BATCH_SIZE),
        page_size=_env_int("QUESTIONS_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        cluster_threshold=_env_threshold("CLUSTER_THRESHOLD", DEFAULT_CLUSTER_THRESHOLD),
        similar_threshold=_env_threshold("SIMILAR_THRESHOLD", DEFAULT_SIMILAR_THRESHOLD),
        max_similar_questions=_env_int("MAX_SIMILAR_QUESTIONS", MAX_SIMILAR_QUESTIONS),
    )
    logger.debug(f"Loaded clustering settings: {settings}")
    return settings
