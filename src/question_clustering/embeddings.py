"""
Question embedding generation using Vertex AI gemini-embedding-001.

Questions and similarity queries must share one model and dimensionality,
otherwise vector index scores are meaningless.
"""

import threading
import time
import logging
from typing import List, Optional

from google.api_core.exceptions import GoogleAPICallError, InternalServerError, ResourceExhausted

from .config import ClusteringSettings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
INITIAL_BACKOFF = 1  # seconds
MAX_BACKOFF = 32  # seconds


class VertexEmbeddingProvider:
    """
    Text -> vector via Vertex AI.

    Args:
        settings: Clustering settings (project, region, model, dimensions)
        model: Optional preloaded TextEmbeddingModel (skips Vertex AI init)
    """

    def __init__(self, settings: ClusteringSettings, model=None):
        self.settings = settings
        self._model = model
        self._model_lock = threading.Lock()

    @property
    def model(self):
        # embed() runs on worker threads; load the model exactly once
        with self._model_lock:
            if self._model is None:
                from google.cloud import aiplatform
                from vertexai.preview.language_models import TextEmbeddingModel

                logger.info(
                    f"Initializing Vertex AI in project={self.settings.gcp_project}, "
                    f"region={self.settings.gcp_region}"
                )
                aiplatform.init(project=self.settings.gcp_project, location=self.settings.gcp_region)
                logger.info(f"Loading {self.settings.embedding_model} model...")
                self._model = TextEmbeddingModel.from_pretrained(self.settings.embedding_model)
                logger.info("Embedding model loaded successfully")
            return self._model

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for a single question text.

        Args:
            text: Question text to embed

        Returns:
            Embedding vector (settings.embedding_dimensions floats)

        Raises:
            UpstreamError: If embedding generation fails after retries
        """
        backoff = INITIAL_BACKOFF
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES):
            try:
                embeddings = self.model.get_embeddings(
                    [text], output_dimensionality=self.settings.embedding_dimensions
                )
                return list(embeddings[0].values)

            except (ResourceExhausted, InternalServerError) as e:
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    logger.warning(
                        f"Embedding call failed with {type(e).__name__} "
                        f"(attempt {attempt + 1}/{MAX_RETRIES}), retrying after {backoff}s"
                    )
                    time.sleep(backoff)
                    backoff = min(backoff * 2, MAX_BACKOFF)
                else:
                    logger.error(f"Embedding failed after {MAX_RETRIES} attempts: {e}")

            except GoogleAPICallError as e:
                logger.error(f"Embedding API error: {e}")
                raise UpstreamError(f"Embedding generation failed: {e}") from e

        raise UpstreamError(f"Embedding generation failed after {MAX_RETRIES} attempts: {last_error}") from last_error
