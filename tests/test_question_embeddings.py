"""
Unit tests for Vertex AI question embeddings (retry, error mapping, model loading).
"""

import os
import sys
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

from google.api_core.exceptions import InternalServerError, PermissionDenied, ResourceExhausted

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from question_clustering.config import ClusteringSettings
from question_clustering.embeddings import VertexEmbeddingProvider
from question_clustering.errors import UpstreamError


def _embedding(values):
    embedding = MagicMock()
    embedding.values = values
    return embedding


class TestVertexEmbeddingProvider(unittest.TestCase):
    """Test embedding generation with rate limiting and retries."""

    def setUp(self):
        self.model = MagicMock()
        self.provider = VertexEmbeddingProvider(
            ClusteringSettings(gcp_project="test-project"), model=self.model
        )

    def test_embed_success(self):
        self.model.get_embeddings.return_value = [_embedding([0.1] * 768)]

        vector = self.provider.embed("What is your data retention policy?")

        self.assertEqual(len(vector), 768)
        self.assertIsInstance(vector, list)
        self.model.get_embeddings.assert_called_once_with(
            ["What is your data retention policy?"], output_dimensionality=768
        )

    def test_custom_dimensions(self):
        provider = VertexEmbeddingProvider(
            ClusteringSettings(embedding_dimensions=256), model=self.model
        )
        self.model.get_embeddings.return_value = [_embedding([0.5] * 256)]

        provider.embed("text")

        self.model.get_embeddings.assert_called_once_with(["text"], output_dimensionality=256)

    @patch("time.sleep", return_value=None)
    def test_rate_limit_retry(self, mock_sleep):
        """Retry with backoff on 429."""
        self.model.get_embeddings.side_effect = [
            ResourceExhausted("Rate limit exceeded"),
            [_embedding([0.2] * 768)],
        ]

        vector = self.provider.embed("text")

        self.assertEqual(vector[0], 0.2)
        self.assertEqual(self.model.get_embeddings.call_count, 2)
        mock_sleep.assert_called_once_with(1)

    @patch("time.sleep", return_value=None)
    def test_server_error_exhausts_retries(self, mock_sleep):
        self.model.get_embeddings.side_effect = InternalServerError("Server error")

        with self.assertRaises(UpstreamError):
            self.provider.embed("text")

        self.assertEqual(self.model.get_embeddings.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [1, 2])

    @patch("time.sleep", return_value=None)
    def test_non_retryable_error(self, mock_sleep):
        self.model.get_embeddings.side_effect = PermissionDenied("no access")

        with self.assertRaises(UpstreamError):
            self.provider.embed("text")

        self.assertEqual(self.model.get_embeddings.call_count, 1)
        mock_sleep.assert_not_called()


class TestModelLoading(unittest.TestCase):
    """Test lazy Vertex AI model loading."""

    @patch("vertexai.preview.language_models.TextEmbeddingModel.from_pretrained")
    @patch("google.cloud.aiplatform.init")
    def test_model_loaded_once_across_threads(self, mock_init, mock_from_pretrained):
        model = MagicMock()
        model.get_embeddings.return_value = [_embedding([0.3] * 768)]

        def slow_load(name):
            time.sleep(0.05)
            return model

        mock_from_pretrained.side_effect = slow_load
        provider = VertexEmbeddingProvider(ClusteringSettings(gcp_project="test-project"))

        with ThreadPoolExecutor(max_workers=8) as executor:
            vectors = list(executor.map(provider.embed, [f"question {i}" for i in range(8)]))

        self.assertEqual(len(vectors), 8)
        mock_init.assert_called_once_with(project="test-project", location="europe-west4")
        mock_from_pretrained.assert_called_once_with("gemini-embedding-001")
        self.assertEqual(model.get_embeddings.call_count, 8)


if __name__ == '__main__':
    unittest.main()
