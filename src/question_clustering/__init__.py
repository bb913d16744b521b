"""
Incremental semantic clustering of RFP questions.

Groups near-duplicate questions of a project so each group is answered once:

1. Reconciliation: embed new questions, attach them to existing clusters
   or group them among themselves (ReconciliationController)
2. Similar questions: ad-hoc top-K neighbor lookup (SimilarQuestionService)
3. Browsing: list persisted clusters (list_clusters)
"""

from .cluster_queries import list_clusters
from .errors import (
    ClusteringError,
    ConfigurationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from .reconcile import ReconciliationController
from .similar_questions import SimilarQuestionService

__all__ = [
    'ReconciliationController',
    'SimilarQuestionService',
    'list_clusters',
    'ClusteringError',
    'ConfigurationError',
    'NotFoundError',
    'UpstreamError',
    'ValidationError',
]
