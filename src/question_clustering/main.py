"""
Command-line entry point for question clustering jobs.

Usage:
    python3 -m question_clustering reconcile --project-id PROJECT [--json]
    python3 -m question_clustering similar --project-id PROJECT --question-id QID [--threshold 0.6] [--limit 10]
    python3 -m question_clustering clusters --project-id PROJECT

Environment Variables:
    GCP_PROJECT: Google Cloud project ID
    GCP_REGION: Google Cloud region (default: europe-west4)
    GOOGLE_APPLICATION_CREDENTIALS: Path to service account key
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from google.cloud import firestore

from .cluster_queries import list_clusters
from .config import ClusteringSettings, load_settings
from .embeddings import VertexEmbeddingProvider
from .errors import ClusteringError
from .reconcile import ReconciliationController
from .repository import FirestoreClusterRepository, FirestoreQuestionRepository
from .similar_questions import SimilarQuestionService
from .vector_index import FirestoreVectorIndex

logger = logging.getLogger(__name__)


@dataclass
class Dependencies:
    """Explicitly constructed collaborators shared by all operations."""
    settings: ClusteringSettings
    questions: FirestoreQuestionRepository
    clusters: FirestoreClusterRepository
    embedder: VertexEmbeddingProvider
    vector_index: FirestoreVectorIndex

    def reconciliation_controller(self) -> ReconciliationController:
        return ReconciliationController(
            questions=self.questions,
            clusters=self.clusters,
            embedder=self.embedder,
            vector_index=self.vector_index,
            settings=self.settings,
        )

    def similar_question_service(self) -> SimilarQuestionService:
        return SimilarQuestionService(
            questions=self.questions,
            embedder=self.embedder,
            vector_index=self.vector_index,
            settings=self.settings,
        )


def build_dependencies(settings: Optional[ClusteringSettings] = None) -> Dependencies:
    """Create Firestore and Vertex AI backed collaborators."""
    settings = settings or load_settings()

    logger.info(f"Initializing Firestore client for project: {settings.gcp_project}")
    db = firestore.Client(project=settings.gcp_project)

    return Dependencies(
        settings=settings,
        questions=FirestoreQuestionRepository(db, page_size=settings.page_size),
        clusters=FirestoreClusterRepository(db, page_size=settings.page_size),
        embedder=VertexEmbeddingProvider(settings),
        vector_index=FirestoreVectorIndex(db),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Incremental semantic clustering of RFP questions'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the full result as JSON'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    reconcile = subparsers.add_parser('reconcile', help='Cluster new questions of a project')
    reconcile.add_argument('--project-id', required=True)

    similar = subparsers.add_parser('similar', help='Find questions similar to one question')
    similar.add_argument('--project-id', required=True)
    similar.add_argument('--question-id', required=True)
    similar.add_argument('--threshold', type=float, default=None)
    similar.add_argument('--limit', type=int, default=None)

    clusters = subparsers.add_parser('clusters', help='List persisted clusters of a project')
    clusters.add_argument('--project-id', required=True)

    return parser


def run_command(args: argparse.Namespace, deps: Dependencies) -> dict:
    """Execute the parsed command and return its result as a dictionary."""
    if args.command == 'reconcile':
        result = deps.reconciliation_controller().reconcile_clusters(args.project_id)
        logger.info(
            f"Reconciled project {args.project_id}: {result.total_count} questions, "
            f"{result.clusters_created} clusters created, "
            f"{result.questions_added_to_existing} added to existing clusters"
        )
        return result.to_dict()

    if args.command == 'similar':
        result = deps.similar_question_service().find_similar_questions(
            args.project_id,
            args.question_id,
            threshold=args.threshold,
            limit=args.limit,
        )
        for sq in result.similar_questions:
            logger.info(f"  {sq.similarity:.3f}  {sq.question_id}  {sq.text[:80]}")
        return result.to_dict()

    if args.command == 'clusters':
        clusters = list_clusters(deps.questions, deps.clusters, args.project_id)
        for cluster in clusters:
            logger.info(
                f"  {cluster.cluster_id}: {cluster.question_count} questions, "
                f"avg_similarity={cluster.avg_similarity:.3f}, master={cluster.master_text[:60]}"
            )
        return {'clusters': [c.to_dict() for c in clusters]}

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None, deps: Optional[Dependencies] = None) -> int:
    """Main entry point for the clustering CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args = build_parser().parse_args(argv)

    if deps is None:
        if not os.getenv('GCP_PROJECT'):
            logger.error("GCP_PROJECT environment variable not set")
            return 1
        if not os.getenv('GOOGLE_APPLICATION_CREDENTIALS'):
            logger.warning("GOOGLE_APPLICATION_CREDENTIALS not set, using default credentials")
        deps = build_dependencies()

    try:
        result = run_command(args, deps)
    except ClusteringError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    if args.json:
        print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == '__main__':
    sys.exit(main())
