"""
Question vector index on Firestore native vector search.

Each organization gets its own namespace (a question_vectors subcollection
under the organization document). Vector documents carry their metadata
as plain fields so FIND_NEAREST can be pre-filtered by type and project.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore
from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from .errors import UpstreamError
from .similarity import clamp_similarity

logger = logging.getLogger(__name__)

ORGANIZATIONS_COLLECTION = "organizations"
VECTORS_COLLECTION = "question_vectors"
VECTOR_FIELD = "embedding"
DISTANCE_FIELD = "vector_distance"

# Firestore batches are capped at 500 writes
MAX_BATCH_WRITES = 500


def question_vector_id(project_id: str, question_id: str) -> str:
    """Stable vector ID so re-embedding a question overwrites its vector."""
    return f"q#{project_id}#{question_id}"


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class FirestoreVectorNamespace:
    """Vector operations scoped to one organization."""

    def __init__(self, db: firestore.Client, org_id: str):
        self.db = db
        self.org_id = org_id
        self.collection = (
            db.collection(ORGANIZATIONS_COLLECTION)
            .document(org_id)
            .collection(VECTORS_COLLECTION)
        )

    def upsert(self, records: Sequence[VectorRecord]) -> int:
        """
        Write vectors with their metadata (overwrites existing IDs).

        Returns:
            Number of vectors written

        Raises:
            UpstreamError: If a batch commit fails
        """
        if not records:
            return 0

        batch = self.db.batch()
        write_count = 0
        total = 0

        try:
            for record in records:
                doc_data = dict(record.metadata)
                doc_data[VECTOR_FIELD] = Vector([float(v) for v in record.values])
                batch.set(self.collection.document(record.id), doc_data)
                write_count += 1
                total += 1

                if write_count == MAX_BATCH_WRITES:
                    batch.commit()
                    batch = self.db.batch()
                    write_count = 0

            if write_count > 0:
                batch.commit()
        except GoogleAPICallError as e:
            logger.error(f"Vector upsert failed in namespace {self.org_id}: {e}")
            raise UpstreamError(f"Vector upsert failed: {e}") from e

        logger.info(f"Upserted {total} vectors into namespace {self.org_id}")
        return total

    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """
        Nearest-neighbor search by cosine similarity.

        Args:
            vector: Query embedding
            top_k: Number of neighbors to return
            filters: Equality filters on metadata fields (e.g. type, projectId)

        Returns:
            Matches ordered by score descending (score = 1 - cosine distance)

        Raises:
            UpstreamError: If the vector query fails
        """
        # NOTE: Filters must be applied BEFORE find_nearest() in Firestore
        query = self.collection
        for field_name, value in (filters or {}).items():
            query = query.where(field_name, "==", value)

        vector_query = query.find_nearest(
            vector_field=VECTOR_FIELD,
            query_vector=Vector([float(v) for v in vector]),
            distance_measure=DistanceMeasure.COSINE,
            limit=top_k,
            distance_result_field=DISTANCE_FIELD,
        )

        try:
            docs = list(vector_query.stream())
        except GoogleAPICallError as e:
            logger.error(f"Vector query failed in namespace {self.org_id}: {e}")
            raise UpstreamError(f"Vector query failed: {e}") from e

        matches = []
        for doc in docs:
            data = doc.to_dict() or {}
            distance = data.pop(DISTANCE_FIELD, None)
            data.pop(VECTOR_FIELD, None)
            score = clamp_similarity(1.0 - float(distance)) if distance is not None else 0.0
            matches.append(VectorMatch(id=doc.id, score=score, metadata=data))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches


class FirestoreVectorIndex:
    """Entry point for per-organization vector namespaces."""

    def __init__(self, db: firestore.Client):
        self.db = db

    def namespace(self, org_id: str) -> FirestoreVectorNamespace:
        return FirestoreVectorNamespace(self.db, org_id)
