"""
Firestore repositories for questions, clusters, projects and answers.

Documents are converted to schema records here; callers never see raw
dictionaries. Listings are paginated with an opaque continuation token
(the last document snapshot of the page).
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore
from google.cloud.firestore_v1 import ArrayUnion, Increment

from .config import DEFAULT_PAGE_SIZE
from .errors import ConfigurationError, UpstreamError
from .schema import Cluster, ClusterMember, Question

logger = logging.getLogger(__name__)

PROJECTS_COLLECTION = "projects"
ORGANIZATIONS_COLLECTION = "organizations"
QUESTIONS_COLLECTION = "questions"
CLUSTERS_COLLECTION = "question_clusters"
ANSWERS_COLLECTION = "answers"

PageToken = Any


def _page(collection_ref, page_size: int, page_token: PageToken):
    """Return (snapshots, next_token) for one page ordered by document ID."""
    query = collection_ref.order_by("__name__").limit(page_size)
    if page_token is not None:
        query = query.start_after(page_token)
    docs = list(query.stream())
    next_token = docs[-1] if len(docs) == page_size else None
    return docs, next_token


class FirestoreQuestionRepository:
    """
    Source of truth for questions, project lookups, org settings and answers.

    Args:
        db: Firestore client
        page_size: Documents per listing page
    """

    def __init__(self, db: firestore.Client, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.page_size = page_size

    def _project_ref(self, project_id: str):
        return self.db.collection(PROJECTS_COLLECTION).document(project_id)

    def _questions(self, project_id: str):
        return self._project_ref(project_id).collection(QUESTIONS_COLLECTION)

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the project record, or None if it does not exist."""
        try:
            doc = self._project_ref(project_id).get()
        except GoogleAPICallError as e:
            logger.error(f"Failed to fetch project {project_id}: {e}")
            raise UpstreamError(f"Project lookup failed: {e}") from e

        if not doc.exists:
            logger.warning(f"Project {project_id} not found")
            return None

        data = doc.to_dict() or {}
        data["id"] = doc.id
        return data

    def get_organization_settings(self, org_id: str) -> Dict[str, Any]:
        """
        Fetch organization settings (clusterThreshold, similarThreshold).

        Returns:
            Settings dictionary, empty if the organization has none

        Raises:
            ConfigurationError: If the lookup fails
        """
        try:
            doc = self.db.collection(ORGANIZATIONS_COLLECTION).document(org_id).get()
        except GoogleAPICallError as e:
            raise ConfigurationError(f"Failed to load settings for org {org_id}: {e}") from e

        if not doc.exists:
            return {}
        return doc.to_dict() or {}

    def list_questions_page(
        self,
        project_id: str,
        org_id: str,
        page_token: PageToken = None,
    ) -> Tuple[List[Question], PageToken]:
        """
        Load one page of project questions.

        Documents without an id or text are skipped.

        Returns:
            Tuple of (questions, next_token); next_token is None on the last page
        """
        try:
            docs, next_token = _page(self._questions(project_id), self.page_size, page_token)
        except GoogleAPICallError as e:
            logger.error(f"Failed to list questions for project {project_id}: {e}")
            raise UpstreamError(f"Question listing failed: {e}") from e

        questions = []
        for doc in docs:
            try:
                questions.append(
                    Question.from_dict(doc.to_dict() or {}, project_id, org_id, question_id=doc.id)
                )
            except ValueError as e:
                logger.warning(f"Skipping question document {doc.id}: {e}")

        return questions, next_token

    def get_question(self, project_id: str, question_id: str) -> Optional[Question]:
        """Fetch a single question, or None if it does not exist or has no text."""
        try:
            doc = self._questions(project_id).document(question_id).get()
        except GoogleAPICallError as e:
            logger.error(f"Failed to fetch question {question_id}: {e}")
            raise UpstreamError(f"Question lookup failed: {e}") from e

        if not doc.exists:
            return None

        try:
            return Question.from_dict(doc.to_dict() or {}, project_id, question_id=doc.id)
        except ValueError as e:
            logger.warning(f"Question {question_id} is unusable: {e}")
            return None

    def update_question_cluster_fields(
        self,
        project_id: str,
        question_id: str,
        fields: Dict[str, Any],
    ) -> None:
        """Write cluster annotation fields onto a question document."""
        update = dict(fields)
        update["updatedAt"] = firestore.SERVER_TIMESTAMP
        try:
            self._questions(project_id).document(question_id).update(update)
        except GoogleAPICallError as e:
            logger.error(f"Failed to update cluster fields on question {question_id}: {e}")
            raise UpstreamError(f"Question update failed: {e}") from e

    def get_answer(self, project_id: str, question_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the stored answer for a question, or None."""
        try:
            doc = (
                self._project_ref(project_id)
                .collection(ANSWERS_COLLECTION)
                .document(question_id)
                .get()
            )
        except GoogleAPICallError as e:
            logger.error(f"Failed to fetch answer for question {question_id}: {e}")
            raise UpstreamError(f"Answer lookup failed: {e}") from e

        if not doc.exists:
            return None
        return doc.to_dict() or {}


class FirestoreClusterRepository:
    """Persisted cluster records (create and append only)."""

    def __init__(self, db: firestore.Client, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.page_size = page_size

    def _clusters(self, project_id: str):
        return (
            self.db.collection(PROJECTS_COLLECTION)
            .document(project_id)
            .collection(CLUSTERS_COLLECTION)
        )

    def create_cluster(self, cluster: Cluster) -> None:
        try:
            self._clusters(cluster.project_id).document(cluster.cluster_id).set(cluster.to_dict())
        except GoogleAPICallError as e:
            logger.error(f"Failed to create cluster {cluster.cluster_id}: {e}")
            raise UpstreamError(f"Cluster create failed: {e}") from e

        logger.info(
            f"Created cluster {cluster.cluster_id}: master={cluster.master_question_id}, "
            f"{cluster.question_count} questions, avg_similarity={cluster.avg_similarity:.3f}"
        )

    def append_cluster_member(self, project_id: str, cluster_id: str, member: ClusterMember) -> None:
        """
        Append a member without rewriting the record.

        ArrayUnion + Increment are applied server-side, so concurrent appends
        to the same cluster do not lose updates.
        """
        try:
            self._clusters(project_id).document(cluster_id).update({
                "members": ArrayUnion([member.to_dict()]),
                "questionCount": Increment(1),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
        except GoogleAPICallError as e:
            logger.error(f"Failed to append member {member.question_id} to cluster {cluster_id}: {e}")
            raise UpstreamError(f"Cluster append failed: {e}") from e

    def list_clusters_page(
        self,
        project_id: str,
        page_token: PageToken = None,
    ) -> Tuple[List[Cluster], PageToken]:
        try:
            docs, next_token = _page(self._clusters(project_id), self.page_size, page_token)
        except GoogleAPICallError as e:
            logger.error(f"Failed to list clusters for project {project_id}: {e}")
            raise UpstreamError(f"Cluster listing failed: {e}") from e

        clusters = []
        for doc in docs:
            try:
                clusters.append(Cluster.from_dict(doc.to_dict() or {}, cluster_id=doc.id))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed cluster document {doc.id}: {e}")

        return clusters, next_token
