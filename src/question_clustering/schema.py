"""
Record definitions for question clustering.

Question and Cluster documents are shared with the rest of the RFP platform,
so Firestore field names stay camelCase while attributes are snake_case.
Records are validated when they cross the repository boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _validate_similarity(value: float, label: str) -> None:
    if not -1.0 <= value <= 1.0:
        raise ValueError(f"{label} must be between -1.0 and 1.0, got {value}")


@dataclass
class Question:
    """
    A question extracted from an RFP document.

    Cluster fields are unset for orphans and written only by the
    reconciliation controller.
    """

    question_id: str
    project_id: str
    org_id: str
    text: str
    section_id: Optional[str] = None
    section_title: Optional[str] = None
    cluster_id: Optional[str] = None
    is_cluster_master: Optional[bool] = None
    master_question_id: Optional[str] = None
    similarity_to_master: Optional[float] = None

    def __post_init__(self):
        if not self.question_id:
            raise ValueError("question_id is required")
        if not self.project_id:
            raise ValueError("project_id is required")

    @property
    def is_clustered(self) -> bool:
        return bool(self.cluster_id)

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        project_id: str,
        org_id: str = "",
        question_id: Optional[str] = None,
    ) -> "Question":
        """
        Build a Question from a Firestore document.

        Raises:
            ValueError: If the document has no question id or no text
        """
        qid = data.get("questionId") or question_id
        text = data.get("question")
        if not qid:
            raise ValueError("Question document has no questionId")
        if not text:
            raise ValueError(f"Question {qid} has no text")

        similarity = data.get("similarityToMaster")
        return cls(
            question_id=qid,
            project_id=data.get("projectId") or project_id,
            org_id=org_id,
            text=text,
            section_id=data.get("sectionId"),
            section_title=data.get("sectionTitle"),
            cluster_id=data.get("clusterId") or None,
            is_cluster_master=data.get("isClusterMaster"),
            master_question_id=data.get("linkedToMasterQuestionId"),
            similarity_to_master=float(similarity) if similarity is not None else None,
        )

    def cluster_fields(self) -> Dict[str, Any]:
        """Return the cluster annotation in Firestore field names."""
        fields: Dict[str, Any] = {
            "clusterId": self.cluster_id,
            "isClusterMaster": bool(self.is_cluster_master),
            "similarityToMaster": self.similarity_to_master,
        }
        if not self.is_cluster_master:
            fields["linkedToMasterQuestionId"] = self.master_question_id
        return fields

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for job output (omits unset optional fields)."""
        result: Dict[str, Any] = {
            "questionId": self.question_id,
            "projectId": self.project_id,
            "orgId": self.org_id,
            "questionText": self.text,
        }
        optional = {
            "sectionId": self.section_id,
            "sectionTitle": self.section_title,
            "clusterId": self.cluster_id,
            "isClusterMaster": self.is_cluster_master,
            "masterQuestionId": self.master_question_id,
            "similarityToMaster": self.similarity_to_master,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        return result


@dataclass
class ClusterMember:
    """A question entry stored inside a cluster record."""

    question_id: str
    text: str
    similarity: float
    has_answer: bool = False

    def __post_init__(self):
        _validate_similarity(self.similarity, "similarity")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "questionText": self.text,
            "similarity": self.similarity,
            "hasAnswer": self.has_answer,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterMember":
        return cls(
            question_id=data["questionId"],
            text=data.get("questionText", ""),
            similarity=float(data.get("similarity", 0.0)),
            has_answer=bool(data.get("hasAnswer", False)),
        )


@dataclass
class Cluster:
    """
    A group of near-duplicate questions with one designated master.

    The master is always the first member (similarity 1.0). Members are
    append-only; question_count tracks len(members).

    Attributes:
        cluster_id: Cluster document ID (uuid4)
        project_id: Owning project
        master_question_id: Canonical question of the cluster
        master_text: Text of the master question
        members: Master followed by non-master members
        avg_similarity: Mean similarity of non-master members to the master
        question_count: Number of members, master included
    """

    cluster_id: str
    project_id: str
    master_question_id: str
    master_text: str
    members: List[ClusterMember]
    avg_similarity: float
    question_count: int = 0
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        if len(self.members) < 2:
            raise ValueError(
                f"Cluster {self.cluster_id} needs at least 2 members, got {len(self.members)}"
            )
        _validate_similarity(self.avg_similarity, "avg_similarity")
        if not self.question_count:
            self.question_count = len(self.members)

    @property
    def non_master_members(self) -> List[ClusterMember]:
        return [m for m in self.members if m.question_id != self.master_question_id]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for Firestore storage."""
        return {
            "clusterId": self.cluster_id,
            "projectId": self.project_id,
            "masterQuestionId": self.master_question_id,
            "masterQuestionText": self.master_text,
            "members": [m.to_dict() for m in self.members],
            "avgSimilarity": self.avg_similarity,
            "questionCount": self.question_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], cluster_id: Optional[str] = None) -> "Cluster":
        members = [ClusterMember.from_dict(m) for m in data.get("members", [])]
        return cls(
            cluster_id=data.get("clusterId") or cluster_id,
            project_id=data.get("projectId", ""),
            master_question_id=data["masterQuestionId"],
            master_text=data.get("masterQuestionText", ""),
            members=members,
            avg_similarity=float(data.get("avgSimilarity", 0.0)),
            question_count=int(data.get("questionCount", len(members))),
            created_at=data.get("createdAt") or _utc_now(),
            updated_at=data.get("updatedAt") or _utc_now(),
        )


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation run, ordered for answer generation."""

    project_id: str
    org_id: str
    questions: List[Question]
    clusters_created: int = 0
    questions_added_to_existing: int = 0

    @property
    def total_count(self) -> int:
        return len(self.questions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questions": [q.to_dict() for q in self.questions],
            "totalCount": self.total_count,
            "projectId": self.project_id,
            "orgId": self.org_id,
            "clustersCreated": self.clusters_created,
            "questionsAddedToExisting": self.questions_added_to_existing,
        }


@dataclass
class SimilarQuestion:
    question_id: str
    text: str
    similarity: float
    has_answer: bool
    in_same_cluster: bool
    answer_preview: Optional[str] = None
    cluster_id: Optional[str] = None
    section_id: Optional[str] = None
    section_title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "questionText": self.text,
            "sectionId": self.section_id,
            "sectionTitle": self.section_title,
            "similarity": self.similarity,
            "hasAnswer": self.has_answer,
            "answerPreview": self.answer_preview,
            "inSameCluster": self.in_same_cluster,
            "clusterId": self.cluster_id,
        }


@dataclass
class SimilarQuestionsResult:
    question_id: str
    question_text: str
    similar_questions: List[SimilarQuestion]
    threshold: float
    limit: int
    stale_vectors_dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "questionText": self.question_text,
            "similarQuestions": [sq.to_dict() for sq in self.similar_questions],
            "threshold": self.threshold,
            "limit": self.limit,
            "staleVectorsDropped": self.stale_vectors_dropped,
        }
