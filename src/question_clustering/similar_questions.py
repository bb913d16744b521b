"""
Ad-hoc similar-question lookup for a single question.

Independent of persisted clusters: neighbors come straight from the vector
index and are re-hydrated from the question repository. Vectors whose
question no longer exists (the index is never pruned on delete) are
dropped and counted.
"""

import logging
from typing import List, Optional

from .config import (
    ANSWER_PREVIEW_LENGTH,
    MAX_SIMILAR_QUESTIONS_CAP,
    QUESTION_EMBEDDING_TYPE,
    SIMILAR_QUERY_HEADROOM,
    ClusteringSettings,
)
from .errors import ConfigurationError, NotFoundError, ValidationError
from .reconcile import resolve_org_id
from .schema import Question, SimilarQuestion, SimilarQuestionsResult

logger = logging.getLogger(__name__)


def answer_preview(text: Optional[str]) -> Optional[str]:
    """First 150 characters of an answer, with '...' when truncated."""
    if not text:
        return None
    if len(text) > ANSWER_PREVIEW_LENGTH:
        return text[:ANSWER_PREVIEW_LENGTH] + "..."
    return text


def clamp_threshold(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def clamp_limit(value: int) -> int:
    return max(1, min(MAX_SIMILAR_QUESTIONS_CAP, int(value)))


class SimilarQuestionService:
    """
    Top-K neighbor lookup for one question.

    Args:
        questions: Question repository (questions, answers, org lookups)
        embedder: Embedding provider with embed(text) -> vector
        vector_index: Vector index with namespace(org_id)
        settings: Clustering settings (default threshold and limit)
    """

    def __init__(self, questions, embedder, vector_index, settings: Optional[ClusteringSettings] = None):
        self.questions = questions
        self.embedder = embedder
        self.vector_index = vector_index
        self.settings = settings or ClusteringSettings()

    def _resolve_threshold(self, org_id: str, threshold: Optional[float]) -> float:
        if threshold is not None:
            return clamp_threshold(threshold)

        default = self.settings.similar_threshold
        try:
            org_settings = self.questions.get_organization_settings(org_id)
        except ConfigurationError as e:
            logger.warning(f"Failed to load org settings, using default threshold: {e}")
            return default

        value = org_settings.get("similarThreshold")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            logger.info(f"Using org similarThreshold: {value * 100:.0f}%")
            return float(value)
        return default

    def find_similar_questions(
        self,
        project_id: str,
        question_id: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        org_id: Optional[str] = None,
    ) -> SimilarQuestionsResult:
        """
        Find questions in the same project that are semantically close.

        Args:
            project_id: Project of the source question
            question_id: Source question
            threshold: Minimum similarity; skips the org lookup when given
            limit: Maximum results (1-50, default from settings)
            org_id: Organization namespace; looked up from the project if omitted

        Returns:
            SimilarQuestionsResult sorted by similarity descending

        Raises:
            ValidationError: If project_id or question_id is missing
            NotFoundError: If the source question is missing or has no text
            UpstreamError: If embedding or the vector query fails
        """
        if not project_id or not question_id:
            raise ValidationError("Missing projectId or questionId")

        effective_limit = clamp_limit(limit) if limit is not None else self.settings.max_similar_questions

        source = self.questions.get_question(project_id, question_id)
        if source is None or not source.text:
            raise NotFoundError(f"Question not found: {question_id}")

        if not org_id:
            org_id = resolve_org_id(self.questions, project_id)

        effective_threshold = self._resolve_threshold(org_id, threshold)

        embedding = self.embedder.embed(source.text)
        matches = self.vector_index.namespace(org_id).query(
            embedding,
            top_k=effective_limit + SIMILAR_QUERY_HEADROOM,
            filters={"type": QUESTION_EMBEDDING_TYPE, "projectId": project_id},
        )

        candidates = []
        for match in matches:
            matched_id = match.metadata.get("questionId")
            if not matched_id:
                logger.debug(f"Skipping vector {match.id}: no questionId in metadata")
                continue
            if matched_id == question_id:
                continue
            if match.score < effective_threshold:
                continue
            candidates.append(match)
            if len(candidates) >= effective_limit:
                break

        similar: List[SimilarQuestion] = []
        stale = 0
        for match in candidates:
            matched_id = match.metadata["questionId"]
            full_question = self.questions.get_question(project_id, matched_id)
            if full_question is None:
                stale += 1
                logger.info(f"Skipping stale vector: {matched_id} (question no longer exists)")
                continue
            similar.append(self._enrich(project_id, source, full_question, match))

        if stale:
            logger.warning(
                f"Dropped {stale}/{len(candidates)} stale vectors for project {project_id} "
                f"in namespace {org_id}"
            )

        similar.sort(key=lambda sq: sq.similarity, reverse=True)
        logger.info(f"Returning {len(similar)} similar questions for {question_id}")

        return SimilarQuestionsResult(
            question_id=question_id,
            question_text=source.text,
            similar_questions=similar,
            threshold=effective_threshold,
            limit=effective_limit,
            stale_vectors_dropped=stale,
        )

    def _enrich(self, project_id: str, source: Question, question: Question, match) -> SimilarQuestion:
        answer = self.questions.get_answer(project_id, question.question_id)
        answer_text = (answer or {}).get("text")
        return SimilarQuestion(
            question_id=question.question_id,
            text=question.text or match.metadata.get("questionText", ""),
            similarity=match.score,
            has_answer=bool(answer_text),
            answer_preview=answer_preview(answer_text),
            in_same_cluster=bool(question.cluster_id and question.cluster_id == source.cluster_id),
            cluster_id=question.cluster_id,
            section_id=question.section_id or match.metadata.get("sectionId"),
            section_title=question.section_title or match.metadata.get("sectionTitle"),
        )
