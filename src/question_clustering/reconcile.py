"""
Incremental question clustering for a project.

A run leaves already-clustered questions untouched, embeds only new
questions, attaches them to existing clusters through the vector index
when they match a cluster master, and groups the remaining orphans among
themselves. Writes are per question and per cluster, so an aborted run can
simply be retried: questions that already carry a cluster are skipped.

Usage:
    controller = ReconciliationController(
        questions=FirestoreQuestionRepository(db),
        clusters=FirestoreClusterRepository(db),
        embedder=VertexEmbeddingProvider(settings),
        vector_index=FirestoreVectorIndex(db),
        settings=settings,
    )
    result = controller.reconcile_clusters("proj-123")
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    MAX_MATCH_CANDIDATES,
    MAX_METADATA_TEXT_LENGTH,
    QUESTION_EMBEDDING_TYPE,
    ClusteringSettings,
)
from .errors import ConfigurationError, NotFoundError, ValidationError
from .schema import Cluster, ClusterMember, Question, ReconcileResult
from .similarity import group_by_threshold, order_for_answer_generation
from .vector_index import VectorRecord, question_vector_id

logger = logging.getLogger(__name__)

EmbeddedQuestion = Tuple[Question, List[float]]


def _new_cluster_id() -> str:
    return str(uuid.uuid4())


def resolve_org_id(questions, project_id: str) -> str:
    """
    Look up the organization owning a project.

    Raises:
        NotFoundError: If the project does not exist or has no orgId
    """
    project = questions.get_project(project_id)
    if not project:
        raise NotFoundError(f"Project not found: {project_id}")

    org_id = project.get("orgId")
    if not org_id:
        raise NotFoundError(f"Project {project_id} has no orgId")
    return org_id


class ReconciliationController:
    """
    Orchestrates one clustering pass over a project's questions.

    Args:
        questions: Question repository (also serves project/org lookups)
        clusters: Cluster repository
        embedder: Embedding provider with embed(text) -> vector
        vector_index: Vector index with namespace(org_id)
        settings: Clustering settings (batch size, default threshold)
        id_factory: Cluster ID generator (default: uuid4)
    """

    def __init__(
        self,
        questions,
        clusters,
        embedder,
        vector_index,
        settings: Optional[ClusteringSettings] = None,
        id_factory: Callable[[], str] = _new_cluster_id,
    ):
        self.questions = questions
        self.clusters = clusters
        self.embedder = embedder
        self.vector_index = vector_index
        self.settings = settings or ClusteringSettings()
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_project_questions(self, project_id: str, org_id: str) -> List[Question]:
        """Drain every page of the project's questions."""
        all_questions: List[Question] = []
        page_token = None
        pages = 0

        while True:
            page, page_token = self.questions.list_questions_page(project_id, org_id, page_token)
            all_questions.extend(page)
            pages += 1
            if page_token is None:
                break

        logger.info(f"Loaded {len(all_questions)} questions for project {project_id} ({pages} pages)")
        return all_questions

    def resolve_cluster_threshold(self, org_id: str) -> float:
        """Org clusterThreshold, or the default when unset or unavailable."""
        default = self.settings.cluster_threshold
        try:
            org_settings = self.questions.get_organization_settings(org_id)
        except ConfigurationError as e:
            logger.warning(f"Failed to load org settings, using default threshold {default:.2f}: {e}")
            return default

        value = org_settings.get("clusterThreshold")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            logger.info(f"Using org clusterThreshold: {value * 100:.0f}%")
            return float(value)

        logger.info(f"Org has no clusterThreshold set, using default: {default * 100:.0f}%")
        return default

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed_questions(self, org_id: str, questions: Sequence[Question]) -> List[EmbeddedQuestion]:
        """
        Embed questions in fixed-size batches and upsert them into the index.

        Each batch is embedded in parallel (one worker per question), then
        written to the organization's namespace before the next batch starts.

        Raises:
            UpstreamError: If any embedding or upsert fails
        """
        batch_size = self.settings.embed_batch_size
        namespace = self.vector_index.namespace(org_id)
        embedded: List[EmbeddedQuestion] = []

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(questions), batch_size):
                batch = list(questions[start:start + batch_size])

                futures = [executor.submit(self.embedder.embed, q.text) for q in batch]
                vectors = [future.result() for future in futures]

                namespace.upsert([
                    VectorRecord(
                        id=question_vector_id(q.project_id, q.question_id),
                        values=vector,
                        metadata=self._vector_metadata(q),
                    )
                    for q, vector in zip(batch, vectors)
                ])
                embedded.extend(zip(batch, vectors))

                logger.info(f"Embedded {len(embedded)}/{len(questions)} new questions")

        return embedded

    @staticmethod
    def _vector_metadata(question: Question) -> Dict[str, str]:
        metadata = {
            "type": QUESTION_EMBEDDING_TYPE,
            "projectId": question.project_id,
            "questionId": question.question_id,
            "questionText": question.text[:MAX_METADATA_TEXT_LENGTH],
        }
        if question.section_id:
            metadata["sectionId"] = question.section_id
        if question.section_title:
            metadata["sectionTitle"] = question.section_title
        return metadata

    # ------------------------------------------------------------------
    # Matching against existing clusters
    # ------------------------------------------------------------------

    def attach_to_existing_clusters(
        self,
        org_id: str,
        project_id: str,
        embedded: Sequence[EmbeddedQuestion],
        masters: Sequence[Question],
        threshold: float,
    ) -> Tuple[List[Question], List[EmbeddedQuestion]]:
        """
        Attach new questions whose nearest neighbor is an existing master.

        Returns:
            Tuple of (attached questions, orphan candidates)
        """
        masters_by_id = {m.question_id: m for m in masters if m.cluster_id}
        namespace = self.vector_index.namespace(org_id)
        filters = {"type": QUESTION_EMBEDDING_TYPE, "projectId": project_id}

        # Vectors of this run's questions are already indexed and can
        # outrank every existing master, so they are skipped when picking
        # the nearest neighbor. The window must hold all of them plus one.
        run_ids = {q.question_id for q, _ in embedded}
        top_k = min(len(run_ids) + 1, MAX_MATCH_CANDIDATES)
        if len(run_ids) >= MAX_MATCH_CANDIDATES:
            logger.warning(
                f"{len(run_ids)} new questions exceed the match window of "
                f"{MAX_MATCH_CANDIDATES}; near-duplicates may miss existing clusters"
            )

        attached: List[Question] = []
        orphans: List[EmbeddedQuestion] = []

        for question, vector in embedded:
            matches = namespace.query(vector, top_k=top_k, filters=filters)
            best = next(
                (m for m in matches if m.metadata.get("questionId") not in run_ids),
                None,
            )
            master = None
            if best is not None and best.score >= threshold:
                master = masters_by_id.get(best.metadata.get("questionId"))

            if master is None:
                orphans.append((question, vector))
                continue

            member = ClusterMember(
                question_id=question.question_id,
                text=question.text,
                similarity=best.score,
            )

            question.cluster_id = master.cluster_id
            question.is_cluster_master = False
            question.master_question_id = master.question_id
            question.similarity_to_master = best.score

            # Annotation first: if the append fails, the question stays
            # clustered but absent from the member list.
            self.questions.update_question_cluster_fields(
                project_id, question.question_id, question.cluster_fields()
            )
            self.clusters.append_cluster_member(project_id, master.cluster_id, member)
            attached.append(question)

            logger.info(
                f"New question {question.question_id} matches existing cluster "
                f"{master.cluster_id} ({best.score * 100:.1f}%)"
            )

        logger.info(
            f"Added {len(attached)} questions to existing clusters, {len(orphans)} orphans remain"
        )
        return attached, orphans

    # ------------------------------------------------------------------
    # Clustering orphans
    # ------------------------------------------------------------------

    def cluster_orphans(
        self,
        project_id: str,
        orphans: Sequence[EmbeddedQuestion],
        threshold: float,
    ) -> int:
        """
        Group orphans among themselves and persist each new cluster.

        Questions are annotated in place.

        Returns:
            Number of clusters created
        """
        questions = [q for q, _ in orphans]
        vectors = [v for _, v in orphans]
        groups = group_by_threshold([q.text for q in questions], vectors, threshold)

        for group in groups:
            master = questions[group.master_index]
            cluster = Cluster(
                cluster_id=self.id_factory(),
                project_id=project_id,
                master_question_id=master.question_id,
                master_text=master.text,
                members=[ClusterMember(master.question_id, master.text, 1.0)] + [
                    ClusterMember(questions[idx].question_id, questions[idx].text, sim)
                    for idx, sim in group.members
                ],
                avg_similarity=group.avg_similarity,
            )
            self.clusters.create_cluster(cluster)

            master.cluster_id = cluster.cluster_id
            master.is_cluster_master = True
            master.master_question_id = None
            master.similarity_to_master = 1.0
            self.questions.update_question_cluster_fields(
                project_id, master.question_id, master.cluster_fields()
            )

            for idx, sim in group.members:
                member = questions[idx]
                member.cluster_id = cluster.cluster_id
                member.is_cluster_master = False
                member.master_question_id = master.question_id
                member.similarity_to_master = sim
                self.questions.update_question_cluster_fields(
                    project_id, member.question_id, member.cluster_fields()
                )

        return len(groups)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def reconcile_clusters(self, project_id: str) -> ReconcileResult:
        """
        Run one incremental clustering pass for a project.

        Args:
            project_id: Project to process

        Returns:
            ReconcileResult with all project questions ordered
            masters -> unclustered -> members

        Raises:
            ValidationError: If project_id is missing
            NotFoundError: If the project or its orgId is missing
            UpstreamError: If embedding, vector index or persistence fails
        """
        if not project_id or not project_id.strip():
            raise ValidationError("projectId is required")

        start_time = time.time()
        org_id = resolve_org_id(self.questions, project_id)

        all_questions = self.load_project_questions(project_id, org_id)
        already_clustered = [q for q in all_questions if q.is_clustered]
        new_questions = [q for q in all_questions if not q.is_clustered]

        logger.info(
            f"Found {len(all_questions)} total questions: "
            f"{len(already_clustered)} already clustered, {len(new_questions)} new"
        )

        if len(all_questions) < 2:
            return ReconcileResult(project_id=project_id, org_id=org_id, questions=all_questions)

        threshold = self.resolve_cluster_threshold(org_id)

        clusters_created = 0
        attached: List[Question] = []
        processed_new: List[Question] = []

        if not new_questions:
            logger.info("No new questions to process")
        else:
            logger.info(f"Embedding {len(new_questions)} new questions...")
            embedded = self.embed_questions(org_id, new_questions)

            masters = [q for q in already_clustered if q.is_cluster_master]
            if masters:
                logger.info(
                    f"Checking {len(embedded)} new questions against "
                    f"{len(masters)} existing cluster masters..."
                )
                attached, orphans = self.attach_to_existing_clusters(
                    org_id, project_id, embedded, masters, threshold
                )
            else:
                orphans = list(embedded)

            if len(orphans) >= 2:
                logger.info(f"Clustering {len(orphans)} orphan questions...")
                clusters_created = self.cluster_orphans(project_id, orphans, threshold)

            processed_new = attached + [q for q, _ in orphans]

        ordered = order_for_answer_generation(already_clustered + processed_new)

        masters_count = sum(1 for q in ordered if q.is_cluster_master)
        members_count = sum(1 for q in ordered if q.cluster_id and not q.is_cluster_master)
        logger.info(
            f"Returning {len(ordered)} questions: {masters_count} masters, "
            f"{len(ordered) - masters_count - members_count} unclustered, "
            f"{members_count} members, {clusters_created} new clusters created "
            f"in {time.time() - start_time:.2f}s"
        )

        return ReconcileResult(
            project_id=project_id,
            org_id=org_id,
            questions=ordered,
            clusters_created=clusters_created,
            questions_added_to_existing=len(attached),
        )
