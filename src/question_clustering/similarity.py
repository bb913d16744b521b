"""
Threshold-based grouping of near-duplicate questions.

Builds a cosine similarity matrix over question embeddings and partitions
the questions greedily in input order, so the same input always yields the
same clusters and the same masters.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine_similarity

from .schema import Question

logger = logging.getLogger(__name__)


def clamp_similarity(value: float) -> float:
    """Clip floating point overshoot (e.g. 1.0000000000000002) into [-1, 1]."""
    return min(1.0, max(-1.0, float(value)))


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Cosine similarity score, 0.0 for empty, zero-length or mismatched vectors
    """
    if vec1 is None or vec2 is None or len(vec1) == 0 or len(vec1) != len(vec2):
        return 0.0

    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return clamp_similarity(np.dot(a, b) / (norm1 * norm2))


def similarity_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Build the symmetric N x N cosine similarity matrix (diagonal = 1.0).

    Uses scikit-learn when all vectors share a dimension; otherwise falls
    back to pairwise computation so mismatched vectors score 0.0.
    """
    n = len(embeddings)
    if n == 0:
        return np.zeros((0, 0))

    dims = {len(e) for e in embeddings}
    if len(dims) == 1 and 0 not in dims:
        matrix = pairwise_cosine_similarity(np.asarray(embeddings, dtype=np.float64))
        # Enforce exact symmetry against floating point noise
        matrix = (matrix + matrix.T) / 2.0
    else:
        logger.warning(f"Embeddings have mixed dimensions {sorted(dims)}, computing pairwise")
        matrix = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                sim = cosine_similarity(embeddings[i], embeddings[j])
                matrix[i, j] = sim
                matrix[j, i] = sim

    matrix = np.clip(matrix, -1.0, 1.0)
    np.fill_diagonal(matrix, 1.0)
    return matrix


@dataclass
class ClusterGroup:
    """
    A cluster detected among orphan questions (indices into the input).

    members holds (index, similarity_to_master) for every non-master question.
    """
    master_index: int
    members: List[Tuple[int, float]] = field(default_factory=list)

    @property
    def avg_similarity(self) -> float:
        if not self.members:
            return 1.0
        return float(sum(sim for _, sim in self.members) / len(self.members))

    @property
    def size(self) -> int:
        return len(self.members) + 1


def select_master(indices: Sequence[int], texts: Sequence[str]) -> int:
    """Pick the longest text; ties resolve to the earliest input index."""
    best = indices[0]
    for idx in indices[1:]:
        if len(texts[idx]) > len(texts[best]) or (
            len(texts[idx]) == len(texts[best]) and idx < best
        ):
            best = idx
    return best


def group_by_threshold(
    texts: Sequence[str],
    embeddings: Sequence[Sequence[float]],
    threshold: float,
) -> List[ClusterGroup]:
    """
    Partition embedded questions into clusters.

    Iterates in input order. For each unvisited question, every unvisited
    question with similarity >= threshold (itself included) forms the
    neighbor set; two or more neighbors become a cluster whose master is
    the longest text. Member similarity is recomputed against the master.

    Args:
        texts: Question texts, same order as embeddings
        embeddings: One vector per question
        threshold: Inclusive similarity threshold

    Returns:
        Cluster groups in detection order
    """
    if len(texts) != len(embeddings):
        raise ValueError(
            f"Mismatch: {len(texts)} texts but {len(embeddings)} embeddings"
        )

    n = len(texts)
    if n < 2:
        return []

    matrix = similarity_matrix(embeddings)
    visited = set()
    groups: List[ClusterGroup] = []

    for i in range(n):
        if i in visited:
            continue

        neighbors = [
            j for j in range(n)
            if j not in visited and matrix[i, j] >= threshold
        ]
        if len(neighbors) < 2:
            continue

        visited.update(neighbors)
        master = select_master(neighbors, texts)
        members = [
            (j, cosine_similarity(embeddings[master], embeddings[j]))
            for j in neighbors
            if j != master
        ]
        groups.append(ClusterGroup(master_index=master, members=members))

    logger.info(
        f"Grouped {n} questions into {len(groups)} clusters "
        f"({sum(g.size for g in groups)} clustered, threshold={threshold:.2f})"
    )
    return groups


def order_for_answer_generation(questions: Sequence[Question]) -> List[Question]:
    """
    Order questions so each cluster's representative is answered first.

    Returns:
        [masters by text length desc] + [unclustered] + [non-master members],
        input order preserved within the last two groups
    """
    masters: List[Question] = []
    unclustered: List[Question] = []
    members: List[Question] = []

    for q in questions:
        if q.is_cluster_master:
            masters.append(q)
        elif q.cluster_id:
            members.append(q)
        else:
            unclustered.append(q)

    masters.sort(key=lambda q: len(q.text), reverse=True)
    return masters + unclustered + members
