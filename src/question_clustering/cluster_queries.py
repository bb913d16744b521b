"""Read-only cluster browsing for a project."""

import logging
from typing import Dict, List

from .errors import ValidationError
from .schema import Cluster

logger = logging.getLogger(__name__)


def list_clusters(questions, clusters, project_id: str) -> List[Cluster]:
    """
    List a project's clusters, largest first.

    Answer status is re-derived per member at read time because answers
    are generated after clustering and the stored hasAnswer flag goes stale.

    Args:
        questions: Question repository (answer lookups)
        clusters: Cluster repository
        project_id: Project to list

    Returns:
        Clusters sorted by question_count descending
    """
    if not project_id:
        raise ValidationError("projectId is required")

    result: List[Cluster] = []
    page_token = None
    while True:
        page, page_token = clusters.list_clusters_page(project_id, page_token)
        result.extend(page)
        if page_token is None:
            break

    answered: Dict[str, bool] = {}
    for cluster in result:
        for member in cluster.members:
            if member.question_id not in answered:
                answer = questions.get_answer(project_id, member.question_id)
                answered[member.question_id] = bool((answer or {}).get("text"))
            member.has_answer = answered[member.question_id]

    result.sort(key=lambda c: c.question_count, reverse=True)
    logger.info(f"Retrieved {len(result)} clusters for project {project_id}")
    return result
