"""
Cloud Function Entry Point for Question Clustering

Called by the answer-generation workflow before answers are generated, so
the workflow can answer one master per cluster and reuse the answer for
the members.

Entry point: reconcile_clusters_handler

Request payload:
    {
        "project_id": "proj-123"
    }

Response:
    {
        "status": "success",
        "questions": [...],
        "totalCount": 42,
        "clustersCreated": 3,
        ...
    }
"""

import logging
from typing import Any, Dict, Tuple

import functions_framework

from .errors import NotFoundError, UpstreamError, ValidationError
from .main import build_dependencies

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (UpstreamError, 502),
)


def _error_response(error: Exception, project_id: Any) -> Tuple[Dict[str, Any], int]:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            break
    else:
        status_code = 500

    return ({'status': 'error', 'error': str(error), 'project_id': project_id}, status_code)


@functions_framework.http
def reconcile_clusters_handler(request) -> tuple:
    """
    Cloud Function HTTP handler for incremental question clustering.

    Returns:
        Tuple of (response_dict, status_code)
    """
    request_json = request.get_json(silent=True) or {}
    project_id = request_json.get('project_id') or request_json.get('projectId')

    logger.info(f"Question clustering triggered for project: {project_id}")

    try:
        if not project_id:
            raise ValidationError("projectId is required")

        deps = build_dependencies()
        result = deps.reconciliation_controller().reconcile_clusters(project_id)

    except (ValidationError, NotFoundError) as e:
        logger.warning(f"Question clustering rejected for project {project_id}: {e}")
        return _error_response(e, project_id)

    except Exception as e:
        logger.exception(f"Question clustering failed for project {project_id}: {e}")
        return _error_response(e, project_id)

    response = result.to_dict()
    response['status'] = 'success'
    return (response, 200)
