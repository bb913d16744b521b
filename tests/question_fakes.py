"""
In-memory stand-ins for Firestore repositories, Vertex AI and the vector index.

Used by the clustering tests to exercise full reconciliation runs without
GCP dependencies. Documents are stored with the same camelCase fields as
Firestore so the schema conversion code runs as in production.
"""

import os
import sys
from typing import Any, Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from question_clustering.errors import UpstreamError
from question_clustering.schema import Cluster, Question
from question_clustering.similarity import cosine_similarity
from question_clustering.vector_index import VectorMatch


class FakeQuestionRepository:
    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.org_settings: Dict[str, Dict[str, Any]] = {}
        self.documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.answers: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.settings_error: Optional[Exception] = None
        self.updates: List[tuple] = []
        self.page_calls = 0
        self.settings_calls = 0

    # Test setup helpers

    def add_project(self, project_id: str, org_id: Optional[str] = "org-1", **settings):
        self.projects[project_id] = {"id": project_id, "orgId": org_id}
        if org_id and settings:
            self.org_settings[org_id] = settings
        self.documents.setdefault(project_id, {})

    def add_question(self, project_id: str, question_id: str, text: str, **fields):
        doc = {"questionId": question_id, "question": text, "projectId": project_id}
        doc.update(fields)
        self.documents.setdefault(project_id, {})[question_id] = doc

    def add_answer(self, project_id: str, question_id: str, text: str):
        self.answers.setdefault(project_id, {})[question_id] = {"text": text}

    def delete_question(self, project_id: str, question_id: str):
        del self.documents[project_id][question_id]

    # Repository interface

    def get_project(self, project_id):
        return self.projects.get(project_id)

    def get_organization_settings(self, org_id):
        self.settings_calls += 1
        if self.settings_error is not None:
            raise self.settings_error
        return dict(self.org_settings.get(org_id, {}))

    def list_questions_page(self, project_id, org_id, page_token=None):
        self.page_calls += 1
        docs = list(self.documents.get(project_id, {}).values())
        start = page_token or 0
        page = docs[start:start + self.page_size]
        next_token = start + self.page_size if start + self.page_size < len(docs) else None
        questions = [Question.from_dict(dict(d), project_id, org_id) for d in page]
        return questions, next_token

    def get_question(self, project_id, question_id):
        doc = self.documents.get(project_id, {}).get(question_id)
        if doc is None or not doc.get("question"):
            return None
        return Question.from_dict(dict(doc), project_id)

    def update_question_cluster_fields(self, project_id, question_id, fields):
        self.updates.append((project_id, question_id, dict(fields)))
        self.documents[project_id][question_id].update(fields)

    def get_answer(self, project_id, question_id):
        return self.answers.get(project_id, {}).get(question_id)


class FakeClusterRepository:
    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.created: List[Cluster] = []
        self.appended: List[tuple] = []

    def create_cluster(self, cluster: Cluster):
        self.created.append(cluster)
        self.records.setdefault(cluster.project_id, {})[cluster.cluster_id] = cluster.to_dict()

    def append_cluster_member(self, project_id, cluster_id, member):
        self.appended.append((project_id, cluster_id, member))
        record = self.records[project_id][cluster_id]
        record["members"] = record["members"] + [member.to_dict()]
        record["questionCount"] += 1

    def list_clusters_page(self, project_id, page_token=None):
        docs = list(self.records.get(project_id, {}).items())
        start = page_token or 0
        page = docs[start:start + self.page_size]
        next_token = start + self.page_size if start + self.page_size < len(docs) else None
        return [Cluster.from_dict(dict(d), cluster_id=cid) for cid, d in page], next_token


class FakeEmbedder:
    """Returns a fixed vector per text; fail_on raises UpstreamError for that text."""

    def __init__(self, vectors: Dict[str, List[float]], fail_on: Optional[str] = None):
        self.vectors = vectors
        self.fail_on = fail_on
        self.calls: List[str] = []

    def embed(self, text):
        self.calls.append(text)
        if self.fail_on is not None and text == self.fail_on:
            raise UpstreamError("embedding service unavailable")
        return list(self.vectors[text])


class FakeNamespace:
    def __init__(self):
        self.vectors: Dict[str, tuple] = {}
        self.queries: List[dict] = []
        self.upsert_batches: List[int] = []

    def upsert(self, records):
        self.upsert_batches.append(len(records))
        for record in records:
            self.vectors[record.id] = (list(record.values), dict(record.metadata))
        return len(records)

    def query(self, vector, top_k, filters=None):
        self.queries.append({"top_k": top_k, "filters": dict(filters or {})})
        matches = []
        for vector_id, (values, metadata) in self.vectors.items():
            if any(metadata.get(k) != v for k, v in (filters or {}).items()):
                continue
            matches.append(VectorMatch(vector_id, cosine_similarity(vector, values), dict(metadata)))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]


class FakeVectorIndex:
    def __init__(self):
        self.namespaces: Dict[str, FakeNamespace] = {}

    def namespace(self, org_id):
        return self.namespaces.setdefault(org_id, FakeNamespace())


def sequential_ids(prefix: str = "cluster"):
    """Deterministic cluster ID factory."""
    counter = {"n": 0}

    def _next():
        counter["n"] += 1
        return f"{prefix}-{counter['n']}"

    return _next


# Data retention example: three near-duplicates and two unrelated questions
RETENTION_WHAT = "What is your data retention policy?"
RETENTION_DESCRIBE = "Describe your data retention policy."
RETENTION_HOW_LONG = "How long do you retain data?"
UNRELATED_SSO = "Do you support single sign-on?"
UNRELATED_UPTIME = "What is your uptime SLA?"

EXAMPLE_VECTORS = {
    RETENTION_WHAT: [1.0, 0.05, 0.0, 0.0, 0.0],
    RETENTION_DESCRIBE: [1.0, 0.0, 0.05, 0.0, 0.0],
    RETENTION_HOW_LONG: [0.95, 0.1, 0.1, 0.0, 0.0],
    UNRELATED_SSO: [0.0, 0.0, 0.0, 1.0, 0.0],
    UNRELATED_UPTIME: [0.0, 0.0, 0.0, 0.0, 1.0],
}
