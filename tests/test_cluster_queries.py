"""
Unit tests for cluster listing.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from question_clustering.cluster_queries import list_clusters
from question_clustering.errors import ValidationError
from question_clustering.schema import Cluster, ClusterMember

from question_fakes import FakeClusterRepository, FakeQuestionRepository

PROJECT = "proj-123"


def make_cluster(cluster_id, master_id, member_ids):
    members = [ClusterMember(master_id, f"text {master_id}", 1.0)] + [
        ClusterMember(qid, f"text {qid}", 0.9) for qid in member_ids
    ]
    return Cluster(
        cluster_id=cluster_id,
        project_id=PROJECT,
        master_question_id=master_id,
        master_text=f"text {master_id}",
        members=members,
        avg_similarity=0.9,
    )


class TestListClusters(unittest.TestCase):

    def setUp(self):
        self.questions = FakeQuestionRepository()
        self.clusters = FakeClusterRepository(page_size=2)

    def test_missing_project_id(self):
        with self.assertRaises(ValidationError):
            list_clusters(self.questions, self.clusters, "")

    def test_empty_project(self):
        self.assertEqual(list_clusters(self.questions, self.clusters, PROJECT), [])

    def test_sorted_by_size_across_pages(self):
        self.clusters.create_cluster(make_cluster("c-small", "a", ["b"]))
        self.clusters.create_cluster(make_cluster("c-large", "c", ["d", "e", "f"]))
        self.clusters.create_cluster(make_cluster("c-mid", "g", ["h", "i"]))

        result = list_clusters(self.questions, self.clusters, PROJECT)

        self.assertEqual([c.cluster_id for c in result], ["c-large", "c-mid", "c-small"])
        self.assertEqual([c.question_count for c in result], [4, 3, 2])

    def test_appended_members_are_counted(self):
        self.clusters.create_cluster(make_cluster("c-1", "a", ["b"]))
        self.clusters.create_cluster(make_cluster("c-2", "c", ["d"]))
        self.clusters.append_cluster_member(PROJECT, "c-2", ClusterMember("e", "text e", 0.85))

        result = list_clusters(self.questions, self.clusters, PROJECT)

        self.assertEqual(result[0].cluster_id, "c-2")
        self.assertEqual([m.question_id for m in result[0].members], ["c", "d", "e"])

    def test_answer_status_is_rederived(self):
        self.clusters.create_cluster(make_cluster("c-1", "a", ["b", "c"]))
        self.questions.add_answer(PROJECT, "b", "We retain data for seven years.")
        self.questions.add_answer(PROJECT, "c", "")

        result = list_clusters(self.questions, self.clusters, PROJECT)

        status = {m.question_id: m.has_answer for m in result[0].members}
        self.assertEqual(status, {"a": False, "b": True, "c": False})

    def test_master_is_first_member(self):
        self.clusters.create_cluster(make_cluster("c-1", "a", ["b"]))

        cluster = list_clusters(self.questions, self.clusters, PROJECT)[0]

        self.assertEqual(cluster.members[0].question_id, cluster.master_question_id)
        self.assertEqual([m.question_id for m in cluster.non_master_members], ["b"])


if __name__ == '__main__':
    unittest.main()
