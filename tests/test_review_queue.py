"""
Tests for the ambiguous-cluster review queue.
"""
import pytest

from api.services.cluster_builder import EquivalenceCluster, MatchEdge
from api.services.review_queue import ReviewQueueStore, ReviewStatus, cluster_key

pytestmark = pytest.mark.unit


@pytest.fixture
def queue(tmp_path):
    return ReviewQueueStore(tmp_path / "people.db")


@pytest.fixture
def smith_cluster():
    return EquivalenceCluster(
        member_ids=(5, 6, 7),
        confirmed=False,
        edges=[MatchEdge(5, 6, "token_correspondence"), MatchEdge(6, 7, "token_correspondence")],
        missing_pairs=[(5, 7)],
        versions={5: 1, 6: 1, 7: 1},
        names={5: "John Smith", 6: "J. Smith", 7: "Jane Smith"},
    )


class TestReviewQueue:
    """Tests for ReviewQueueStore."""

    def test_cluster_key_order_independent(self):
        assert cluster_key([7, 5, 6]) == cluster_key((5, 6, 7)) == "5,6,7"

    def test_add_and_read_back(self, queue, smith_cluster):
        item = queue.add_ambiguous(smith_cluster, batch_id="run-1")

        loaded = queue.get_by_id(item.id)
        assert loaded.member_ids == [5, 6, 7]
        assert loaded.member_names == {5: "John Smith", 6: "J. Smith", 7: "Jane Smith"}
        assert loaded.missing_pairs == [[5, 7]]
        assert loaded.reason == "1 of 3 pairs do not match"
        assert loaded.batch_id == "run-1"
        assert loaded.status == ReviewStatus.PENDING.value
        assert len(loaded.evidence["edges"]) == 2

    def test_pending_cluster_not_duplicated(self, queue, smith_cluster):
        first = queue.add_ambiguous(smith_cluster)
        second = queue.add_ambiguous(smith_cluster)
        assert second.id == first.id
        assert len(queue.get_pending()) == 1

    def test_mark_reviewed(self, queue, smith_cluster):
        item = queue.add_ambiguous(smith_cluster)
        updated = queue.mark_reviewed(item.id, "distinct")

        assert updated.status == "distinct"
        assert updated.reviewed_at is not None
        assert queue.get_pending() == []

    def test_mark_reviewed_invalid_action(self, queue, smith_cluster):
        item = queue.add_ambiguous(smith_cluster)
        with pytest.raises(ValueError):
            queue.mark_reviewed(item.id, "pending")

    def test_mark_reviewed_missing_item(self, queue):
        assert queue.mark_reviewed("no-such-id", "merged") is None

    def test_stale_after_member_merged(self, queue, smith_cluster):
        """Test a merge touching a member retires the queued cluster."""
        queue.add_ambiguous(smith_cluster)
        assert queue.mark_stale_for_persons([99]) == 0
        assert queue.mark_stale_for_persons([6]) == 1
        assert queue.get_pending() == []
        assert queue.get_stats()["by_status"] == {"stale": 1}

    def test_requeue_after_review(self, queue, smith_cluster):
        """Test a cluster reviewed earlier can be queued again."""
        item = queue.add_ambiguous(smith_cluster)
        queue.mark_reviewed(item.id, "stale")
        again = queue.add_ambiguous(smith_cluster)
        assert again.id != item.id

    def test_stats(self, queue, smith_cluster):
        queue.add_ambiguous(smith_cluster)
        assert queue.get_stats()["total_pending"] == 1
