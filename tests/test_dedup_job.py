"""
Tests for the batch dedup job.

Tests cover:
- run() merges confirmed clusters, queues ambiguous ones, converges
- plan() writes a plan file and changes nothing; a cancelled plan writes nothing
- execute_plan() runs pending actions and skips stale or rejected ones
- Cancellation keeps committed progress
"""
import json
import threading
import warnings

import pytest

from api.services.dedup_job import (
    STATUS_EXECUTED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_SKIPPED,
    DedupJob,
    load_plan,
    save_plan,
)
from api.services.resolution_errors import AmbiguousClusterWarning
from api.services.review_queue import ReviewQueueStore

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def quiet_ambiguous_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", AmbiguousClusterWarning)
        yield


@pytest.fixture
def catalog(make_person):
    """Two mergeable groups, one ambiguous chain, one loner."""
    make_person("Jeffrey Epstein")        # 1
    make_person("Epstein, Jeffrey")       # 2
    make_person("Bill Clinton")           # 3
    make_person("William Clinton")        # 4
    make_person("John Smith")             # 5
    make_person("J. Smith")               # 6
    make_person("Jane Smith")             # 7
    make_person("Ghislaine Maxwell")      # 8


@pytest.fixture
def job(person_store):
    return DedupJob(person_store, review_queue=ReviewQueueStore(person_store.db_path))


class TestRun:
    """Tests for DedupJob.run()."""

    def test_merges_confirmed_clusters(self, job, person_store, catalog):
        report = job.run()

        assert report.merged_clusters == 2
        assert report.removed_records == 2
        assert report.converged is True
        assert report.cancelled is False
        assert person_store.count() == 6
        assert person_store.get_canonical_id(2) == 1
        assert person_store.get_canonical_id(4) == 3

    def test_ambiguous_queued_not_merged(self, job, person_store, catalog):
        report = job.run()

        assert report.ambiguous_clusters == 1
        for pid in (5, 6, 7):
            assert person_store.get_by_id(pid) is not None

        pending = job.review_queue.get_pending()
        assert len(pending) == 1
        assert pending[0].member_ids == [5, 6, 7]
        assert pending[0].missing_pairs == [[5, 7]]

    def test_second_run_merges_nothing(self, job, catalog):
        """Test the job is idempotent once converged."""
        job.run()
        report = job.run()
        assert report.merged_clusters == 0
        assert report.converged is True
        # Same ambiguous cluster is not queued twice
        assert len(job.review_queue.get_pending()) == 1

    def test_cancelled_before_start(self, person_store, catalog):
        event = threading.Event()
        event.set()
        job = DedupJob(person_store, cancel_event=event)

        report = job.run()

        assert report.cancelled is True
        assert report.merged_clusters == 0
        assert person_store.count() == 8

    def test_cancel_method_sets_event(self, job):
        job.cancel()
        assert job.cancel_event.is_set()


class TestPlan:
    """Tests for dry-run plans."""

    def test_plan_changes_nothing(self, job, person_store, catalog, tmp_path):
        plan_path = tmp_path / "plan.json"
        plan = job.plan(plan_path)

        assert person_store.count() == 8
        assert person_store.get_merged_ids() == {}
        assert plan_path.exists()
        assert json.loads(plan_path.read_text()) == plan

    def test_cancelled_plan_writes_nothing(self, person_store, catalog, tmp_path):
        event = threading.Event()
        event.set()
        job = DedupJob(person_store, cancel_event=event)
        plan_path = tmp_path / "plan.json"

        plan = job.plan(plan_path)

        assert plan["cancelled"] is True
        assert plan["actions"] == []
        assert plan["personCountBefore"] == 8
        assert not plan_path.exists()

    def test_plan_contents(self, job, catalog, tmp_path):
        plan = job.plan(tmp_path / "plan.json")

        assert plan["personCountBefore"] == 8
        assert plan["summary"]["totalActions"] == 2
        assert plan["summary"]["ambiguousClusters"] == 1
        first = plan["actions"][0]
        assert first["type"] == "merge"
        assert first["canonical"] == {"id": 1, "name": "Jeffrey Epstein"}
        assert first["duplicates"] == [{"id": 2, "name": "Epstein, Jeffrey"}]
        assert first["status"] == STATUS_PENDING
        assert first["versions"] == {"1": 1, "2": 1}
        assert plan["ambiguous"][0]["member_ids"] == [5, 6, 7]


class TestExecutePlan:
    """Tests for executing a saved plan."""

    def test_executes_pending_actions(self, job, person_store, catalog, tmp_path):
        plan_path = tmp_path / "plan.json"
        job.plan(plan_path)

        report = job.execute_plan(plan_path)

        assert report.merged_clusters == 2
        assert person_store.count() == 6
        saved = load_plan(plan_path)
        assert [a["status"] for a in saved["actions"]] == [STATUS_EXECUTED, STATUS_EXECUTED]

    def test_rejected_actions_left_alone(self, job, person_store, catalog, tmp_path):
        plan_path = tmp_path / "plan.json"
        plan = job.plan(plan_path)
        plan["actions"][0]["status"] = STATUS_REJECTED
        save_plan(plan, plan_path)

        report = job.execute_plan(plan_path)

        assert report.merged_clusters == 1
        assert person_store.get_by_id(2) is not None
        assert load_plan(plan_path)["actions"][0]["status"] == STATUS_REJECTED

    def test_changed_member_skipped(self, job, person_store, catalog, tmp_path):
        """Test an action whose members changed since planning is skipped."""
        plan_path = tmp_path / "plan.json"
        job.plan(plan_path)
        record = person_store.get_by_id(2)
        record.role = "defendant"
        person_store.update(record)

        report = job.execute_plan(plan_path)

        assert report.merged_clusters == 1
        assert len(report.skipped) == 1
        assert person_store.get_by_id(2) is not None
        assert load_plan(plan_path)["actions"][0]["status"] == STATUS_SKIPPED

    def test_gone_duplicates_skipped(self, job, person_store, catalog, tmp_path):
        plan_path = tmp_path / "plan.json"
        job.plan(plan_path)
        job.run()

        report = job.execute_plan(plan_path)

        assert report.merged_clusters == 0
        assert len(report.skipped) == 2

    def test_cancel_saves_progress(self, person_store, catalog, tmp_path):
        plan_path = tmp_path / "plan.json"
        event = threading.Event()
        job = DedupJob(person_store, cancel_event=event)
        job.plan(plan_path)
        event.set()

        report = job.execute_plan(plan_path)

        assert report.cancelled is True
        assert person_store.count() == 8
        saved = load_plan(plan_path)
        assert all(a["status"] == STATUS_PENDING for a in saved["actions"])
