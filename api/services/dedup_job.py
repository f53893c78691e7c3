"""
Batch dedup job over the whole person catalog.

run()           build clusters, merge every confirmed one, queue ambiguous
                ones for review; repeat until a round merges nothing
plan()          dry run: write the merges that run() would do to a JSON plan
                file and touch nothing else
execute_plan()  carry out the pending actions of a plan, skipping any whose
                members vanished or changed since it was written, and save
                per-action status back to the file

Each cluster merges in its own transaction. A conflict or database error on
one cluster is logged and counted; the job moves on to the next. The cancel
event is checked between buckets and between clusters, never mid-merge.
"""
import json
import logging
import os
import shutil
import sqlite3
import tempfile
import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from api.services.cluster_builder import EquivalenceCluster, MatchEdge, build_clusters
from api.services.merge_policy import plan_merge
from api.services.person_merger import merge_cluster
from api.services.person_store import PersonStore
from api.services.resolution_errors import ConcurrencyConflict, DedupCancelled
from api.services.review_queue import ReviewQueueStore
from config.settings import settings

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_EXECUTED = "executed"
STATUS_SKIPPED = "skipped"
STATUS_REJECTED = "rejected"


@dataclass
class DedupReport:
    """Summary of one dedup run or plan execution."""
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    rounds: int = 0
    merged_clusters: int = 0
    removed_records: int = 0
    ambiguous_clusters: int = 0
    skipped: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    converged: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "rounds": self.rounds,
            "merged_clusters": self.merged_clusters,
            "removed_records": self.removed_records,
            "ambiguous_clusters": self.ambiguous_clusters,
            "skipped": list(self.skipped),
            "failed": list(self.failed),
            "converged": self.converged,
            "cancelled": self.cancelled,
        }


def save_plan(plan: dict, path: Path) -> None:
    """Write a plan with temp file + move so a crash never leaves half a file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path = tempfile.mkstemp(suffix=".json", dir=path.parent)
    try:
        with os.fdopen(temp_fd, "w") as f:
            json.dump(plan, f, indent=2)
        shutil.move(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def load_plan(path: Path) -> dict:
    with open(path) as f:
        return json.load(f)


class DedupJob:
    """Offline cluster-and-merge over the whole catalog."""

    def __init__(
        self,
        store: PersonStore,
        review_queue: Optional[ReviewQueueStore] = None,
        cancel_event: Optional[threading.Event] = None,
        max_rounds: Optional[int] = None,
    ):
        self.store = store
        self.review_queue = review_queue or ReviewQueueStore(store.db_path)
        self.cancel_event = cancel_event or threading.Event()
        self.max_rounds = max_rounds or settings.max_dedup_rounds

    def cancel(self) -> None:
        """Ask the job to stop at the next checkpoint."""
        self.cancel_event.set()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise DedupCancelled("Dedup job cancelled")

    def _merge_one(self, cluster: EquivalenceCluster, report: DedupReport, canonical_id: Optional[int] = None) -> bool:
        ids = list(cluster.member_ids)
        try:
            result = merge_cluster(cluster, self.store, canonical_id=canonical_id)
        except ConcurrencyConflict as e:
            logger.warning(f"Skipped cluster {ids}: {e}")
            report.skipped.append({"member_ids": ids, "reason": str(e)})
            return False
        except sqlite3.Error as e:
            logger.error(f"Failed to merge cluster {ids}: {e}")
            report.failed.append({"member_ids": ids, "reason": str(e)})
            return False

        report.merged_clusters += 1
        report.removed_records += len(result.removed_ids)
        self.review_queue.mark_stale_for_persons(result.removed_ids)
        return True

    def run(self) -> DedupReport:
        """
        Merge every confirmed cluster until the catalog reaches a fixed point.

        Returns:
            DedupReport (cancelled=True if stopped at a checkpoint)
        """
        report = DedupReport()
        logger.info(f"Starting dedup run {report.batch_id[:8]} over {self.store.count()} persons")
        try:
            for round_no in range(1, self.max_rounds + 1):
                report.rounds = round_no
                clusters = build_clusters(self.store.get_all(), cancel_event=self.cancel_event)

                for cluster in clusters.ambiguous:
                    self.review_queue.add_ambiguous(cluster, batch_id=report.batch_id)
                report.ambiguous_clusters = len(clusters.ambiguous)

                merged = 0
                for cluster in clusters.confirmed:
                    self._check_cancelled()
                    if self._merge_one(cluster, report):
                        merged += 1

                logger.info(f"Round {round_no}: merged {merged} of {len(clusters.confirmed)} clusters")
                if merged == 0:
                    report.converged = True
                    break
        except DedupCancelled:
            report.cancelled = True
            logger.warning(f"Dedup run {report.batch_id[:8]} cancelled after {report.merged_clusters} merges")

        if not report.converged and not report.cancelled:
            logger.warning(f"Dedup did not converge within {self.max_rounds} rounds")
        logger.info(
            f"Dedup run {report.batch_id[:8]} done: {report.merged_clusters} clusters merged, "
            f"{report.removed_records} records removed, {len(report.skipped)} skipped, "
            f"{len(report.failed)} failed, {report.ambiguous_clusters} ambiguous"
        )
        return report

    def plan(self, path: Optional[Path] = None) -> dict:
        """
        Dry run: compute the merges without writing to the catalog.

        Args:
            path: Where to write the plan (default settings.plan_path)

        Returns:
            The plan dict that was written. A cancelled dry run writes
            nothing and returns an empty plan with "cancelled" set.
        """
        path = Path(path or settings.plan_path)
        records = self.store.get_all()
        by_id = {r.id: r for r in records}
        try:
            clusters = build_clusters(records, cancel_event=self.cancel_event)
        except DedupCancelled:
            logger.warning(f"Dry run cancelled; no plan written to {path}")
            return {
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "personCountBefore": len(records),
                "cancelled": True,
                "summary": {"totalActions": 0, "byRule": {}, "ambiguousClusters": 0},
                "actions": [],
                "ambiguous": [],
            }

        actions = []
        for cluster in clusters.confirmed:
            merge = plan_merge([by_id[pid] for pid in cluster.member_ids])
            canonical = by_id[merge.canonical_id]
            actions.append({
                "id": len(actions) + 1,
                "pass": 1,
                "type": "merge",
                "reason": ",".join(cluster.rules),
                "canonical": {"id": canonical.id, "name": canonical.display_name},
                "duplicates": [{"id": pid, "name": by_id[pid].display_name} for pid in merge.removed_ids],
                "aliases": merge.aliases,
                "versions": {str(pid): v for pid, v in cluster.versions.items()},
                "evidence": [e.to_dict() for e in cluster.edges],
                "status": STATUS_PENDING,
            })

        plan = {
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "personCountBefore": len(records),
            "cancelled": False,
            "summary": {
                "totalActions": len(actions),
                "byRule": dict(Counter(a["reason"] for a in actions)),
                "ambiguousClusters": len(clusters.ambiguous),
            },
            "actions": actions,
            "ambiguous": [c.to_dict() for c in clusters.ambiguous],
        }
        save_plan(plan, path)
        logger.info(f"Wrote dedup plan with {len(actions)} merge(s) to {path}")
        return plan

    def execute_plan(self, path: Optional[Path] = None) -> DedupReport:
        """
        Carry out the pending actions of a saved plan.

        Only "pending" actions run; a reviewer can set an action to
        "rejected" in the file to keep it out. Actions whose canonical or
        duplicates are gone, or whose members' versions moved since the plan
        was written, are marked skipped.
        Progress is saved back to the plan file even when cancelled.
        """
        path = Path(path or settings.plan_path)
        plan = load_plan(path)
        report = DedupReport()
        pending = [a for a in plan.get("actions", []) if a.get("status") == STATUS_PENDING]

        drift = abs(self.store.count() - plan.get("personCountBefore", 0))
        if drift:
            logger.warning(
                f"Person count drifted by {drift} since the plan was written; "
                f"stale actions will be skipped"
            )
        rejected = sum(1 for a in plan.get("actions", []) if a.get("status") == STATUS_REJECTED)
        logger.info(
            f"Executing dedup plan {path}: {len(pending)} pending action(s), "
            f"{rejected} rejected by review"
        )

        try:
            for action in pending:
                self._check_cancelled()
                self._execute_action(action, report)
        except DedupCancelled:
            report.cancelled = True
            logger.warning("Plan execution cancelled, saving progress")
        finally:
            save_plan(plan, path)
            logger.info(f"Plan updated: {path}")

        report.converged = not report.cancelled
        return report

    def _execute_action(self, action: dict, report: DedupReport) -> None:
        canonical_id = action["canonical"]["id"]
        duplicate_ids = [d["id"] for d in action.get("duplicates", [])]
        planned_versions = {int(k): v for k, v in (action.get("versions") or {}).items()}

        current = self.store.get_many([canonical_id, *duplicate_ids])
        if canonical_id not in current:
            self._skip(action, report, f"canonical {canonical_id} gone")
            return
        existing_dups = [pid for pid in duplicate_ids if pid in current]
        if not existing_dups:
            self._skip(action, report, "duplicates already gone")
            return

        member_ids = tuple(sorted([canonical_id, *existing_dups]))
        changed = [
            pid for pid in member_ids
            if pid in planned_versions and current[pid].version != planned_versions[pid]
        ]
        if changed:
            self._skip(action, report, f"members {changed} changed since plan")
            return

        cluster = EquivalenceCluster(
            member_ids=member_ids,
            confirmed=True,
            edges=[MatchEdge(e["id_a"], e["id_b"], e["rule"]) for e in action.get("evidence", [])],
            versions={pid: current[pid].version for pid in member_ids},
            names={pid: current[pid].display_name for pid in member_ids},
        )
        if self._merge_one(cluster, report, canonical_id=canonical_id):
            action["status"] = STATUS_EXECUTED
            logger.info(f"[MERGE] #{action['id']} {existing_dups} -> {canonical_id}")
        else:
            action["status"] = STATUS_SKIPPED

    def _skip(self, action: dict, report: DedupReport, reason: str) -> None:
        action["status"] = STATUS_SKIPPED
        report.skipped.append({"action_id": action["id"], "reason": reason})
        logger.info(f"[SKIP] #{action['id']} merge: {reason}")
