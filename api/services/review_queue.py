"""
Ambiguous cluster review queue.

Holds ambiguous clusters - connected groups of records where at least one
pair does not match - until an external curator decides what they are.
The engine itself never merges them; a curator either merges some members
by hand (scripts/dedupe_people.py --primary/--secondary) or marks the
cluster as distinct people.

The queue is populated by the batch dedup job and read via
GET /api/people/review.
"""
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from api.services.cluster_builder import EquivalenceCluster
from config.settings import settings

logger = logging.getLogger(__name__)


class ReviewStatus(str, Enum):
    """Status of a review item."""
    PENDING = "pending"
    MERGED = "merged"  # Curator merged (some of) the members
    DISTINCT = "distinct"  # Curator confirmed these are different people
    STALE = "stale"  # A member was merged or deleted since queueing


def cluster_key(member_ids) -> str:
    return ",".join(str(pid) for pid in sorted(member_ids))


@dataclass
class ReviewItem:
    """An ambiguous cluster awaiting review."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    member_ids: list[int] = field(default_factory=list)
    member_names: dict[int, str] = field(default_factory=dict)
    missing_pairs: list[list[int]] = field(default_factory=list)
    evidence: Optional[dict] = None  # edges and rules that linked the members
    reason: str = ""

    status: str = ReviewStatus.PENDING.value
    reviewed_at: Optional[datetime] = None
    batch_id: Optional[str] = None  # Groups items from the same dedup run
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "member_ids": list(self.member_ids),
            "member_names": {str(k): v for k, v in self.member_names.items()},
            "missing_pairs": [list(p) for p in self.missing_pairs],
            "evidence": self.evidence,
            "reason": self.reason,
            "status": self.status,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "batch_id": self.batch_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReviewItem":
        """Create from database row."""
        evidence = None
        if row["evidence"]:
            try:
                evidence = json.loads(row["evidence"])
            except json.JSONDecodeError:
                pass

        reviewed_at = None
        if row["reviewed_at"]:
            try:
                reviewed_at = datetime.fromisoformat(row["reviewed_at"])
            except ValueError:
                pass

        created_at = datetime.now(timezone.utc)
        if row["created_at"]:
            try:
                created_at = datetime.fromisoformat(row["created_at"])
            except ValueError:
                pass

        names = json.loads(row["member_names"]) if row["member_names"] else {}
        return cls(
            id=row["id"],
            member_ids=json.loads(row["member_ids"]),
            member_names={int(k): v for k, v in names.items()},
            missing_pairs=json.loads(row["missing_pairs"]) if row["missing_pairs"] else [],
            evidence=evidence,
            reason=row["reason"],
            status=row["status"],
            reviewed_at=reviewed_at,
            batch_id=row["batch_id"],
            created_at=created_at,
        )


class ReviewQueueStore:
    """SQLite-backed store for the ambiguous-cluster review queue."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store (same database file as the person catalog)."""
        self.db_path = Path(db_path or settings.db_path)
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        """Create the review queue table if it doesn't exist."""
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ambiguous_cluster_queue (
                    id TEXT PRIMARY KEY,
                    cluster_key TEXT NOT NULL,
                    member_ids TEXT NOT NULL,
                    member_names TEXT,
                    missing_pairs TEXT,
                    evidence TEXT,
                    reason TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    reviewed_at TIMESTAMP,
                    batch_id TEXT,
                    created_at TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_ambiguous_queue_status
                ON ambiguous_cluster_queue(status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_ambiguous_queue_cluster
                ON ambiguous_cluster_queue(cluster_key)
            """)
            conn.commit()
        finally:
            conn.close()

    def add_ambiguous(
        self,
        cluster: EquivalenceCluster,
        batch_id: Optional[str] = None,
    ) -> ReviewItem:
        """
        Queue an ambiguous cluster, unless the same cluster is already pending.

        Args:
            cluster: The non-clique component found by the cluster builder
            batch_id: Optional id of the dedup run that found it

        Returns:
            The new (or already pending) ReviewItem
        """
        key = cluster_key(cluster.member_ids)
        conn = self._get_conn()
        try:
            existing = conn.execute("""
                SELECT * FROM ambiguous_cluster_queue
                WHERE status = 'pending' AND cluster_key = ?
            """, (key,)).fetchone()
            if existing:
                logger.debug(f"Ambiguous cluster already queued: {key}")
                return ReviewItem.from_row(existing)

            item = ReviewItem(
                member_ids=list(cluster.member_ids),
                member_names=dict(cluster.names),
                missing_pairs=[list(p) for p in cluster.missing_pairs],
                evidence={"edges": [e.to_dict() for e in cluster.edges]},
                reason=(
                    f"{len(cluster.missing_pairs)} of "
                    f"{len(cluster.member_ids) * (len(cluster.member_ids) - 1) // 2} "
                    f"pairs do not match"
                ),
                batch_id=batch_id,
            )
            conn.execute("""
                INSERT INTO ambiguous_cluster_queue
                (id, cluster_key, member_ids, member_names, missing_pairs, evidence,
                 reason, status, reviewed_at, batch_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                item.id,
                key,
                json.dumps(item.member_ids),
                json.dumps({str(k): v for k, v in item.member_names.items()}),
                json.dumps(item.missing_pairs),
                json.dumps(item.evidence) if item.evidence else None,
                item.reason,
                item.status,
                None,
                item.batch_id,
                item.created_at.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Queued ambiguous cluster {item.member_ids} for review ({item.reason})")
        return item

    def get_by_id(self, item_id: str) -> Optional[ReviewItem]:
        """Get a review item by ID."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM ambiguous_cluster_queue WHERE id = ?", (item_id,)
            ).fetchone()
        finally:
            conn.close()
        return ReviewItem.from_row(row) if row else None

    def get_pending(self, limit: int = 50, offset: int = 0) -> list[ReviewItem]:
        """Pending items, oldest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute("""
                SELECT * FROM ambiguous_cluster_queue
                WHERE status = 'pending'
                ORDER BY created_at ASC, cluster_key ASC
                LIMIT ? OFFSET ?
            """, (limit, offset)).fetchall()
        finally:
            conn.close()
        return [ReviewItem.from_row(row) for row in rows]

    def mark_reviewed(self, item_id: str, action: str) -> Optional[ReviewItem]:
        """
        Record a curator's decision.

        Args:
            item_id: The review item ID
            action: 'merged', 'distinct' or 'stale'

        Returns:
            The updated ReviewItem, or None if not found
        """
        valid_actions = {s.value for s in ReviewStatus if s != ReviewStatus.PENDING}
        if action not in valid_actions:
            raise ValueError(f"Invalid action: {action}. Must be one of {sorted(valid_actions)}")

        conn = self._get_conn()
        try:
            conn.execute("""
                UPDATE ambiguous_cluster_queue
                SET status = ?, reviewed_at = ?
                WHERE id = ?
            """, (action, datetime.now(timezone.utc).isoformat(), item_id))
            conn.commit()
            row = conn.execute(
                "SELECT * FROM ambiguous_cluster_queue WHERE id = ?", (item_id,)
            ).fetchone()
        finally:
            conn.close()

        if row:
            logger.info(f"Marked review item {item_id[:8]} as {action}")
            return ReviewItem.from_row(row)
        return None

    def mark_stale_for_persons(self, person_ids) -> int:
        """
        Retire pending items that mention any of person_ids.

        Called after a merge removes records, since the queued cluster no
        longer describes the catalog.
        """
        ids = {int(pid) for pid in person_ids}
        if not ids:
            return 0
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT id, member_ids FROM ambiguous_cluster_queue WHERE status = 'pending'"
            ).fetchall()
            stale = [row["id"] for row in rows if ids & set(json.loads(row["member_ids"]))]
            now = datetime.now(timezone.utc).isoformat()
            conn.executemany(
                "UPDATE ambiguous_cluster_queue SET status = 'stale', reviewed_at = ? WHERE id = ?",
                [(now, item_id) for item_id in stale],
            )
            conn.commit()
        finally:
            conn.close()

        if stale:
            logger.info(f"Retired {len(stale)} stale review item(s)")
        return len(stale)

    def get_stats(self) -> dict:
        """Counts by status."""
        conn = self._get_conn()
        try:
            rows = conn.execute("""
                SELECT status, COUNT(*) as count
                FROM ambiguous_cluster_queue
                GROUP BY status
            """).fetchall()
        finally:
            conn.close()
        by_status = {row["status"]: row["count"] for row in rows}
        return {
            "total_pending": by_status.get(ReviewStatus.PENDING.value, 0),
            "by_status": by_status,
        }


# Singleton instance
_review_queue_store: Optional[ReviewQueueStore] = None


def get_review_queue_store() -> ReviewQueueStore:
    """Get the singleton ReviewQueueStore instance."""
    global _review_queue_store
    if _review_queue_store is None:
        _review_queue_store = ReviewQueueStore()
    return _review_queue_store


def reset_review_queue_store() -> None:
    global _review_queue_store
    _review_queue_store = None
