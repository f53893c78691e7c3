"""
Reference remapper.

Rewrites every reference to a removed person id so it points at the
canonical id, inside the caller's transaction:

- person_documents: re-pointed, then one link per (person, document) kept
- connections: re-pointed, stored as (min, max), self-loops dropped, and
  edges that collapse onto the same (pair, type) folded into one row with
  the max strength and the union of supporting documents
- timeline_events: removed ids replaced in person_ids, duplicates dropped
- persons: removed rows deleted only after all of the above
- merged_person_ids: removed -> canonical recorded, older redirects that
  pointed at a removed id re-pointed to the canonical id

Afterwards nothing in the dependent tables references a removed id.
"""
import json
import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from api.services.resolution_errors import MergeConflict

logger = logging.getLogger(__name__)


@dataclass
class RemapStats:
    """Row counts touched per dependent table."""
    person_documents_remapped: int = 0
    person_documents_deduplicated: int = 0
    connections_remapped: int = 0
    connections_self_loops_removed: int = 0
    connections_collapsed: int = 0
    timeline_events_updated: int = 0
    persons_deleted: int = 0
    conflicts: list[MergeConflict] = field(default_factory=list)
    touched_person_ids: set[int] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "person_documents_remapped": self.person_documents_remapped,
            "person_documents_deduplicated": self.person_documents_deduplicated,
            "connections_remapped": self.connections_remapped,
            "connections_self_loops_removed": self.connections_self_loops_removed,
            "connections_collapsed": self.connections_collapsed,
            "timeline_events_updated": self.timeline_events_updated,
            "persons_deleted": self.persons_deleted,
        }


def _placeholders(ids: list[int]) -> str:
    return ",".join("?" * len(ids))


def _load_ids(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def _remap_person_documents(conn, canonical_id, removed_ids, stats: RemapStats) -> None:
    cursor = conn.execute(
        f"UPDATE person_documents SET person_id = ? WHERE person_id IN ({_placeholders(removed_ids)})",
        [canonical_id, *removed_ids],
    )
    stats.person_documents_remapped = cursor.rowcount

    cursor = conn.execute("""
        DELETE FROM person_documents
        WHERE person_id = ?
        AND id NOT IN (
            SELECT MIN(id) FROM person_documents
            WHERE person_id = ?
            GROUP BY document_id
        )
    """, (canonical_id, canonical_id))
    stats.person_documents_deduplicated = cursor.rowcount


def _remap_connections(conn, canonical_id, removed_ids, stats: RemapStats) -> None:
    removed = set(removed_ids)
    cluster_ids = [canonical_id, *removed_ids]
    ph = _placeholders(cluster_ids)
    rows = conn.execute(
        f"SELECT * FROM connections WHERE person_id_1 IN ({ph}) OR person_id_2 IN ({ph}) ORDER BY id",
        [*cluster_ids, *cluster_ids],
    ).fetchall()

    def remap(pid: int) -> int:
        return canonical_id if pid in removed else pid

    groups: dict[tuple, list[sqlite3.Row]] = defaultdict(list)
    for row in rows:
        a, b = remap(row["person_id_1"]), remap(row["person_id_2"])
        if a == b:
            conn.execute("DELETE FROM connections WHERE id = ?", (row["id"],))
            stats.connections_self_loops_removed += 1
            continue
        a, b = min(a, b), max(a, b)
        groups[(a, b, row["connection_type"])].append(row)

    for (a, b, connection_type), group in groups.items():
        stats.touched_person_ids.update((a, b))
        kept = group[0]
        strengths = [r["strength"] for r in group if r["strength"] is not None]
        strength = max(strengths) if strengths else None
        document_ids = sorted({d for r in group for d in _load_ids(r["document_ids"])})
        descriptions = [r["description"] for r in group if r["description"]]
        description = max(descriptions, key=len) if descriptions else None

        changed = (
            (kept["person_id_1"], kept["person_id_2"]) != (a, b)
            or len(group) > 1
        )
        if not changed:
            continue

        conn.execute("""
            UPDATE connections
            SET person_id_1 = ?, person_id_2 = ?, strength = ?, document_ids = ?, description = ?
            WHERE id = ?
        """, (a, b, strength, json.dumps(document_ids), description, kept["id"]))
        stats.connections_remapped += 1

        if len(group) > 1:
            dropped = [r["id"] for r in group[1:]]
            conn.execute(
                f"DELETE FROM connections WHERE id IN ({_placeholders(dropped)})", dropped
            )
            stats.connections_collapsed += len(dropped)
            conflict = MergeConflict(
                kept_connection_id=kept["id"],
                dropped_connection_ids=dropped,
                person_id_1=a,
                person_id_2=b,
                connection_type=connection_type,
                strength=strength,
            )
            stats.conflicts.append(conflict)
            logger.info(
                f"Collapsed {connection_type} edges {[kept['id'], *dropped]} between "
                f"{a} and {b} into {kept['id']} (strength {strength})"
            )


def _remap_timeline_events(conn, canonical_id, removed_ids, stats: RemapStats) -> None:
    removed = set(removed_ids)
    # Rows whose person_ids is not valid JSON are left untouched
    rows = conn.execute(f"""
        SELECT id, person_ids FROM timeline_events
        WHERE EXISTS (
            SELECT 1 FROM json_each(
                CASE WHEN json_valid(timeline_events.person_ids) THEN timeline_events.person_ids ELSE '[]' END
            )
            WHERE json_each.value IN ({_placeholders(removed_ids)})
        )
    """, removed_ids).fetchall()

    for row in rows:
        new_ids = []
        for pid in _load_ids(row["person_ids"]):
            pid = canonical_id if pid in removed else pid
            if pid not in new_ids:
                new_ids.append(pid)
        conn.execute(
            "UPDATE timeline_events SET person_ids = ? WHERE id = ?",
            (json.dumps(new_ids), row["id"]),
        )
        stats.timeline_events_updated += 1


def remap_references(
    conn: sqlite3.Connection,
    canonical_id: int,
    removed_ids: list[int],
    rule: Optional[str] = None,
) -> RemapStats:
    """
    Point every reference to removed_ids at canonical_id and delete the removed rows.

    Must run inside a transaction; the caller commits or rolls back.
    """
    stats = RemapStats()
    removed_ids = sorted(set(removed_ids) - {canonical_id})
    if not removed_ids:
        return stats

    _remap_person_documents(conn, canonical_id, removed_ids, stats)
    _remap_connections(conn, canonical_id, removed_ids, stats)
    _remap_timeline_events(conn, canonical_id, removed_ids, stats)

    ph = _placeholders(removed_ids)
    cursor = conn.execute(f"DELETE FROM persons WHERE id IN ({ph})", removed_ids)
    stats.persons_deleted = cursor.rowcount

    merged_at = datetime.now(timezone.utc).isoformat()
    conn.execute(
        f"UPDATE merged_person_ids SET canonical_id = ? WHERE canonical_id IN ({ph})",
        [canonical_id, *removed_ids],
    )
    conn.executemany("""
        INSERT OR REPLACE INTO merged_person_ids (removed_id, canonical_id, merged_at, rule)
        VALUES (?, ?, ?, ?)
    """, [(pid, canonical_id, merged_at, rule) for pid in removed_ids])

    stats.touched_person_ids.add(canonical_id)
    stats.touched_person_ids -= set(removed_ids)
    return stats


def find_references(conn: sqlite3.Connection, person_ids: list[int]) -> dict[str, int]:
    """Count rows in each dependent table still referencing any of person_ids."""
    ids = list(person_ids)
    if not ids:
        return {}
    ph = _placeholders(ids)
    return {
        "persons": conn.execute(f"SELECT COUNT(*) FROM persons WHERE id IN ({ph})", ids).fetchone()[0],
        "person_documents": conn.execute(
            f"SELECT COUNT(*) FROM person_documents WHERE person_id IN ({ph})", ids
        ).fetchone()[0],
        "connections": conn.execute(
            f"SELECT COUNT(*) FROM connections WHERE person_id_1 IN ({ph}) OR person_id_2 IN ({ph})",
            [*ids, *ids],
        ).fetchone()[0],
        "timeline_events": conn.execute(f"""
            SELECT COUNT(*) FROM timeline_events
            WHERE EXISTS (
                SELECT 1 FROM json_each(
                    CASE WHEN json_valid(timeline_events.person_ids) THEN timeline_events.person_ids ELSE '[]' END
                )
                WHERE json_each.value IN ({ph})
            )
        """, ids).fetchone()[0],
    }
