"""
Person Store - SQLite adapter for the person catalog.

Owns the persons table and every table that references a person id:

    person_documents   person <-> document links
    connections        relationship edges between two persons
    timeline_events    events with a JSON list of person ids
    merged_person_ids  removed id -> surviving id, for redirects

persons.normalized_name is UNIQUE. The online path claims the key for every
record it creates, so two concurrent inserts of the same name cannot both
succeed. Rows loaded in bulk (import_record) claim the key only if it is
free; pre-existing duplicates are left for the batch job to merge.
"""
import json
import logging
import sqlite3
import types
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from api.services.name_normalizer import normalize_name
from api.services.person_record import PersonRecord
from config.settings import settings

logger = logging.getLogger(__name__)

MergeListener = Callable[[object], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dedupe_aliases(aliases: list[str], display_name: str) -> list[str]:
    """Drop blanks, the display name itself, and case-insensitive repeats."""
    seen = {display_name.casefold()}
    result = []
    for alias in aliases:
        alias = (alias or "").strip()
        if not alias or alias.casefold() in seen:
            continue
        seen.add(alias.casefold())
        result.append(alias)
    return result


class PersonStore:
    """SQLite-backed store for persons and their dependent tables."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.db_path)
        self._merge_listeners: list[Callable[[], Optional[MergeListener]]] = []
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Autocommit connection; multi-statement writes go through transaction()."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_connection()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS persons (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    normalized_name TEXT,
                    aliases TEXT,
                    role TEXT,
                    category TEXT,
                    description TEXT,
                    document_count INTEGER DEFAULT 0,
                    connection_count INTEGER DEFAULT 0,
                    version INTEGER DEFAULT 1,
                    updated_at TEXT
                );
                CREATE UNIQUE INDEX IF NOT EXISTS idx_persons_normalized_name
                    ON persons(normalized_name);

                CREATE TABLE IF NOT EXISTS person_documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    person_id INTEGER NOT NULL,
                    document_id INTEGER NOT NULL,
                    context TEXT,
                    mention_type TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_person_documents_person
                    ON person_documents(person_id);
                CREATE INDEX IF NOT EXISTS idx_person_documents_document
                    ON person_documents(document_id);

                CREATE TABLE IF NOT EXISTS connections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    person_id_1 INTEGER NOT NULL,
                    person_id_2 INTEGER NOT NULL,
                    connection_type TEXT NOT NULL DEFAULT 'associated',
                    description TEXT,
                    strength REAL DEFAULT 1,
                    document_ids TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_connections_person_1
                    ON connections(person_id_1);
                CREATE INDEX IF NOT EXISTS idx_connections_person_2
                    ON connections(person_id_2);

                CREATE TABLE IF NOT EXISTS timeline_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT,
                    title TEXT,
                    description TEXT,
                    category TEXT,
                    person_ids TEXT,
                    document_ids TEXT,
                    significance INTEGER DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS merged_person_ids (
                    removed_id INTEGER PRIMARY KEY,
                    canonical_id INTEGER NOT NULL,
                    merged_at TEXT,
                    rule TEXT
                );
            """)
        finally:
            conn.close()

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        BEGIN IMMEDIATE takes the write lock up front, so versions read inside
        the block cannot change before COMMIT.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Persons
    # ------------------------------------------------------------------

    def get_all(self) -> list[PersonRecord]:
        """Get every person, ordered by id."""
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT * FROM persons ORDER BY id").fetchall()
            return [PersonRecord.from_row(row) for row in rows]
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM persons").fetchone()[0]
        finally:
            conn.close()

    def get_by_id(self, person_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[PersonRecord]:
        """Get a person by id, or None if absent (or merged away)."""
        own = conn is None
        conn = conn or self._get_connection()
        try:
            row = conn.execute("SELECT * FROM persons WHERE id = ?", (person_id,)).fetchone()
            return PersonRecord.from_row(row) if row else None
        finally:
            if own:
                conn.close()

    def get_many(self, person_ids, conn: Optional[sqlite3.Connection] = None) -> dict[int, PersonRecord]:
        """Get several persons at once, keyed by id. Missing ids are omitted."""
        ids = list(person_ids)
        if not ids:
            return {}
        own = conn is None
        conn = conn or self._get_connection()
        try:
            placeholders = ",".join("?" * len(ids))
            rows = conn.execute(
                f"SELECT * FROM persons WHERE id IN ({placeholders})", ids
            ).fetchall()
            return {row["id"]: PersonRecord.from_row(row) for row in rows}
        finally:
            if own:
                conn.close()

    def get_by_normalized_name(
        self, key: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[PersonRecord]:
        """Get the person owning a normalized-name key."""
        if not key:
            return None
        own = conn is None
        conn = conn or self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM persons WHERE normalized_name = ?", (key,)
            ).fetchone()
            return PersonRecord.from_row(row) if row else None
        finally:
            if own:
                conn.close()

    def _insert(self, conn: sqlite3.Connection, record: PersonRecord, key: Optional[str]) -> PersonRecord:
        record.aliases = _dedupe_aliases(record.aliases, record.display_name)
        record.updated_at = _now()
        cursor = conn.execute("""
            INSERT INTO persons
            (name, normalized_name, aliases, role, category, description,
             document_count, connection_count, version, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.display_name,
            key,
            json.dumps(record.aliases) if record.aliases else None,
            record.role,
            record.category,
            record.description,
            record.document_count,
            record.connection_count,
            record.version,
            record.updated_at,
        ))
        record.id = cursor.lastrowid
        return record

    def add(self, record: PersonRecord, conn: Optional[sqlite3.Connection] = None) -> PersonRecord:
        """
        Insert a new person and claim its normalized-name key.

        Raises:
            sqlite3.IntegrityError: the key already belongs to another person
        """
        key = normalize_name(record.display_name) or None
        if conn is not None:
            return self._insert(conn, record, key)
        with self.transaction() as tx:
            return self._insert(tx, record, key)

    def import_record(self, record: PersonRecord) -> PersonRecord:
        """
        Bulk-load a person without enforcing name uniqueness.

        The normalized-name key is claimed only when free; duplicates are kept
        as separate rows for the batch job to resolve.
        """
        key = normalize_name(record.display_name) or None
        with self.transaction() as conn:
            if key and conn.execute(
                "SELECT 1 FROM persons WHERE normalized_name = ?", (key,)
            ).fetchone():
                key = None
            return self._insert(conn, record, key)

    def update(self, record: PersonRecord, conn: Optional[sqlite3.Connection] = None) -> PersonRecord:
        """Write a record's attributes back and bump its version."""
        record.aliases = _dedupe_aliases(record.aliases, record.display_name)
        record.version += 1
        record.updated_at = _now()
        params = (
            record.display_name,
            json.dumps(record.aliases) if record.aliases else None,
            record.role,
            record.category,
            record.description,
            record.version,
            record.updated_at,
            record.id,
        )
        sql = """
            UPDATE persons
            SET name = ?, aliases = ?, role = ?, category = ?, description = ?,
                version = ?, updated_at = ?
            WHERE id = ?
        """
        if conn is not None:
            conn.execute(sql, params)
        else:
            with self.transaction() as tx:
                tx.execute(sql, params)
        return record

    def add_aliases(self, person_id: int, aliases: list[str]) -> Optional[PersonRecord]:
        """
        Attach curated aliases to a person.

        Aliases only widen the matcher's candidate set; they never rename the
        record or decide a canonical on their own.
        """
        with self.transaction() as conn:
            record = self.get_by_id(person_id, conn)
            if record is None:
                return None
            before = len(record.aliases)
            record.aliases = _dedupe_aliases(record.aliases + list(aliases), record.display_name)
            if len(record.aliases) == before:
                return record
            self.update(record, conn)
        logger.info(f"Added {len(record.aliases) - before} alias(es) to person {person_id}")
        return record

    # ------------------------------------------------------------------
    # Dependent tables
    # ------------------------------------------------------------------

    def link_document(
        self,
        person_id: int,
        document_id: int,
        context: Optional[str] = None,
        mention_type: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """
        Link a person to a document (once) and refresh the person's counts.

        Returns:
            True if a new link was created
        """
        def _link(c: sqlite3.Connection) -> bool:
            exists = c.execute(
                "SELECT 1 FROM person_documents WHERE person_id = ? AND document_id = ?",
                (person_id, document_id),
            ).fetchone()
            if exists:
                return False
            c.execute("""
                INSERT INTO person_documents (person_id, document_id, context, mention_type)
                VALUES (?, ?, ?, ?)
            """, (person_id, document_id, context, mention_type))
            self.recompute_counts(c, [person_id])
            return True

        if conn is not None:
            return _link(conn)
        with self.transaction() as tx:
            return _link(tx)

    def add_connection(
        self,
        person_id_1: int,
        person_id_2: int,
        connection_type: str = "associated",
        description: Optional[str] = None,
        strength: float = 1,
        document_ids: Optional[list[int]] = None,
    ) -> int:
        """Record a relationship edge, stored with the smaller person id first."""
        a, b = sorted((person_id_1, person_id_2))
        with self.transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO connections
                (person_id_1, person_id_2, connection_type, description, strength, document_ids)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (a, b, connection_type, description, strength, json.dumps(document_ids or [])))
            self.recompute_counts(conn, [a, b])
            return cursor.lastrowid

    def add_timeline_event(
        self,
        date: str,
        title: str,
        person_ids: list[int],
        description: Optional[str] = None,
        category: Optional[str] = None,
        document_ids: Optional[list[int]] = None,
        significance: int = 1,
    ) -> int:
        """Record a timeline event mentioning one or more persons."""
        conn = self._get_connection()
        try:
            cursor = conn.execute("""
                INSERT INTO timeline_events
                (date, title, description, category, person_ids, document_ids, significance)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                date, title, description, category,
                json.dumps(list(person_ids)), json.dumps(document_ids or []), significance,
            ))
            return cursor.lastrowid
        finally:
            conn.close()

    def get_person_documents(self, person_id: Optional[int] = None) -> list[dict]:
        conn = self._get_connection()
        try:
            if person_id is None:
                rows = conn.execute("SELECT * FROM person_documents ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM person_documents WHERE person_id = ? ORDER BY id", (person_id,)
                ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_connections(self, person_id: Optional[int] = None) -> list[dict]:
        conn = self._get_connection()
        try:
            if person_id is None:
                rows = conn.execute("SELECT * FROM connections ORDER BY id").fetchall()
            else:
                rows = conn.execute("""
                    SELECT * FROM connections
                    WHERE person_id_1 = ? OR person_id_2 = ?
                    ORDER BY id
                """, (person_id, person_id)).fetchall()
            result = []
            for row in rows:
                item = dict(row)
                item["document_ids"] = json.loads(row["document_ids"]) if row["document_ids"] else []
                result.append(item)
            return result
        finally:
            conn.close()

    def get_timeline_events(self) -> list[dict]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT * FROM timeline_events ORDER BY id").fetchall()
            result = []
            for row in rows:
                item = dict(row)
                item["person_ids"] = json.loads(row["person_ids"]) if row["person_ids"] else []
                item["document_ids"] = json.loads(row["document_ids"]) if row["document_ids"] else []
                result.append(item)
            return result
        finally:
            conn.close()

    def recompute_counts(self, conn: sqlite3.Connection, person_ids) -> None:
        """Recompute document/connection counts from the link tables."""
        for person_id in person_ids:
            conn.execute("""
                UPDATE persons
                SET document_count = (
                        SELECT COUNT(DISTINCT document_id) FROM person_documents
                        WHERE person_id = ?
                    ),
                    connection_count = (
                        SELECT COUNT(*) FROM connections
                        WHERE person_id_1 = ? OR person_id_2 = ?
                    )
                WHERE id = ?
            """, (person_id, person_id, person_id, person_id))

    # ------------------------------------------------------------------
    # Merge redirects
    # ------------------------------------------------------------------

    def get_canonical_id(self, person_id: int) -> int:
        """
        Follow the merge chain from a (possibly removed) id to the survivor.

        Returns the id itself when it was never merged away.
        """
        conn = self._get_connection()
        try:
            visited = set()
            while person_id not in visited:
                visited.add(person_id)
                row = conn.execute(
                    "SELECT canonical_id FROM merged_person_ids WHERE removed_id = ?",
                    (person_id,),
                ).fetchone()
                if row is None:
                    break
                person_id = row["canonical_id"]
            return person_id
        finally:
            conn.close()

    def get_merged_ids(self) -> dict[int, int]:
        """The raw redirect map (removed id -> canonical id at merge time)."""
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT removed_id, canonical_id FROM merged_person_ids").fetchall()
            return {row["removed_id"]: row["canonical_id"] for row in rows}
        finally:
            conn.close()

    def merge_watermark(self) -> tuple[int, Optional[str]]:
        """
        Changes whenever any process records a merge.

        Listeners only hear about merges made through this instance; caches
        compare this value to notice merges made by other connections.
        """
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT COUNT(*), MAX(merged_at) FROM merged_person_ids").fetchone()
            return row[0], row[1]
        finally:
            conn.close()

    def add_merge_listener(self, listener: MergeListener) -> None:
        """
        Register a callback invoked with each MergeResult after commit.

        Bound methods are held weakly, so a cache that goes out of scope
        drops off the store without an explicit remove_merge_listener().
        """
        if isinstance(listener, types.MethodType):
            ref = weakref.WeakMethod(listener)
        else:
            ref = lambda: listener
        self._merge_listeners.append(ref)
        self._prune_listeners()

    def remove_merge_listener(self, listener: MergeListener) -> None:
        self._merge_listeners = [ref for ref in self._merge_listeners if ref() not in (None, listener)]

    def _prune_listeners(self) -> None:
        self._merge_listeners = [ref for ref in self._merge_listeners if ref() is not None]

    @property
    def merge_listener_count(self) -> int:
        self._prune_listeners()
        return len(self._merge_listeners)

    def notify_merged(self, merge_result) -> None:
        for ref in list(self._merge_listeners):
            listener = ref()
            if listener is None:
                continue
            try:
                listener(merge_result)
            except Exception as e:
                logger.error(f"Merge listener {listener!r} failed: {e}")
        self._prune_listeners()


# Singleton instance
_person_store: Optional[PersonStore] = None


def get_person_store(db_path: Optional[Path] = None) -> PersonStore:
    """Get the singleton PersonStore instance."""
    global _person_store
    if _person_store is None:
        _person_store = PersonStore(db_path)
    return _person_store


def reset_person_store() -> None:
    """Drop the singleton (tests, or after changing RESOLVER_DB_PATH)."""
    global _person_store
    _person_store = None
