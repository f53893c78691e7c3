"""
Read-through cache of the person catalog.

Lookups on the online path and free-text search need the whole catalog
blocked by name key. Loading it from SQLite for every mention is too slow,
so PersonCache keeps one snapshot with a TTL. Merges and inserts invalidate
it: it registers itself as a merge listener on the store, and reloads when
the store's merge watermark moves (merges run by the batch CLI use their
own store instance).
"""
import logging
import threading
import time
from collections import defaultdict
from typing import Optional

from api.services.cluster_builder import blocking_keys
from api.services.person_matcher import candidate_names
from api.services.person_record import PersonRecord
from api.services.person_store import PersonStore, get_person_store
from config.settings import settings

logger = logging.getLogger(__name__)


class PersonCache:
    """Catalog snapshot plus a blocking-key index over it."""

    def __init__(self, store: PersonStore, ttl_seconds: Optional[float] = None):
        self.store = store
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._lock = threading.RLock()
        self._records: dict[int, PersonRecord] = {}
        self._index: dict[str, set[int]] = defaultdict(set)
        self._loaded_at: Optional[float] = None
        self._watermark = None
        store.add_merge_listener(self._on_merge)

    def _on_merge(self, merge_result) -> None:
        self.invalidate()

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None
            self._records = {}
            self._index = defaultdict(set)
        logger.debug("Person cache invalidated")

    @property
    def is_loaded(self) -> bool:
        return self._loaded_at is not None

    def _expired(self) -> bool:
        if self._loaded_at is None:
            return True
        if (time.monotonic() - self._loaded_at) > self.ttl_seconds:
            return True
        # Merges committed through another store instance or process
        return self.store.merge_watermark() != self._watermark

    def _ensure_loaded(self) -> None:
        with self._lock:
            if not self._expired():
                return
            watermark = self.store.merge_watermark()
            records = self.store.get_all()
            self._records = {}
            self._index = defaultdict(set)
            for record in records:
                self._add(record)
            self._loaded_at = time.monotonic()
            self._watermark = watermark
            logger.debug(f"Person cache loaded {len(records)} records")

    def _add(self, record: PersonRecord) -> None:
        self._records[record.id] = record
        for key in blocking_keys(candidate_names(record)):
            self._index[key].add(record.id)

    def get_all(self) -> list[PersonRecord]:
        self._ensure_loaded()
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.id)

    def get(self, person_id: int) -> Optional[PersonRecord]:
        self._ensure_loaded()
        with self._lock:
            return self._records.get(person_id)

    def candidates_for(self, record) -> list[PersonRecord]:
        """Cached records sharing at least one blocking key with record (or a name)."""
        keys = blocking_keys(candidate_names(record))
        self._ensure_loaded()
        with self._lock:
            ids = set()
            for key in keys:
                ids.update(self._index.get(key, ()))
            return [self._records[pid] for pid in sorted(ids)]

    def put(self, record: PersonRecord) -> None:
        """Add or refresh one record without reloading everything."""
        with self._lock:
            if self._loaded_at is None:
                return
            old = self._records.get(record.id)
            if old is not None:
                for key in blocking_keys(candidate_names(old)):
                    self._index[key].discard(record.id)
            self._add(record)


# Singleton instance
_person_cache: Optional[PersonCache] = None


def get_person_cache() -> PersonCache:
    """Get the singleton PersonCache over the singleton PersonStore."""
    global _person_cache
    if _person_cache is None:
        _person_cache = PersonCache(get_person_store())
    return _person_cache


def reset_person_cache() -> None:
    global _person_cache
    _person_cache = None
