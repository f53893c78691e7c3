"""
Online path: resolve each extracted mention against the catalog as it arrives.

For every mention:

1. Junk and empty names are rejected.
2. Exact lookup on the normalized-name key.
3. Otherwise the matcher runs against cached records sharing a blocking
   key. Exactly one match is accepted, or failing that exactly one exact
   name or alias match. Anything more ambiguous is left for the batch
   job (a new record is created and the cluster will show up as ambiguous
   there).
4. A match is enriched (placeholder category/role filled, longer
   description kept, new surface form added as alias) and linked to the
   document. No match creates a record that claims the name key.

Two extraction jobs may insert the same new person at once. The UNIQUE index
on persons.normalized_name lets only one win; the loser gets an
IntegrityError, re-fetches, and merges into the winner. If that still fails
after the retry budget the mention is skipped for this cycle and returned to
the caller, not dropped.
"""
import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from api.services.junk_names import is_junk_person_name
from api.services.name_normalizer import normalize_name
from api.services.person_cache import PersonCache
from api.services.person_matcher import RULE_EXACT, match_rule
from api.services.person_record import PersonMention, PersonRecord
from api.services.person_store import PersonStore
from api.services.resolution_errors import ConcurrencyConflict, InputError
from config.people_config import DEFAULT_CATEGORY, DEFAULT_ROLE, is_placeholder
from config.settings import settings

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_MATCHED = "matched"
ACTION_SKIPPED = "skipped"
ACTION_REJECTED = "rejected"

RULE_NORMALIZED_KEY = "normalized_key"


@dataclass
class IngestResult:
    """What happened to one mention."""
    action: str
    mention: PersonMention
    person_id: Optional[int] = None
    rule: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "name": self.mention.name,
            "person_id": self.person_id,
            "rule": self.rule,
            "reason": self.reason,
        }


def validate_mention_name(name) -> str:
    """
    Return the trimmed name, or raise InputError for empty, unkeyable or junk names.
    """
    trimmed = (name or "").strip()
    if not trimmed:
        raise InputError("Empty person name")
    if is_junk_person_name(trimmed):
        raise InputError(f"Junk person name: {trimmed!r}")
    if not normalize_name(trimmed):
        raise InputError(f"Name has no letters left after normalization: {trimmed!r}")
    return trimmed


def enrich_record(record: PersonRecord, mention: PersonMention) -> bool:
    """
    Fold a later sighting into an existing record.

    Returns:
        True if anything changed
    """
    changed = False
    if is_placeholder(record.category) and not is_placeholder(mention.category):
        record.category = mention.category.strip()
        changed = True
    if is_placeholder(record.role) and not is_placeholder(mention.role):
        record.role = mention.role.strip()
        changed = True

    desc = (mention.description or "").strip()
    if desc and len(desc) > len(record.description or ""):
        record.description = desc
        changed = True

    name = mention.name.strip()
    known = {record.display_name.casefold(), *(a.casefold() for a in record.aliases)}
    if name.casefold() not in known:
        record.aliases.append(name)
        changed = True
    return changed


class PersonIngestor:
    """Insert-time dedup of extracted person mentions."""

    def __init__(
        self,
        store: PersonStore,
        cache: Optional[PersonCache] = None,
        max_retries: Optional[int] = None,
    ):
        self.store = store
        self.cache = cache or PersonCache(store)
        self.max_retries = settings.ingest_max_retries if max_retries is None else max_retries

    def ingest_mention(self, mention: PersonMention, document_id: Optional[int] = None) -> IngestResult:
        """
        Resolve one mention to a catalog record, creating it if needed.

        Args:
            mention: Extracted {name, role, category, context}
            document_id: Document the mention came from, linked to the record

        Returns:
            IngestResult with action created/matched/skipped/rejected
        """
        try:
            name = validate_mention_name(mention.name)
        except InputError as e:
            logger.debug(f"Rejected mention: {e}")
            return IngestResult(ACTION_REJECTED, mention, reason=str(e))

        key = normalize_name(name)
        attempt = 0
        while True:
            try:
                return self._resolve(mention, name, key, document_id)
            except (sqlite3.IntegrityError, ConcurrencyConflict) as e:
                if attempt >= self.max_retries:
                    logger.warning(
                        f"Skipping mention {name!r} (key {key!r}) after {attempt + 1} attempt(s): {e}"
                    )
                    return IngestResult(ACTION_SKIPPED, mention, reason=str(e))
                attempt += 1
                logger.info(f"Insert race on {key!r}, re-fetching and merging (attempt {attempt})")
                self.cache.invalidate()

    def ingest_document(self, mentions: list[PersonMention], document_id: Optional[int] = None) -> list[IngestResult]:
        """Ingest every mention of one document; one bad mention never stops the rest."""
        return [self.ingest_mention(m, document_id) for m in mentions]

    def _find_existing(self, name: str, key: str) -> tuple[Optional[PersonRecord], Optional[str]]:
        existing = self.store.get_by_normalized_name(key)
        if existing is not None:
            return existing, RULE_NORMALIZED_KEY

        mention_record = PersonRecord(display_name=name)
        matches = []
        for candidate in self.cache.candidates_for(mention_record):
            rule = match_rule(mention_record, candidate)
            if rule:
                matches.append((candidate, rule))

        if len(matches) == 1:
            return matches[0]
        exact = [m for m in matches if m[1] == RULE_EXACT]
        if len(exact) == 1:
            logger.info(f"Mention {name!r} matches {len(matches)} records; taking exact match {exact[0][0].id}")
            return exact[0]
        if len(matches) > 1:
            ids = [m[0].id for m in matches]
            logger.info(f"Mention {name!r} matches {len(matches)} records {ids}; leaving for batch dedup")
        return None, None

    def _resolve(self, mention: PersonMention, name: str, key: str, document_id: Optional[int]) -> IngestResult:
        found, rule = self._find_existing(name, key)

        if found is not None:
            with self.store.transaction() as conn:
                record = self.store.get_by_id(found.id, conn)
                if record is None:
                    # Merged away since the cache snapshot
                    canonical_id = self.store.get_canonical_id(found.id)
                    record = self.store.get_by_id(canonical_id, conn)
                if record is None:
                    raise ConcurrencyConflict(f"Person {found.id} vanished during ingest", [found.id])
                if enrich_record(record, mention):
                    self.store.update(record, conn)
                if document_id is not None:
                    self.store.link_document(record.id, document_id, mention.context, mention.mention_type, conn)
                refreshed = self.store.get_by_id(record.id, conn)
            self.cache.put(refreshed)
            logger.debug(f"Matched mention {name!r} to person {record.id} (rule={rule})")
            return IngestResult(ACTION_MATCHED, mention, person_id=record.id, rule=rule)

        record = PersonRecord(
            display_name=name,
            category=DEFAULT_CATEGORY if is_placeholder(mention.category) else mention.category.strip(),
            role=DEFAULT_ROLE if is_placeholder(mention.role) else mention.role.strip(),
            description=(mention.description or "").strip() or None,
        )
        with self.store.transaction() as conn:
            self.store.add(record, conn)
            if document_id is not None:
                self.store.link_document(record.id, document_id, mention.context, mention.mention_type, conn)
            created = self.store.get_by_id(record.id, conn)
        self.cache.put(created)
        logger.info(f"Created person {created.id} ({name!r})")
        return IngestResult(ACTION_CREATED, mention, person_id=created.id)
