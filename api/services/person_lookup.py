"""
Free-text person lookup.

Matches a user-supplied name ("bob smith", "Maxwell, G.") against the
catalog with the same normalizer and matcher the dedup engine uses, so chat
style retrieval and the search endpoint agree with how records were merged.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from api.services.name_normalizer import normalize_name
from api.services.person_cache import PersonCache
from api.services.person_matcher import candidate_names, match_rule
from api.services.person_record import PersonRecord

logger = logging.getLogger(__name__)


@dataclass
class LookupHit:
    record: PersonRecord
    rule: str

    def to_dict(self) -> dict:
        data = self.record.to_dict()
        data["match_rule"] = self.rule
        return data


def _token_overlap_rule(query_key: str, record: PersonRecord) -> Optional[str]:
    """
    Single-word queries ("Maxwell") never match under the pairwise rules when
    both sides are one token, but a search box still wants them: accept a
    record if any candidate name contains the query as a whole token.
    """
    if " " in query_key:
        return None
    for cand in candidate_names(record):
        if query_key in cand.split():
            return "token"
    return None


def find_persons_by_name(query: str, cache: PersonCache, limit: int = 20) -> list[LookupHit]:
    """
    Find catalog records that match a free-text name.

    Args:
        query: Name as typed by the user
        cache: Catalog cache to search
        limit: Maximum hits to return

    Returns:
        Hits ordered by document_count descending, then id
    """
    key = normalize_name(query)
    if not key:
        return []

    hits = []
    for record in cache.candidates_for(query):
        rule = match_rule(query, record) or _token_overlap_rule(key, record)
        if rule:
            hits.append(LookupHit(record=record, rule=rule))

    hits.sort(key=lambda h: (-h.record.document_count, h.record.id))
    logger.debug(f"Lookup {query!r} -> {len(hits)} hit(s)")
    return hits[:limit]
