"""
Merge policy: which record survives a confirmed cluster, and what it keeps.

    canonical     highest document_count, ties -> lowest id
    aliases       every member's display name and aliases, minus the
                  canonical display name, de-duplicated case-insensitively
    category/role canonical's value unless it is a placeholder, else the
                  first real value among the others by lowest id
    description   the longest non-empty one

document_count and connection_count are never summed here. They are
recomputed from the link tables once references have been remapped.
"""
from dataclasses import dataclass, field
from typing import Optional

from api.services.person_record import PersonRecord
from config.people_config import is_placeholder


@dataclass
class MergePlan:
    """Attribute values the canonical record will hold after the merge."""
    canonical_id: int
    removed_ids: list[int]
    aliases: list[str] = field(default_factory=list)
    category: Optional[str] = None
    role: Optional[str] = None
    description: Optional[str] = None


def choose_canonical(records: list[PersonRecord]) -> PersonRecord:
    """Highest document_count wins, lowest id breaks ties."""
    if not records:
        raise ValueError("Cannot choose a canonical record from an empty cluster")
    return min(records, key=lambda r: (-(r.document_count or 0), r.id))


def merge_aliases(canonical: PersonRecord, others: list[PersonRecord]) -> list[str]:
    """
    Union of names and aliases, excluding the canonical display name.

    The canonical's existing aliases come first, then the other members'
    names in id order. The first spelling of each case-insensitive variant
    is kept.
    """
    seen = {canonical.display_name.strip().casefold()}
    merged = []
    names = list(canonical.aliases)
    for record in sorted(others, key=lambda r: r.id):
        names.append(record.display_name)
        names.extend(record.aliases)

    for name in names:
        name = (name or "").strip()
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        merged.append(name)
    return merged


def _pick_attribute(canonical: PersonRecord, others: list[PersonRecord], attr: str) -> Optional[str]:
    value = getattr(canonical, attr)
    if not is_placeholder(value):
        return value
    for record in sorted(others, key=lambda r: r.id):
        candidate = getattr(record, attr)
        if not is_placeholder(candidate):
            return candidate
    return value


def _longest_description(records: list[PersonRecord]) -> Optional[str]:
    best = None
    for record in sorted(records, key=lambda r: r.id):
        desc = (record.description or "").strip()
        if desc and (best is None or len(desc) > len(best)):
            best = desc
    return best


def plan_merge(records: list[PersonRecord], canonical_id: Optional[int] = None) -> MergePlan:
    """
    Decide the surviving record and its merged attributes.

    Args:
        records: Current state of every cluster member
        canonical_id: Force a survivor (manual merges); default is policy choice

    Returns:
        MergePlan for the reference remapper
    """
    if canonical_id is not None:
        canonical = next((r for r in records if r.id == canonical_id), None)
        if canonical is None:
            raise ValueError(f"Canonical id {canonical_id} is not a cluster member")
    else:
        canonical = choose_canonical(records)

    others = [r for r in records if r.id != canonical.id]
    return MergePlan(
        canonical_id=canonical.id,
        removed_ids=sorted(r.id for r in others),
        aliases=merge_aliases(canonical, others),
        category=_pick_attribute(canonical, others, "category"),
        role=_pick_attribute(canonical, others, "role"),
        description=_longest_description(records),
    )
