"""
Pairwise same-person matcher.

Decides whether two catalog records refer to the same individual. The
decision is binary and deliberately conservative: a wrong merge of two real
people is much worse than a missed one, and missed ones get another chance
on the next batch run.

Each record contributes a candidate set (normalized display name plus
normalized aliases). Two records match if any candidate pair satisfies one of
these rules, tried in order:

    exact                 same normalized string with at least two tokens
    token_correspondence  family token equal or within edit distance, and at
                          least one given token equal, a nickname variant, an
                          initial, or within edit distance; both
                          family-first and family-last orders are tried
    spaceless             equal once spaces are removed, one side multi-token
                          ("To nyRicco" / "Tony Ricco")
    single_token          a one-token candidate equals the first or last token
                          of a multi-token candidate of the other record

Anything else is rejected. Two identical single tokens ("Jeffrey" /
"Jeffrey") never match: a bare given name is not an identity.

Matching is pure and safe to run from several threads.
"""
from typing import Iterable, Optional, Union

from rapidfuzz.distance import Levenshtein

from api.services.name_normalizer import normalize_name, name_tokens, spaceless_key
from api.services.person_record import PersonRecord
from config.nickname_lookup import are_name_variants
from config.settings import settings

RULE_EXACT = "exact"
RULE_TOKENS = "token_correspondence"
RULE_SPACELESS = "spaceless"
RULE_SINGLE_TOKEN = "single_token"

# A lone token shorter than this is too weak to anchor rule 4
MIN_SINGLE_TOKEN_LENGTH = 3

Matchable = Union[PersonRecord, str]


def candidate_names(record: Matchable) -> tuple[str, ...]:
    """
    Normalized candidate keys for a record, display name first.

    Plain strings are accepted as a record with no aliases. Empty keys are
    dropped, so a record whose name normalizes to "" has no candidates and
    can never match anything.
    """
    if isinstance(record, str):
        raw_names: Iterable[str] = [record]
    else:
        raw_names = [record.display_name, *(record.aliases or [])]

    seen: dict[str, None] = {}
    for raw in raw_names:
        key = normalize_name(raw)
        if key:
            seen.setdefault(key, None)
    return tuple(seen)


def _within_edit_distance(a: str, b: str, min_length: int) -> bool:
    """Length-scaled typo tolerance: 1 edit for short tokens, 2 for long ones."""
    if len(a) < min_length or len(b) < min_length:
        return False
    shorter = min(len(a), len(b))
    max_edits = 1 if shorter <= settings.short_token_max_length else 2
    return Levenshtein.distance(a, b, score_cutoff=max_edits) <= max_edits


def _family_tokens_match(a: str, b: str, trailing: bool) -> bool:
    # Outside the trailing slot the token may well be a given name ("Mark"/"Mary")
    min_length = settings.fuzzy_min_token_length if trailing else settings.fuzzy_min_given_length
    return a == b or _within_edit_distance(a, b, min_length)


def _given_tokens_match(a: str, b: str) -> bool:
    if a == b:
        return True
    if len(a) == 1 or len(b) == 1:
        initial, full = (a, b) if len(a) == 1 else (b, a)
        return len(full) > 1 and full[0] == initial
    if are_name_variants(a, b):
        return True
    return _within_edit_distance(a, b, settings.fuzzy_min_given_length)


def _tokens_correspond(tokens_a: list[str], tokens_b: list[str]) -> bool:
    # Family token last ("Jeffrey Epstein") or first ("Epstein Jeffrey")
    for fam_a in (len(tokens_a) - 1, 0):
        for fam_b in (len(tokens_b) - 1, 0):
            trailing = fam_a == len(tokens_a) - 1 and fam_b == len(tokens_b) - 1
            if not _family_tokens_match(tokens_a[fam_a], tokens_b[fam_b], trailing):
                continue
            given_a = [t for i, t in enumerate(tokens_a) if i != fam_a]
            given_b = [t for i, t in enumerate(tokens_b) if i != fam_b]
            if any(_given_tokens_match(ga, gb) for ga in given_a for gb in given_b):
                return True
    return False


def _single_token_hit(single: list[str], multi: list[str]) -> bool:
    token = single[0]
    return len(token) >= MIN_SINGLE_TOKEN_LENGTH and token in (multi[0], multi[-1])


def match_candidates(cands_a: tuple[str, ...], cands_b: tuple[str, ...]) -> Optional[str]:
    """
    Apply the matching rules to two precomputed candidate sets.

    Returns:
        Name of the first rule that fired, or None
    """
    if not cands_a or not cands_b:
        return None

    tokens_a = [(c, name_tokens(c)) for c in cands_a]
    tokens_b = [(c, name_tokens(c)) for c in cands_b]

    shared = set(cands_a) & set(cands_b)
    if any(len(name_tokens(c)) >= 2 for c in shared):
        return RULE_EXACT

    for _, ta in tokens_a:
        if len(ta) < 2:
            continue
        for _, tb in tokens_b:
            if len(tb) >= 2 and _tokens_correspond(ta, tb):
                return RULE_TOKENS

    for ca, ta in tokens_a:
        for cb, tb in tokens_b:
            if len(ta) < 2 and len(tb) < 2:
                continue
            key = spaceless_key(ca)
            if len(key) >= settings.min_spaceless_length and key == spaceless_key(cb):
                return RULE_SPACELESS

    for _, ta in tokens_a:
        for _, tb in tokens_b:
            if len(ta) == 1 and len(tb) >= 2 and _single_token_hit(ta, tb):
                return RULE_SINGLE_TOKEN
            if len(tb) == 1 and len(ta) >= 2 and _single_token_hit(tb, ta):
                return RULE_SINGLE_TOKEN

    return None


def match_rule(a: Matchable, b: Matchable) -> Optional[str]:
    """
    Name of the rule that makes a and b the same person, or None.

    Used for audit logging: every merge records the rule that justified it.
    """
    return match_candidates(candidate_names(a), candidate_names(b))


def is_same_person(a: Matchable, b: Matchable) -> bool:
    """
    Check if two records likely refer to the same individual.

    Symmetric: is_same_person(a, b) == is_same_person(b, a).

    Examples:
        is_same_person("Ghislaine Maxwell", "Maxwell Ghislaine") -> True
        is_same_person("Bob Smith", "Robert Smith") -> True
        is_same_person("John Smith", "Jane Smith") -> False
        is_same_person("Jeffrey", "Jeffrey") -> False
    """
    return match_rule(a, b) is not None
