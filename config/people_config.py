"""
Name lexicons for person entity resolution.

These lists are finite and English-centric. They will under-match many
cultural name variants; that is a known limitation, not something to patch
by guessing broader rules.

Tokens are compared after punctuation removal and lowercasing, so "Dr.",
"DR" and "dr" are all the same entry.
"""

# Leading honorifics / titles stripped by the normalizer
HONORIFICS = frozenset({
    "dr", "mr", "mrs", "ms", "miss", "mx", "mister",
    "prof", "professor", "rev", "fr", "sir", "dame",
    "lord", "lady", "hon", "judge",
    "sgt", "det", "lt", "capt", "col", "gen",
    "sen", "rep", "gov",
})

# Trailing qualifiers / generational suffixes / credentials
NAME_SUFFIXES = frozenset({
    "jr", "sr", "ii", "iii", "iv",
    "qc", "kc", "esq", "md", "phd", "dds", "dmd",
    "jd", "llm", "mba", "cpa", "rn", "mph",
    "psyd", "edd", "lcsw", "msw",
})

# Category / role values that carry no information and may be overwritten
PLACEHOLDER_VALUES = frozenset({"", "unknown", "none", "n/a", "na", "null", "tbd"})

DEFAULT_CATEGORY = "unknown"
DEFAULT_ROLE = "unknown"

# Exact strings that are job titles or placeholders, never a person's name
GENERIC_ROLE_NAMES = frozenset({
    "assistant united states attorney",
    "special agent",
    "case agent name",
    "correctional officer",
    "corrections officer",
    "attorney general",
    "unit manager",
    "senior inspector",
    "supervisory inspector",
    "deputy united states attorney",
    "unknown recipient",
    "unknown sender",
    "institution duty officer",
    "victim witness coordinator",
    "u.s. attorney",
    "assistant u.s. attorney",
    "detective",
    "officer",
    "captain",
    "sergeant",
    "warden",
    "chief",
    "administrator",
    "attorney",
    "defendant",
    "lieutenant",
    "unknown",
    "the court",
    "legal assistant",
    "defense counsel",
    "customs officer",
    "flight engineer",
    "co-pilot",
})

# Pronouns and fragments the extractor sometimes reports as names
FRAGMENT_NAMES = frozenset({"her", "his", "him", "she", "he", "they", "them", "ands"})


def is_placeholder(value) -> bool:
    """True when a category/role value is empty or a default marker."""
    if value is None:
        return True
    return str(value).strip().lower() in PLACEHOLDER_VALUES
