"""
Name normalization.

Reduces a raw person name to a comparison key:

    "Maxwell, Ghislaine"   -> "ghislaine maxwell"
    "Dr. Robert Smith"     -> "robert smith"
    "John Smith Jr."       -> "john smith"
    "Marcinková, Nadia"    -> "nadia marcinkova"

The key is only ever used for comparison and as the store's uniqueness key;
display names are kept as written. normalize_name() never raises, and
normalize_name(normalize_name(x)) == normalize_name(x) for every input.
"""
import re
import unicodedata

from config.people_config import HONORIFICS, NAME_SUFFIXES

_NON_LETTERS = re.compile(r"[^a-z]")
_WHITESPACE = re.compile(r"\s+")


def _fold_ascii(raw: str) -> str:
    """Strip accents: decompose and drop combining marks."""
    decomposed = unicodedata.normalize("NFKD", raw)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _token_key(token: str) -> str:
    return _NON_LETTERS.sub("", token.lower())


def _keys(text: str) -> list[str]:
    keys = (_token_key(t) for t in _WHITESPACE.split(text))
    return [k for k in keys if k]


def _reorder_comma(name: str) -> str:
    """
    Turn "Last, First" into "First Last".

    Only applies when the comma splits the name into exactly two non-empty
    parts. "John Smith, Jr." is a suffix delimiter, not a swap.
    """
    if "," not in name:
        return name
    parts = [p.strip() for p in name.split(",")]
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return name.replace(",", " ")

    trailing = _keys(parts[1])
    if trailing and all(k in NAME_SUFFIXES for k in trailing):
        return f"{parts[0]} {parts[1]}"
    return f"{parts[1]} {parts[0]}"


def normalize_name(raw) -> str:
    """
    Normalize a person name for comparison.

    Steps, in order: trim (empty stays empty), "Last, First" reorder, strip
    leading honorifics, strip trailing suffixes and qualifiers, drop
    non-letters, lowercase, collapse whitespace.

    Args:
        raw: Name as extracted (None is treated as empty)

    Returns:
        Lowercase space-separated letter tokens, or "" if nothing is left
    """
    if not raw:
        return ""
    name = _fold_ascii(str(raw)).strip()
    if not name:
        return ""

    keys = _keys(_reorder_comma(name))

    while keys and keys[0] in HONORIFICS:
        keys.pop(0)
    while keys and keys[-1] in NAME_SUFFIXES:
        keys.pop()

    return " ".join(keys)


def name_tokens(name: str) -> list[str]:
    """Tokens of an already-normalized name."""
    return name.split() if name else []


def spaceless_key(name: str) -> str:
    """Normalized name with spaces removed ("to nyricco" -> "tonyricco")."""
    return name.replace(" ", "")
