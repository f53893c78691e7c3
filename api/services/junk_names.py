"""
Junk person-name filter.

The extraction stage reports plenty of strings that are not people: OCR
garbage, redaction markers, job titles, numbered placeholders
("Victim-3", "Officer 12"), organisations. These are rejected before they
reach the catalog and are left out of clustering.
"""
import re

from config.people_config import GENERIC_ROLE_NAMES, FRAGMENT_NAMES

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 60

_JUNK_PATTERNS = [
    re.compile(r"[!;&$%^°•\\*<>=/]"),                     # characters no name contains
    re.compile(r"[0-9]{2,}"),                             # document numbers, codes
    re.compile(r"[0-9].*[a-zA-Z].*[0-9]"),                # digits woven through letters
    re.compile(r"^[A-Z][a-z]*[0-9][a-z]"),                # "Po4lon"
    re.compile(r"^\[.*\]$"),                              # [REDACTED]
    re.compile(r"^[A-Z]{3,}$"),                           # AUSA, USANYS, LSJ
    re.compile(r"^(minor\s+)?victim-\d", re.I),
    re.compile(r"^(unknown|unnamed|former|the)\s", re.I),
    re.compile(r"^(mr|mrs|ms|dr)\.\s*\[", re.I),          # "Mr. [Redacted]"
    re.compile(r"^(mr|mrs|ms|dr|lt|sgt|det|cap)\.?\s*$", re.I),
    re.compile(r"^(mr|mrs|ms|dr)\.?\s+[A-Z]\.?\s*$", re.I),  # "Dr. B."
    re.compile(r",?\s*\b(llc|inc|corp|lp|llp|ltd)\.?\s*$", re.I),
    re.compile(r"'s\s"),                                  # "Employee's Name"
    re.compile(r"^(officer|inmate|co\s+rookie)\s+\d", re.I),
    re.compile(r"^(john|jane)\s+doe\b", re.I),
    re.compile(r"^(accuser|witness|doe)\s*-?\s*\d", re.I),
    re.compile(r"^declarant", re.I),
    re.compile(r",\s*\d"),
    re.compile(r"\([A-Z]{2,5}\)"),                        # (FBI), (AUSA)
    re.compile(r"\(redacted\)$", re.I),
    re.compile(r"^(spouse|sister|brother|son|daughter|mother|father|wife|husband)\s+of\s", re.I),
    re.compile(r"^(esq\.?|psyd|ph\.?d\.?|m\.?d\.?|j\.?d\.?|ll\.?m\.?)$", re.I),
    re.compile(
        r"^(deputy|assistant|associate|acting|interim)\s+(assistant\s+)?"
        r"(attorney general|director|chief|commissioner|warden|prosecutor|counsel)",
        re.I,
    ),
]

# "Director of ...", "Head of ..."
_TITLE_OF = re.compile(r"^(chief|director|head|commissioner|superintendent|warden|commander)\s.*\bof\b", re.I)


def is_junk_person_name(name) -> bool:
    """
    True if a string should never become a person record.

    Examples:
        is_junk_person_name("[REDACTED]") -> True
        is_junk_person_name("Unknown Sender") -> True
        is_junk_person_name("Acme Holdings LLC") -> True
        is_junk_person_name("Ghislaine Maxwell") -> False
    """
    if not name:
        return True
    trimmed = str(name).strip()

    if len(trimmed) < MIN_NAME_LENGTH or len(trimmed) > MAX_NAME_LENGTH:
        return True

    lower = trimmed.lower()
    if lower in GENERIC_ROLE_NAMES or lower in FRAGMENT_NAMES:
        return True

    # Lone words this short ("Des", "Ann") identify nobody
    if " " not in trimmed and len(trimmed) <= 3:
        return True

    if '"' in trimmed and len(trimmed) < 30:
        return True

    if _TITLE_OF.search(trimmed):
        return True

    return any(p.search(trimmed) for p in _JUNK_PATTERNS)
