"""
Nickname lookup for person entity resolution.

Bidirectional lookup between formal given names and their nicknames or
diminutives, e.g. "Robert" <-> "Bob", "William" <-> "Bill", "James" <-> "Jim".

The table lives in nicknames.csv next to this module (columns name1,
relationship, name2, same layout as github.com/carltonnorthern/nicknames).
It is deliberately small and English-centric.
"""

import csv
import logging
from collections import defaultdict
from pathlib import Path

logger = logging.getLogger(__name__)

NICKNAMES_CSV = Path(__file__).parent / "nicknames.csv"


class NicknameTable:
    """
    In-memory nickname table, loaded lazily from a CSV file.

    Variants are symmetric: a formal name and each of its nicknames are
    variants of one another, and nicknames of the same formal name are
    siblings (Rob <-> Bob via Robert). Siblings do not cascade across
    different formal names, so "Bert" links Robert and Albert but Robert and
    Albert stay unrelated.
    """

    def __init__(self, csv_path: Path = NICKNAMES_CSV):
        self.csv_path = Path(csv_path)
        self._formal_to_nicknames: dict[str, set[str]] = defaultdict(set)
        self._variants: dict[str, set[str]] = defaultdict(set)
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return

        if not self.csv_path.exists():
            logger.warning(f"Nickname table not found at {self.csv_path}, nickname matching disabled")
            self._loaded = True
            return

        with open(self.csv_path, "r", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                if row.get("relationship") != "has_nickname":
                    continue
                formal = (row.get("name1") or "").strip().lower()
                nickname = (row.get("name2") or "").strip().lower()
                if not formal or not nickname or formal == nickname:
                    continue
                self._formal_to_nicknames[formal].add(nickname)
                self._variants[formal].add(nickname)
                self._variants[nickname].add(formal)

        for nicknames in self._formal_to_nicknames.values():
            for nick in nicknames:
                self._variants[nick].update(nicknames - {nick})

        self._loaded = True
        logger.debug(f"Loaded {len(self._formal_to_nicknames)} formal names from {self.csv_path}")

    def variants(self, name: str) -> set[str]:
        """All known variants of a given name (excluding the name itself)."""
        self._load()
        return set(self._variants.get(name.lower(), ()))

    def nicknames(self, formal_name: str) -> set[str]:
        """Nicknames recorded for a formal name."""
        self._load()
        return set(self._formal_to_nicknames.get(formal_name.lower(), ()))

    def are_variants(self, name1: str, name2: str) -> bool:
        """
        Check if two given names are variants of each other.

        Examples:
            are_variants("Bob", "Robert") -> True
            are_variants("Robert", "Bob") -> True
            are_variants("John", "Michael") -> False
        """
        if not name1 or not name2:
            return False
        a, b = name1.lower(), name2.lower()
        if a == b:
            return True
        self._load()
        return b in self._variants.get(a, ())


_table = NicknameTable()


def get_name_variants(name: str) -> set[str]:
    """Get all known variants of a given name (nicknames and formal forms)."""
    return _table.variants(name)


def get_nicknames(formal_name: str) -> set[str]:
    """Get nicknames for a formal given name."""
    return _table.nicknames(formal_name)


def are_name_variants(name1: str, name2: str) -> bool:
    """Check if two given names are known variants (or equal, case-insensitive)."""
    return _table.are_variants(name1, name2)
