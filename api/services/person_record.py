"""
Person catalog records.

A PersonRecord is one row of the persons table: the display name exactly as
first seen, any extra aliases, and derived document/connection counts that
the store recomputes after every merge.
"""
import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from config.people_config import DEFAULT_CATEGORY, DEFAULT_ROLE


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PersonRecord:
    """
    A person in the catalog.

    display_name is stored verbatim and never replaced by its normalized form.
    Aliases are extra matching candidates; their order carries no meaning.
    version is bumped on every write and used for optimistic concurrency by
    the batch merge path.
    """

    id: Optional[int] = None
    display_name: str = ""
    aliases: list[str] = field(default_factory=list)
    category: str = DEFAULT_CATEGORY
    role: str = DEFAULT_ROLE
    description: Optional[str] = None

    # Derived from person_documents / connections, never summed
    document_count: int = 0
    connection_count: int = 0

    version: int = 1
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "aliases": list(self.aliases),
            "category": self.category,
            "role": self.role,
            "description": self.description,
            "document_count": self.document_count,
            "connection_count": self.connection_count,
            "version": self.version,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PersonRecord":
        """Create from a persons table row."""
        aliases = []
        if row["aliases"]:
            try:
                aliases = json.loads(row["aliases"])
            except json.JSONDecodeError:
                aliases = []

        return cls(
            id=row["id"],
            display_name=row["name"],
            aliases=aliases,
            category=row["category"] or DEFAULT_CATEGORY,
            role=row["role"] or DEFAULT_ROLE,
            description=row["description"],
            document_count=row["document_count"] or 0,
            connection_count=row["connection_count"] or 0,
            version=row["version"] or 1,
            updated_at=row["updated_at"] or _utc_now(),
        )


@dataclass
class PersonMention:
    """A person mention produced by the extraction stage for one document."""
    name: str
    role: Optional[str] = None
    category: Optional[str] = None
    context: Optional[str] = None
    description: Optional[str] = None
    mention_type: Optional[str] = None
