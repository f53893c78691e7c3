"""
Error taxonomy for person entity resolution.

None of these are fatal to the surrounding pipeline: a failure in one
cluster or mention is logged and the caller moves on to the next one.
"""
from dataclasses import dataclass, field
from typing import Optional


class InputError(ValueError):
    """A mention name that is empty, malformed, or junk.

    normalize_name() never raises this; the online path reports the mention
    as rejected instead of inserting it.
    """


class AmbiguousClusterWarning(UserWarning):
    """A connected component that is not a clique. Logged and queued, never merged."""


class ConcurrencyConflict(RuntimeError):
    """Another writer got there first.

    Raised for a uniqueness violation on insert that survives the retry, or
    when a cluster's member versions changed between scan and merge.
    """

    def __init__(self, message: str, person_ids: Optional[list[int]] = None):
        super().__init__(message)
        self.person_ids = list(person_ids or [])


class DedupCancelled(RuntimeError):
    """Raised at a cancellation checkpoint once the cancel event is set."""


@dataclass
class MergeConflict:
    """
    Two relationship edges that collapsed onto the same (pair, type) during a
    remap and were folded into one row.

    Not an exception: collisions are resolved deterministically (max strength,
    union of documents) and reported on the MergeResult for auditing.
    """
    kept_connection_id: int
    dropped_connection_ids: list[int] = field(default_factory=list)
    person_id_1: int = 0
    person_id_2: int = 0
    connection_type: str = ""
    strength: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "kept_connection_id": self.kept_connection_id,
            "dropped_connection_ids": list(self.dropped_connection_ids),
            "person_id_1": self.person_id_1,
            "person_id_2": self.person_id_2,
            "connection_type": self.connection_type,
            "strength": self.strength,
        }
