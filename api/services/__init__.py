"""
Person resolver services package.

The library contract used by collaborators (extraction, search index, chat
retrieval):

    from api.services import normalize_name, is_same_person, build_clusters, merge_cluster

Key service modules:
- name_normalizer: comparison keys for raw names
- person_matcher: pairwise same-person decision
- cluster_builder: blocking, match graph, clique verification
- person_merger / merge_policy / reference_remapper: collapsing a cluster
- person_store: SQLite adapter for persons and dependent tables
- person_ingest: insert-time dedup of extracted mentions
- dedup_job: batch run, dry-run plan and plan execution
"""

from api.services.name_normalizer import normalize_name
from api.services.person_matcher import is_same_person, match_rule
from api.services.cluster_builder import (
    ClusterResult,
    EquivalenceCluster,
    MatchEdge,
    build_clusters,
)
from api.services.person_merger import MergeResult, merge_cluster
from api.services.person_record import PersonMention, PersonRecord
from api.services.person_store import PersonStore, get_person_store
from api.services.resolution_errors import (
    AmbiguousClusterWarning,
    ConcurrencyConflict,
    DedupCancelled,
    InputError,
    MergeConflict,
)


__all__ = [
    # Library contract
    "normalize_name",
    "is_same_person",
    "match_rule",
    "build_clusters",
    "merge_cluster",
    # Models
    "PersonRecord",
    "PersonMention",
    "MatchEdge",
    "EquivalenceCluster",
    "ClusterResult",
    "MergeResult",
    # Store
    "PersonStore",
    "get_person_store",
    # Errors
    "InputError",
    "AmbiguousClusterWarning",
    "MergeConflict",
    "ConcurrencyConflict",
    "DedupCancelled",
]
