"""
merge_cluster: collapse one confirmed cluster into its canonical record.

The whole merge is a single BEGIN IMMEDIATE transaction. Before writing, the
members' versions are compared with the snapshot taken when the cluster was
built; if anything changed (or a member is gone) the merge is aborted with
ConcurrencyConflict and nothing is written.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from api.services.cluster_builder import EquivalenceCluster
from api.services.merge_policy import plan_merge
from api.services.name_normalizer import normalize_name
from api.services.person_store import PersonStore
from api.services.reference_remapper import remap_references
from api.services.resolution_errors import ConcurrencyConflict, MergeConflict

logger = logging.getLogger(__name__)

RULE_MANUAL = "manual"


@dataclass
class MergeResult:
    """Outcome of one cluster merge."""
    canonical_id: int
    removed_ids: list[int]
    aliases: list[str] = field(default_factory=list)
    rewrites: dict[str, int] = field(default_factory=dict)
    conflicts: list[MergeConflict] = field(default_factory=list)
    rule: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "canonical_id": self.canonical_id,
            "removed_ids": list(self.removed_ids),
            "aliases": list(self.aliases),
            "rewrites": dict(self.rewrites),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "rule": self.rule,
        }


def merge_cluster(
    cluster: EquivalenceCluster,
    store: PersonStore,
    canonical_id: Optional[int] = None,
) -> MergeResult:
    """
    Merge a cluster's members into one canonical record.

    Args:
        cluster: Cluster to merge (ambiguous clusters are refused)
        store: Store adapter owning the persons and dependent tables
        canonical_id: Force the survivor instead of applying the policy

    Returns:
        MergeResult describing the survivor and the rewrites applied

    Raises:
        ConcurrencyConflict: a member vanished or changed since the cluster was built
        ValueError: the cluster is ambiguous or has fewer than two members
    """
    if not cluster.confirmed:
        raise ValueError(f"Refusing to merge ambiguous cluster {list(cluster.member_ids)}")
    if len(cluster.member_ids) < 2:
        raise ValueError("A cluster needs at least two members to merge")

    rule = ",".join(cluster.rules) or RULE_MANUAL

    with store.transaction() as conn:
        members = store.get_many(cluster.member_ids, conn)
        missing = sorted(set(cluster.member_ids) - set(members))
        if missing:
            raise ConcurrencyConflict(
                f"Cluster {list(cluster.member_ids)}: members {missing} no longer exist",
                person_ids=missing,
            )
        stale = sorted(
            pid for pid, version in cluster.versions.items()
            if pid in members and members[pid].version != version
        )
        if stale:
            raise ConcurrencyConflict(
                f"Cluster {list(cluster.member_ids)}: members {stale} changed since scan",
                person_ids=stale,
            )

        plan = plan_merge(list(members.values()), canonical_id)
        canonical = members[plan.canonical_id]
        canonical.aliases = plan.aliases
        canonical.category = plan.category
        canonical.role = plan.role
        canonical.description = plan.description

        stats = remap_references(conn, plan.canonical_id, plan.removed_ids, rule=rule)
        store.update(canonical, conn)
        store.recompute_counts(conn, sorted(stats.touched_person_ids))

        # The survivor takes over the name key if it never held one
        key = normalize_name(canonical.display_name)
        if key:
            conn.execute("""
                UPDATE persons SET normalized_name = ?
                WHERE id = ? AND normalized_name IS NULL
                AND NOT EXISTS (SELECT 1 FROM persons WHERE normalized_name = ?)
            """, (key, canonical.id, key))

    result = MergeResult(
        canonical_id=plan.canonical_id,
        removed_ids=plan.removed_ids,
        aliases=plan.aliases,
        rewrites=stats.to_dict(),
        conflicts=stats.conflicts,
        rule=rule,
    )
    logger.info(
        f"Merged {plan.removed_ids} into {plan.canonical_id} "
        f"({members[plan.canonical_id].display_name!r}, rule={rule}, "
        f"{stats.person_documents_remapped} document links, "
        f"{stats.connections_collapsed} edge collisions)"
    )
    store.notify_merged(result)
    return result


def merge_person_ids(
    store: PersonStore,
    primary_id: int,
    secondary_ids: list[int],
) -> MergeResult:
    """
    Manually merge secondaries into a chosen primary.

    Curators use this to settle ambiguous clusters. No matcher check and no
    version snapshot: the curator's decision is the evidence.
    """
    member_ids = tuple(sorted({primary_id, *secondary_ids}))
    cluster = EquivalenceCluster(member_ids=member_ids, confirmed=True)
    return merge_cluster(cluster, store, canonical_id=primary_id)
