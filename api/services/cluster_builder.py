"""
Batch cluster builder.

Groups catalog records that provably refer to one individual:

1. Blocking - every record goes into a bucket per blocking key of each of its
   candidates (family/given token prefix in both orders, plus a prefix of the
   spaceless key), so only plausible pairs are compared.
2. Pairwise matching inside each bucket, producing MatchEdges.
3. Connected components over the match graph (networkx).
4. Clique verification - a component is confirmed only if every pair inside
   it matches. Otherwise it is ambiguous and goes to review instead of being
   merged, so a chain A~B~C with A!~C never collapses unrelated people.

Confirmed and ambiguous clusters are disjoint; every record is in at most one.
"""
import itertools
import logging
import threading
import warnings
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

import networkx as nx

from api.services.junk_names import is_junk_person_name
from api.services.name_normalizer import name_tokens, spaceless_key
from api.services.person_matcher import candidate_names, match_candidates
from api.services.person_record import PersonRecord
from api.services.resolution_errors import AmbiguousClusterWarning, DedupCancelled
from config.settings import settings

logger = logging.getLogger(__name__)

SPACELESS_PREFIX_LENGTH = 4


@dataclass
class MatchEdge:
    """A verified same-person match between two records (id_a < id_b)."""
    id_a: int
    id_b: int
    rule: str

    def __post_init__(self):
        if self.id_a > self.id_b:
            self.id_a, self.id_b = self.id_b, self.id_a

    def to_dict(self) -> dict:
        return {"id_a": self.id_a, "id_b": self.id_b, "rule": self.rule}


@dataclass
class EquivalenceCluster:
    """
    A connected group of matching records.

    versions is the snapshot of each member's version at scan time; the merge
    refuses to run if any member changed since.
    """
    member_ids: tuple[int, ...]
    confirmed: bool
    edges: list[MatchEdge] = field(default_factory=list)
    missing_pairs: list[tuple[int, int]] = field(default_factory=list)
    versions: dict[int, int] = field(default_factory=dict)
    names: dict[int, str] = field(default_factory=dict)

    @property
    def rules(self) -> list[str]:
        """Distinct rules behind this cluster's edges."""
        return sorted({e.rule for e in self.edges})

    def to_dict(self) -> dict:
        return {
            "member_ids": list(self.member_ids),
            "confirmed": self.confirmed,
            "edges": [e.to_dict() for e in self.edges],
            "missing_pairs": [list(p) for p in self.missing_pairs],
            "versions": {str(k): v for k, v in self.versions.items()},
            "names": {str(k): v for k, v in self.names.items()},
        }


@dataclass
class ClusterResult:
    confirmed: list[EquivalenceCluster] = field(default_factory=list)
    ambiguous: list[EquivalenceCluster] = field(default_factory=list)
    pairs_evaluated: int = 0
    buckets: int = 0


def blocking_keys(candidates: Iterable[str], key_length: Optional[int] = None) -> set[str]:
    """
    Bucket keys for a record's candidate names.

    Multi-token candidates key on the prefix of both their first and last
    token, since either may be the family name. Every candidate also keys on
    its spaceless prefix so OCR-split names land next to their intact form.
    """
    k = key_length or settings.block_key_length
    keys = set()
    for cand in candidates:
        tokens = name_tokens(cand)
        if not tokens:
            continue
        keys.add(tokens[0][:k])
        keys.add(tokens[-1][:k])
        keys.add("~" + spaceless_key(cand)[:SPACELESS_PREFIX_LENGTH])
    return keys


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DedupCancelled("Cluster building cancelled")


def _verify_cluster(
    component: Iterable[int],
    graph: nx.Graph,
    evaluated: set[tuple[int, int]],
    candidates: dict[int, tuple[str, ...]],
    by_id: dict[int, PersonRecord],
) -> EquivalenceCluster:
    """Check every pair of a component; confirmed only when all pairs match."""
    member_ids = tuple(sorted(component))
    edges = []
    missing = []
    for id_a, id_b in itertools.combinations(member_ids, 2):
        if graph.has_edge(id_a, id_b):
            edges.append(MatchEdge(id_a, id_b, graph.edges[id_a, id_b]["rule"]))
            continue
        # Pair from different buckets, never compared yet
        rule = None
        if (id_a, id_b) not in evaluated:
            evaluated.add((id_a, id_b))
            rule = match_candidates(candidates[id_a], candidates[id_b])
            if rule:
                graph.add_edge(id_a, id_b, rule=rule)
        if rule:
            edges.append(MatchEdge(id_a, id_b, rule))
        else:
            missing.append((id_a, id_b))

    return EquivalenceCluster(
        member_ids=member_ids,
        confirmed=not missing,
        edges=edges,
        missing_pairs=missing,
        versions={pid: by_id[pid].version for pid in member_ids},
        names={pid: by_id[pid].display_name for pid in member_ids},
    )


def _is_bare(cands: tuple[str, ...]) -> bool:
    return all(len(name_tokens(c)) < 2 for c in cands)


def _split_on_bare_names(
    component: set[int],
    graph: nx.Graph,
    evaluated: set[tuple[int, int]],
    candidates: dict[int, tuple[str, ...]],
    by_id: dict[int, PersonRecord],
) -> Optional[tuple[list[EquivalenceCluster], Optional[EquivalenceCluster]]]:
    """
    Re-cluster an ambiguous component without its bare one-word records.

    A lone "Epstein" matches every "X Epstein" and links them all into one
    component that can never be a clique. Dropping such records and
    re-verifying what is left lets the real duplicates merge. The bare
    records, plus any sub-component that is still not a clique, form the
    residual ambiguous cluster (None when fewer than two records remain;
    the bare record is reconsidered on the next round).

    Returns:
        None if nothing confirms without the bare records, else
        (confirmed sub-clusters, residual ambiguous cluster or None)
    """
    bare = {pid for pid in component if _is_bare(candidates[pid])}
    rest = component - bare
    if not bare or len(rest) < 2:
        return None

    confirmed = []
    residual = set(bare)
    for piece in nx.connected_components(graph.subgraph(rest)):
        if len(piece) < 2:
            continue
        cluster = _verify_cluster(piece, graph, evaluated, candidates, by_id)
        if cluster.confirmed:
            confirmed.append(cluster)
        else:
            residual |= piece
    if not confirmed:
        return None

    logger.info(
        f"Split ambiguous component {sorted(component)} on bare name(s) {sorted(bare)}: "
        f"{len(confirmed)} confirmed sub-cluster(s)"
    )
    if len(residual) < 2:
        logger.info(f"Leaving {sorted(residual)} unmerged this round")
        return confirmed, None
    cluster = _verify_cluster(residual, graph, evaluated, candidates, by_id)
    if cluster.confirmed:
        confirmed.append(cluster)
        return confirmed, None
    return confirmed, cluster


def build_clusters(
    all_records: list[PersonRecord],
    cancel_event: Optional[threading.Event] = None,
) -> ClusterResult:
    """
    Find confirmed and ambiguous clusters across the whole catalog.

    Args:
        all_records: Every catalog record
        cancel_event: Checked between buckets; when set, DedupCancelled is raised

    Returns:
        ClusterResult with disjoint confirmed and ambiguous clusters
    """
    result = ClusterResult()
    by_id: dict[int, PersonRecord] = {}
    candidates: dict[int, tuple[str, ...]] = {}
    buckets: dict[str, set[int]] = defaultdict(set)

    for record in all_records:
        if is_junk_person_name(record.display_name):
            logger.debug(f"Skipping junk record {record.id} ({record.display_name!r})")
            continue
        cands = candidate_names(record)
        if not cands:
            continue
        by_id[record.id] = record
        candidates[record.id] = cands
        for key in blocking_keys(cands):
            buckets[key].add(record.id)

    result.buckets = len(buckets)
    graph = nx.Graph()
    graph.add_nodes_from(by_id)
    evaluated: set[tuple[int, int]] = set()

    for key in sorted(buckets):
        _check_cancelled(cancel_event)
        members = sorted(buckets[key])
        if len(members) < 2:
            continue
        for id_a, id_b in itertools.combinations(members, 2):
            if (id_a, id_b) in evaluated:
                continue
            evaluated.add((id_a, id_b))
            rule = match_candidates(candidates[id_a], candidates[id_b])
            if rule:
                graph.add_edge(id_a, id_b, rule=rule)

    for component in nx.connected_components(graph):
        if len(component) < 2:
            continue
        cluster = _verify_cluster(component, graph, evaluated, candidates, by_id)
        if cluster.confirmed:
            result.confirmed.append(cluster)
            continue

        split = _split_on_bare_names(component, graph, evaluated, candidates, by_id)
        if split is not None:
            confirmed, residual = split
            result.confirmed.extend(confirmed)
            if residual is None:
                continue
            cluster = residual

        message = (
            f"Ambiguous cluster {list(cluster.member_ids)}: "
            f"{len(cluster.missing_pairs)} non-matching pair(s), e.g. {cluster.missing_pairs[0]}"
        )
        logger.warning(message)
        warnings.warn(message, AmbiguousClusterWarning, stacklevel=2)
        result.ambiguous.append(cluster)

    result.pairs_evaluated = len(evaluated)
    result.confirmed.sort(key=lambda c: c.member_ids)
    result.ambiguous.sort(key=lambda c: c.member_ids)
    logger.info(
        f"Built clusters over {len(by_id)} records in {result.buckets} buckets: "
        f"{len(result.confirmed)} confirmed, {len(result.ambiguous)} ambiguous "
        f"({result.pairs_evaluated} pairs evaluated)"
    )
    return result
