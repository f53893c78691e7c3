"""
Tests for batch cluster building.

Tests cover:
- Blocking keys
- Confirmed clusters and the documented end-to-end example
- Clique verification (ambiguous chains are not merged)
- Components held together only by a bare one-word name are split
- Disjointness of the result
- Junk records left out
- Cancellation between buckets
"""
import threading
import warnings

import pytest

from api.services.cluster_builder import (
    EquivalenceCluster,
    MatchEdge,
    blocking_keys,
    build_clusters,
)
from api.services.person_record import PersonRecord
from api.services.resolution_errors import AmbiguousClusterWarning, DedupCancelled

pytestmark = pytest.mark.unit


def _records(*names):
    return [PersonRecord(id=i, display_name=name) for i, name in enumerate(names, 1)]


class TestBlockingKeys:
    """Tests for blocking_keys()."""

    def test_both_ends_and_spaceless(self):
        """Test first/last token prefixes plus spaceless prefix."""
        assert blocking_keys(["jeffrey epstein"]) == {"jef", "eps", "~jeff"}

    def test_custom_key_length(self):
        assert blocking_keys(["jeffrey epstein"], key_length=2) == {"je", "ep", "~jeff"}

    def test_empty_candidates(self):
        assert blocking_keys([]) == set()
        assert blocking_keys([""]) == set()


class TestMatchEdge:
    def test_ids_ordered(self):
        """Test an edge always stores the smaller id first."""
        edge = MatchEdge(5, 2, "exact")
        assert (edge.id_a, edge.id_b) == (2, 5)


class TestBuildClusters:
    """Tests for build_clusters()."""

    def test_end_to_end_example(self):
        """Test the three Epstein spellings form one confirmed cluster."""
        records = [
            PersonRecord(id=1, display_name="Jeffrey Epstein"),
            PersonRecord(id=2, display_name="Epstein, Jeffrey"),
            PersonRecord(id=3, display_name="J. Epstein", aliases=["Jeffrey E."]),
        ]
        result = build_clusters(records)

        assert result.ambiguous == []
        assert len(result.confirmed) == 1
        cluster = result.confirmed[0]
        assert cluster.member_ids == (1, 2, 3)
        assert cluster.confirmed is True
        assert cluster.missing_pairs == []
        assert {(e.id_a, e.id_b) for e in cluster.edges} == {(1, 2), (1, 3), (2, 3)}
        assert "exact" in cluster.rules
        assert cluster.versions == {1: 1, 2: 1, 3: 1}

    def test_unrelated_records_stay_apart(self):
        """Test records that match nothing form no cluster."""
        result = build_clusters(_records("Jeffrey Epstein", "Ghislaine Maxwell", "Bill Clinton"))
        assert result.confirmed == []
        assert result.ambiguous == []

    def test_identical_single_tokens_do_not_cluster(self):
        """Test two bare given names never cluster."""
        result = build_clusters(_records("Jeffrey", "Jeffrey"))
        assert result.confirmed == []

    def test_ambiguous_chain_not_confirmed(self):
        """Test A~B and B~C with A!~C is flagged, not merged."""
        records = _records("John Smith", "J. Smith", "Jane Smith")
        with pytest.warns(AmbiguousClusterWarning):
            result = build_clusters(records)

        assert result.confirmed == []
        assert len(result.ambiguous) == 1
        cluster = result.ambiguous[0]
        assert cluster.member_ids == (1, 2, 3)
        assert cluster.confirmed is False
        assert cluster.missing_pairs == [(1, 3)]

    def test_bare_surname_does_not_block_duplicates(self):
        """Test a lone "Epstein" linking unrelated Epsteins still lets the real pair merge."""
        records = _records("Jeffrey Epstein", "Epstein, Jeffrey", "Epstein", "Mark Epstein")

        with warnings.catch_warnings():
            warnings.simplefilter("error", AmbiguousClusterWarning)
            result = build_clusters(records)

        assert [c.member_ids for c in result.confirmed] == [(1, 2)]
        assert result.ambiguous == []

    def test_bare_surname_residual_flagged(self):
        """Test the bare record and an unresolved chain stay together for review."""
        records = _records(
            "Epstein", "Jeffrey Epstein", "Epstein, Jeffrey",
            "Mark Epstein", "M. Epstein", "Mary Epstein",
        )
        with pytest.warns(AmbiguousClusterWarning):
            result = build_clusters(records)

        assert [c.member_ids for c in result.confirmed] == [(2, 3)]
        assert [c.member_ids for c in result.ambiguous] == [(1, 4, 5, 6)]
        assert (4, 6) in result.ambiguous[0].missing_pairs

    def test_bare_name_in_clique_still_merges(self):
        records = _records("Jeffrey Epstein", "Epstein, Jeffrey", "Epstein")
        result = build_clusters(records)
        assert [c.member_ids for c in result.confirmed] == [(1, 2, 3)]

    def test_clusters_disjoint(self):
        """Test every record is in at most one cluster."""
        records = _records(
            "Jeffrey Epstein", "Epstein, Jeffrey",
            "Ghislaine Maxwell", "Maxwell Ghislaine",
            "John Smith", "J. Smith", "Jane Smith",
            "Bill Clinton", "William Clinton",
            "Tony Ricco",
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", AmbiguousClusterWarning)
            result = build_clusters(records)

        seen = []
        for cluster in result.confirmed + result.ambiguous:
            seen.extend(cluster.member_ids)
        assert len(seen) == len(set(seen))
        assert set(seen) <= {r.id for r in records}
        assert [c.member_ids for c in result.confirmed] == [(1, 2), (3, 4), (8, 9)]
        assert [c.member_ids for c in result.ambiguous] == [(5, 6, 7)]

    def test_junk_records_skipped(self):
        """Test junk display names never enter a cluster."""
        records = _records("[REDACTED]", "[REDACTED]", "Jeffrey Epstein")
        result = build_clusters(records)
        assert result.confirmed == []

    def test_cancel_raises(self):
        """Test a set cancel event stops the build at the first bucket."""
        event = threading.Event()
        event.set()
        with pytest.raises(DedupCancelled):
            build_clusters(_records("Jeffrey Epstein", "Epstein, Jeffrey"), cancel_event=event)

    def test_empty_input(self):
        result = build_clusters([])
        assert result.confirmed == []
        assert result.ambiguous == []
        assert result.pairs_evaluated == 0


class TestEquivalenceCluster:
    def test_to_dict(self):
        cluster = EquivalenceCluster(
            member_ids=(1, 2),
            confirmed=True,
            edges=[MatchEdge(1, 2, "exact")],
            versions={1: 3, 2: 1},
            names={1: "Jeffrey Epstein", 2: "Epstein, Jeffrey"},
        )
        data = cluster.to_dict()
        assert data["member_ids"] == [1, 2]
        assert data["edges"] == [{"id_a": 1, "id_b": 2, "rule": "exact"}]
        assert data["versions"] == {"1": 3, "2": 1}
        assert cluster.rules == ["exact"]
