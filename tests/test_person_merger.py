"""
Tests for merging clusters and remapping references.

Tests cover:
- The documented end-to-end example against a real SQLite file
- Reference remap completeness (no dangling removed ids)
- Relationship edge collisions folded into one row
- Optimistic concurrency (stale or vanished members)
- Manual merges and redirect flattening
- Idempotency of cluster + merge
"""
import pytest

from api.services.cluster_builder import EquivalenceCluster, MatchEdge, build_clusters
from api.services.person_merger import merge_cluster, merge_person_ids
from api.services.reference_remapper import find_references
from api.services.resolution_errors import ConcurrencyConflict

pytestmark = pytest.mark.integration


@pytest.fixture
def epstein_catalog(person_store, make_person):
    """
    The three Epstein spellings plus one unrelated associate, with references.

    ids: 1 Jeffrey Epstein, 2 Epstein, Jeffrey, 3 J. Epstein, 4 Ghislaine Maxwell
    """
    jeff = make_person("Jeffrey Epstein")
    rev = make_person("Epstein, Jeffrey")
    initial = make_person("J. Epstein", aliases=["Jeffrey E."])
    maxwell = make_person("Ghislaine Maxwell")

    person_store.link_document(jeff.id, 100)
    person_store.link_document(jeff.id, 101)
    person_store.link_document(rev.id, 100)
    person_store.link_document(initial.id, 102)

    person_store.add_connection(jeff.id, maxwell.id, "associate", strength=0.5, document_ids=[101])
    person_store.add_connection(maxwell.id, rev.id, "associate", strength=0.9, document_ids=[100])
    person_store.add_connection(rev.id, initial.id, "associate", strength=1.0)

    person_store.add_timeline_event("2005-03-01", "Complaint filed", [rev.id, initial.id, maxwell.id])
    return {"jeff": jeff, "rev": rev, "initial": initial, "maxwell": maxwell}


def _confirmed_cluster(store):
    result = build_clusters(store.get_all())
    assert len(result.confirmed) == 1
    return result.confirmed[0]


class TestMergeCluster:
    """Tests for merge_cluster()."""

    def test_end_to_end(self, person_store, epstein_catalog):
        """Test the three spellings collapse into the canonical record."""
        cluster = _confirmed_cluster(person_store)
        assert cluster.member_ids == (1, 2, 3)

        result = merge_cluster(cluster, person_store)

        assert result.canonical_id == 1
        assert result.removed_ids == [2, 3]
        assert person_store.count() == 2

        canonical = person_store.get_by_id(1)
        assert canonical.display_name == "Jeffrey Epstein"
        assert canonical.aliases == ["Epstein, Jeffrey", "J. Epstein", "Jeffrey E."]
        assert canonical.document_count == 3
        assert person_store.get_canonical_id(2) == 1
        assert person_store.get_canonical_id(3) == 1

    def test_no_references_to_removed_ids(self, person_store, epstein_catalog):
        """Test nothing in the dependent tables points at a removed id."""
        merge_cluster(_confirmed_cluster(person_store), person_store)

        conn = person_store._get_connection()
        try:
            refs = find_references(conn, [2, 3])
        finally:
            conn.close()
        assert refs == {"persons": 0, "person_documents": 0, "connections": 0, "timeline_events": 0}

        events = person_store.get_timeline_events()
        assert events[0]["person_ids"] == [1, 4]

    def test_document_links_deduplicated(self, person_store, epstein_catalog):
        """Test a document linked to two members is linked once to the survivor."""
        merge_cluster(_confirmed_cluster(person_store), person_store)
        docs = sorted(d["document_id"] for d in person_store.get_person_documents(1))
        assert docs == [100, 101, 102]

    def test_edge_collision_folded(self, person_store, epstein_catalog):
        """Test two edges onto the same pair and type become one row."""
        result = merge_cluster(_confirmed_cluster(person_store), person_store)

        conns = person_store.get_connections()
        assert len(conns) == 1
        edge = conns[0]
        assert (edge["person_id_1"], edge["person_id_2"]) == (1, 4)
        assert edge["strength"] == 0.9
        assert edge["document_ids"] == [100, 101]

        assert len(result.conflicts) == 1
        assert result.conflicts[0].person_id_1 == 1
        assert result.rewrites["connections_self_loops_removed"] == 1
        assert person_store.get_by_id(1).connection_count == 1
        assert person_store.get_by_id(4).connection_count == 1

    def test_rule_recorded(self, person_store, epstein_catalog):
        """Test the merge records which rules justified it."""
        result = merge_cluster(_confirmed_cluster(person_store), person_store)
        assert result.rule == "exact,token_correspondence"

    def test_canonical_by_document_count(self, person_store, make_person):
        """Test the member with most documents survives and takes the name key."""
        make_person("Jeffrey Epstein")
        make_person("Epstein, Jeffrey", document_count=5)

        result = merge_cluster(_confirmed_cluster(person_store), person_store)

        assert result.canonical_id == 2
        assert person_store.get_by_normalized_name("jeffrey epstein").id == 2

    def test_stale_version_aborts(self, person_store, epstein_catalog):
        """Test a member changed since the scan aborts the whole merge."""
        cluster = _confirmed_cluster(person_store)
        rev = person_store.get_by_id(2)
        rev.role = "defendant"
        person_store.update(rev)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            merge_cluster(cluster, person_store)

        assert exc_info.value.person_ids == [2]
        assert person_store.count() == 4
        assert person_store.get_merged_ids() == {}

    def test_vanished_member_aborts(self, person_store, epstein_catalog):
        cluster = _confirmed_cluster(person_store)
        merge_person_ids(person_store, 1, [3])

        with pytest.raises(ConcurrencyConflict) as exc_info:
            merge_cluster(cluster, person_store)
        assert exc_info.value.person_ids == [3]

    def test_ambiguous_refused(self, person_store):
        cluster = EquivalenceCluster(member_ids=(1, 2, 3), confirmed=False, missing_pairs=[(1, 3)])
        with pytest.raises(ValueError):
            merge_cluster(cluster, person_store)

    def test_single_member_refused(self, person_store):
        cluster = EquivalenceCluster(member_ids=(1,), confirmed=True)
        with pytest.raises(ValueError):
            merge_cluster(cluster, person_store)

    def test_corrupt_event_row_does_not_block_merge(self, person_store, epstein_catalog):
        """Test an event with unparseable person_ids is left alone."""
        conn = person_store._get_connection()
        try:
            conn.execute(
                "INSERT INTO timeline_events (date, title, person_ids) VALUES (?, ?, ?)",
                ("2006-01-01", "Garbled", "[2, 3"),
            )
        finally:
            conn.close()

        result = merge_cluster(_confirmed_cluster(person_store), person_store)

        assert result.removed_ids == [2, 3]
        conn = person_store._get_connection()
        try:
            rows = conn.execute("SELECT person_ids FROM timeline_events ORDER BY id").fetchall()
        finally:
            conn.close()
        assert [r["person_ids"] for r in rows] == ["[1, 4]", "[2, 3"]

    def test_listener_notified(self, person_store, epstein_catalog):
        seen = []
        person_store.add_merge_listener(seen.append)
        result = merge_cluster(_confirmed_cluster(person_store), person_store)
        assert seen == [result]

    def test_idempotent(self, person_store, epstein_catalog):
        """Test clustering the merged catalog finds nothing more to merge."""
        merge_cluster(_confirmed_cluster(person_store), person_store)
        again = build_clusters(person_store.get_all())
        assert again.confirmed == []
        assert again.ambiguous == []


class TestManualMerge:
    """Tests for merge_person_ids()."""

    def test_manual_merge_forces_primary(self, person_store, make_person):
        """Test a curator's primary survives regardless of document count."""
        make_person("John Smith", document_count=10)
        make_person("Jane Smith")

        result = merge_person_ids(person_store, 2, [1])

        assert result.canonical_id == 2
        assert result.rule == "manual"
        assert person_store.get_by_id(2).aliases == ["John Smith"]

    def test_redirects_flattened(self, person_store, make_person):
        """Test an older redirect is re-pointed when its target is merged away."""
        make_person("Jeffrey Epstein")
        make_person("Epstein, Jeffrey")
        make_person("Jeff Epstein")

        merge_person_ids(person_store, 1, [2])
        merge_person_ids(person_store, 3, [1])

        assert person_store.get_merged_ids() == {1: 3, 2: 3}
        assert person_store.get_canonical_id(2) == 3

    def test_edges_from_evidence(self, person_store, make_person):
        """Test the rule comes from the cluster edges when present."""
        make_person("Bill Clinton")
        make_person("William Clinton")
        cluster = EquivalenceCluster(
            member_ids=(1, 2),
            confirmed=True,
            edges=[MatchEdge(1, 2, "token_correspondence")],
            versions={1: 1, 2: 1},
        )
        assert merge_cluster(cluster, person_store).rule == "token_correspondence"
