"""Tests for person records, the record store and import/export."""

import pytest

from family_records import (
    InvalidTreeData,
    PersonRecord,
    RecordStore,
    check_data_quality,
    detect_circular_ancestry,
    export_records,
    find_parent_cycles,
    iter_ancestry,
    load_records,
    new_record_id,
    resolve_parent_links,
    walk_to_root,
)


# ============================================================================
# Import / Export Tests
# ============================================================================

class TestImportExport:
    """Tests for loading and exporting the flat record payload."""

    def test_empty_payload_seeds_self_record(self):
        """Importing an empty list creates exactly one 'Self' record."""
        store, warnings = load_records([])

        assert warnings == []
        assert len(store) == 1
        payload = export_records(store)[0]
        assert payload["name"] == "Me"
        assert payload["relation"] == "Self"
        assert payload["gender"] == "Male"
        assert payload["parentId"] is None
        assert "spouseId" not in payload

    def test_round_trip_preserves_fields_exactly(self):
        """Absent fields stay absent, nulls stay null and unknown keys survive."""
        payload = [
            {"id": "me", "name": "Me", "relation": "Self", "gender": "Male", "parentId": None, "children": []},
            {"id": "kid", "name": "Kid", "parentId": "me", "dob": "2010-04-02", "notes": "Loves chess"},
            {"id": "x", "name": "Aunt X", "spouseId": None, "favouriteColour": "green"},
        ]

        store, _ = load_records(payload)
        exported = export_records(store)

        assert exported == payload

    def test_round_trip_after_reload(self):
        """Exporting, re-importing and exporting again gives the same payload."""
        store, _ = load_records([
            {"id": "a", "name": "A", "relation": "Self", "spouseId": "b"},
            {"id": "b", "name": "B", "relation": "Spouse", "spouseId": "a", "photo": "b.png"},
        ])
        first = export_records(store)
        second = export_records(load_records(first)[0])

        assert sorted(first, key=lambda r: r["id"]) == sorted(second, key=lambda r: r["id"])

    def test_mutated_field_is_exported(self):
        """Fields set after loading are part of the export."""
        store, _ = load_records([{"id": "me", "name": "Me", "relation": "Self"}])
        store.get("me").location = "Chennai"

        assert export_records(store) == [
            {"id": "me", "name": "Me", "relation": "Self", "location": "Chennai"}
        ]

    @pytest.mark.parametrize("payload", [
        {"id": "me"},
        "not a tree",
        None,
        [1, 2, 3],
        [{"name": "No id"}],
        [{"id": 5, "name": "Numeric id"}],
    ])
    def test_malformed_payload_rejected(self, payload):
        """Anything other than a list of record objects is refused."""
        with pytest.raises(InvalidTreeData):
            load_records(payload)

    def test_duplicate_ids_rejected(self):
        """Two records with the same id can't be loaded."""
        with pytest.raises(InvalidTreeData, match="Duplicate"):
            load_records([{"id": "a", "name": "A"}, {"id": "a", "name": "Also A"}])


# ============================================================================
# Record Store Tests
# ============================================================================

class TestRecordStore:
    """Tests for the RecordStore container."""

    def test_add_and_get(self):
        store = RecordStore()
        record = store.add(PersonRecord(id="a", name="A"))

        assert store.get("a") is record
        assert "a" in store
        assert store.get("missing") is None
        assert store.get(None) is None

    def test_add_duplicate_raises(self):
        store = RecordStore([PersonRecord(id="a")])
        with pytest.raises(ValueError):
            store.add(PersonRecord(id="a"))

    def test_remove_returns_ids_in_store_order(self):
        store = RecordStore([PersonRecord(id=i) for i in ("a", "b", "c", "d")])

        removed = store.remove({"d", "b", "zzz"})

        assert removed == ["b", "d"]
        assert [r.id for r in store] == ["a", "c"]

    def test_find_self(self):
        store = RecordStore([
            PersonRecord(id="a", relation="Father"),
            PersonRecord(id="b", relation="Self"),
        ])
        assert store.find_self().id == "b"
        assert RecordStore([PersonRecord(id="a")]).find_self() is None

    def test_children_index(self):
        store = RecordStore([
            PersonRecord(id="p"),
            PersonRecord(id="c1", parent_id="p"),
            PersonRecord(id="c2", parent_id="p"),
            PersonRecord(id="orphan", parent_id="ghost"),
        ])
        index = store.children_index()

        assert index["p"] == ["c1", "c2"]
        assert index["ghost"] == ["orphan"]

    def test_new_record_ids_are_unique(self):
        ids = {new_record_id() for _ in range(100)}
        assert len(ids) == 100


# ============================================================================
# Ancestry Walk Tests
# ============================================================================

class TestAncestry:
    """Tests for the cycle-guarded upward walk and parent link resolution."""

    def test_iter_ancestry_walks_to_top(self):
        links = {"c": "b", "b": "a"}
        assert list(iter_ancestry("c", links)) == ["c", "b", "a"]
        assert walk_to_root("c", links) == "a"

    def test_iter_ancestry_stops_on_cycle(self):
        links = {"a": "b", "b": "a"}
        assert list(iter_ancestry("a", links)) == ["a", "b"]
        assert walk_to_root("a", links) == "b"

    def test_walk_to_root_of_nothing(self):
        assert walk_to_root(None, {}) is None

    def test_resolve_parent_links_drops_dangling_and_breaks_cycles(self, make_store):
        store = make_store(
            {"id": "a", "parentId": "b"},
            {"id": "b", "parentId": "a"},
            {"id": "c", "parentId": "ghost"},
            {"id": "d", "parentId": "c"},
            {"id": "e", "parentId": "e"},
            allow_warnings=True,
        )

        links = resolve_parent_links(store)

        assert links == {"b": "a", "d": "c"}

    def test_find_parent_cycles(self, make_store):
        store = make_store(
            {"id": "a", "parentId": "c"},
            {"id": "b", "parentId": "a"},
            {"id": "c", "parentId": "b"},
            {"id": "tail", "parentId": "a"},
            allow_warnings=True,
        )

        cycles = find_parent_cycles(store)

        assert len(cycles) == 1
        assert sorted(cycles[0]) == ["a", "b", "c"]

    def test_detect_circular_ancestry(self, make_store):
        store = make_store(
            {"id": "grandpa", "relation": "Self"},
            {"id": "dad", "parentId": "grandpa"},
            {"id": "kid", "parentId": "dad"},
        )

        assert detect_circular_ancestry(store, "grandpa", "kid") is True
        assert detect_circular_ancestry(store, "kid", "grandpa") is False


# ============================================================================
# Data Quality Tests
# ============================================================================

class TestDataQuality:
    """Tests for import-time data-quality warnings."""

    def test_clean_tree_has_no_warnings(self, married_out_records):
        _, warnings = load_records(married_out_records)
        assert warnings == []

    def test_problems_are_reported_not_raised(self):
        store, warnings = load_records([
            {"id": "me", "name": "Me", "relation": "Self"},
            {"id": "a", "name": "A", "parentId": "ghost"},
            {"id": "b", "name": "B", "spouseId": "me"},
            {"id": "c1", "name": "C1", "parentId": "c2"},
            {"id": "c2", "name": "C2", "parentId": "c1"},
            {"id": "d", "name": "D", "spouseId": "nobody"},
        ])

        assert len(store) == 6
        assert any("missing parent ghost" in w for w in warnings)
        assert any("one-sided" in w for w in warnings)
        assert any("Cycle detected" in w for w in warnings)
        assert any("missing spouse nobody" in w for w in warnings)

    def test_self_tag_count(self, make_store):
        none_tagged = make_store({"id": "a", "name": "A"}, allow_warnings=True)
        two_tagged = make_store(
            {"id": "a", "relation": "Self"},
            {"id": "b", "relation": "Self"},
            allow_warnings=True,
        )

        assert "No record is tagged 'Self'" in check_data_quality(none_tagged)
        assert "2 records are tagged 'Self'" in check_data_quality(two_tagged)
