"""Tests for GEDCOM export of the record store."""

import os
import tempfile

import pytest

from gedcom.element.individual import IndividualElement
from gedcom.parser import Parser

from gedcom_utils import collect_families, export_gedcom_content


def parse_gedcom_content(content: str) -> Parser:
    """Parse GEDCOM content from a string."""
    # python-gedcom requires a file path
    with tempfile.NamedTemporaryFile(mode='w', suffix='.ged', delete=False, encoding='utf-8') as f:
        f.write(content)
        temp_path = f.name

    try:
        parser = Parser()
        parser.parse_file(temp_path, strict=False)
        return parser
    finally:
        os.unlink(temp_path)


def get_individual_data(element: IndividualElement) -> dict:
    """Read back the fields export_gedcom_content writes for an individual."""
    first_name, last_name = element.get_name()
    record_id = None
    for child in element.get_child_elements():
        if child.get_tag() == "REFN":
            record_id = child.get_value()
            break

    return {
        "pointer": element.get_pointer(),
        "recordId": record_id,
        "fullName": f"{first_name} {last_name}".strip(),
        "gender": element.get_gender(),
    }


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store(make_store, married_out_records):
    """The married-out family with a few descriptive fields filled in."""
    store = make_store(*married_out_records)
    me = store.get("me")
    me.dob = "12 MAR 1990"
    me.location = "Bengaluru"
    me.notes = "Line one\nLine two"
    return store


@pytest.fixture
def content(store):
    return export_gedcom_content(store)


@pytest.fixture
def parsed(content):
    """The parser, plus parsed individuals keyed by the record id stored in REFN."""
    parser = parse_gedcom_content(content)
    found = {}
    for element in parser.get_root_child_elements():
        if isinstance(element, IndividualElement):
            found[get_individual_data(element)["recordId"]] = element
    return parser, found


# ============================================================================
# Export Tests
# ============================================================================

class TestExportGedcom:
    """Tests for the exported GEDCOM text."""

    def test_header_and_trailer(self, content):
        lines = content.splitlines()

        assert lines[0] == "0 HEAD"
        assert "2 VERS 5.5.1" in lines
        assert "1 CHAR UTF-8" in lines
        assert lines[-1] == "0 TRLR"
        assert content.endswith("\n")

    def test_one_individual_per_record(self, content, store):
        indi_lines = [line for line in content.splitlines() if line.endswith(" INDI")]
        assert len(indi_lines) == len(store)

    def test_descriptive_fields(self, content):
        assert "1 NAME Me" in content
        assert "1 SEX M" in content
        assert "2 DATE 12 MAR 1990" in content
        assert "2 PLAC Bengaluru" in content
        assert "1 REFN me" in content

    def test_multiline_notes_use_cont(self, content):
        lines = content.splitlines()
        note_index = lines.index("1 NOTE Line one")
        assert lines[note_index + 1] == "2 CONT Line two"

    def test_unknown_gender_exported_as_u(self, make_store):
        store = make_store({"id": "me", "name": "Me", "relation": "Self", "gender": "Other"})
        assert "1 SEX U" in export_gedcom_content(store)


# ============================================================================
# Family Grouping Tests
# ============================================================================

class TestCollectFamilies:
    """Tests for grouping records into GEDCOM families."""

    def test_couples_and_single_parents(self, store):
        families = collect_families(store)

        assert families == [
            {"husband": "me", "wife": "s", "children": []},
            {"husband": "p1", "wife": None, "children": ["me"]},
            {"husband": "p3", "wife": None, "children": ["s"]},
        ]

    def test_husband_and_wife_by_gender(self, make_store):
        store = make_store(
            {"id": "a", "name": "Mom", "relation": "Self", "gender": "Female", "spouseId": "b"},
            {"id": "b", "name": "Dad", "relation": "Spouse", "gender": "Male", "spouseId": "a"},
            {"id": "c", "name": "Kid", "parentId": "a"},
        )

        assert collect_families(store) == [{"husband": "b", "wife": "a", "children": ["c"]}]


# ============================================================================
# Round-trip Through the Parser Tests
# ============================================================================

class TestParseExported:
    """The exported text is readable by python-gedcom."""

    def test_every_record_parsed(self, parsed, store):
        _, found = parsed
        assert set(found) == {record.id for record in store}

    def test_individual_data(self, parsed):
        _, found = parsed

        data = get_individual_data(found["me"])

        assert data["fullName"] == "Me"
        assert data["gender"] == "M"
        assert data["pointer"].startswith("@I")

    def test_parent_links_survive(self, parsed):
        parser, found = parsed

        parents = parser.get_parents(found["me"])

        assert [get_individual_data(p)["recordId"] for p in parents] == ["p1"]

    def test_spouses_share_a_family(self, parsed):
        parser, found = parsed

        me_families = parser.get_families(found["me"], "FAMS")
        wife_families = parser.get_families(found["s"], "FAMS")

        assert len(me_families) == 1
        assert me_families[0].get_pointer() == wife_families[0].get_pointer()
