"""Pytest fixtures for family tree tests."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from family_records import RecordStore, load_records


@pytest.fixture
def make_store():
    """Build a RecordStore from record dicts, failing on data-quality warnings unless allowed."""
    def _make(*records: dict, allow_warnings: bool = False) -> RecordStore:
        store, warnings = load_records(list(records))
        if not allow_warnings:
            assert warnings == []
        return store
    return _make


@pytest.fixture
def married_out_records():
    """
    "Me" lives under Dad; Wife married in from her own family.

        Dad                 Wife's Dad
         |                      |
        Me ===== Wife (Spouse) -+
    """
    return [
        {"id": "p1", "name": "Dad", "relation": "Father", "gender": "Male", "parentId": None},
        {"id": "me", "name": "Me", "relation": "Self", "gender": "Male", "parentId": "p1", "spouseId": "s"},
        {"id": "s", "name": "Wife", "relation": "Spouse", "gender": "Female", "parentId": "p3", "spouseId": "me"},
        {"id": "p3", "name": "Wife's Dad", "relation": "Parent", "gender": "Male", "parentId": None},
    ]


@pytest.fixture
def assert_references_resolve():
    """Check that every parentId/spouseId in a store points at an existing record."""
    def _check(store: RecordStore) -> None:
        for record in store:
            assert record.parent_id is None or record.parent_id in store, record
            assert record.spouse_id is None or record.spouse_id in store, record
    return _check
