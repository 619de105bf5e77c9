"""Person records, the record store, and import/export of the flat tree payload."""

import logging
import uuid
from typing import Any, Iterable, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger("familytree.records")

SELF_RELATION = "Self"
SPOUSE_RELATION = "Spouse"


class InvalidTreeData(ValueError):
    """Raised when an import payload is not a list of person records."""


# ============================================================================
# Person Record
# ============================================================================

class PersonRecord(BaseModel):
    """A single person in the flat record set.

    Only ``id`` is required. Fields that were never set stay out of the
    exported payload, and unknown keys are carried through untouched.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str | None = None
    relation: str | None = None
    gender: str | None = None
    dob: str | None = None
    location: str | None = None
    address: str | None = None
    notes: str | None = None
    photo: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    spouse_id: str | None = Field(default=None, alias="spouseId")

    @property
    def label(self) -> str:
        return self.name or self.id

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


_record_list_adapter = TypeAdapter(list[PersonRecord])


def new_record_id() -> str:
    """Generate a new unique record ID."""
    return str(uuid.uuid4())


def seed_record() -> PersonRecord:
    """The single "Me" record a brand-new tree starts from."""
    return PersonRecord(
        id=new_record_id(),
        name="Me",
        relation=SELF_RELATION,
        gender="Male",
        parent_id=None,
    )


# ============================================================================
# Record Store
# ============================================================================

class RecordStore:
    """Ordered id -> record container; the single source of truth for a tree."""

    def __init__(self, records: Iterable[PersonRecord] = ()):
        self._records: dict[str, PersonRecord] = {}
        for record in records:
            self.add(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PersonRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get(self, record_id: str | None) -> PersonRecord | None:
        if record_id is None:
            return None
        return self._records.get(record_id)

    def add(self, record: PersonRecord) -> PersonRecord:
        if record.id in self._records:
            raise ValueError(f"Duplicate record id: {record.id}")
        self._records[record.id] = record
        return record

    def remove(self, record_ids: Iterable[str]) -> list[str]:
        """Remove records by id. Returns the removed ids in store order."""
        doomed = set(record_ids)
        removed = [record_id for record_id in self._records if record_id in doomed]
        for record_id in removed:
            del self._records[record_id]
        return removed

    def clear(self) -> None:
        self._records.clear()

    def find_self(self) -> PersonRecord | None:
        """The first record tagged as the user's own identity."""
        for record in self._records.values():
            if record.relation == SELF_RELATION:
                return record
        return None

    def children_index(self) -> dict[str, list[str]]:
        """Map of parent id -> child ids following raw ``parentId`` values."""
        index: dict[str, list[str]] = {}
        for record in self._records.values():
            if record.parent_id:
                index.setdefault(record.parent_id, []).append(record.id)
        return index


# ============================================================================
# Import / Export
# ============================================================================

def load_records(payload: Any) -> tuple[RecordStore, list[str]]:
    """
    Build a RecordStore from an import payload (a JSON-style list of records).

    An empty list yields a freshly seeded tree. Malformed payloads raise
    InvalidTreeData; data-quality problems that the tree builder can live with
    (dangling links, one-sided spouses, parent cycles) come back as warnings.

    Returns:
        (store, warnings)
    """
    if not isinstance(payload, list):
        raise InvalidTreeData(
            f"Tree data must be a list of person records, got {type(payload).__name__}"
        )

    try:
        records = _record_list_adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidTreeData(f"Invalid person record: {e.errors()[0]['msg']}") from e

    seen: set[str] = set()
    for record in records:
        if record.id in seen:
            raise InvalidTreeData(f"Duplicate record id: {record.id}")
        seen.add(record.id)

    store = RecordStore(records)
    if not records:
        logger.info("Empty tree payload, seeding with a 'Self' record")
        store.add(seed_record())
        return store, []

    warnings = check_data_quality(store)
    for warning in warnings:
        logger.warning(f"Data quality: {warning}")
    logger.info(f"Loaded {len(store)} records ({len(warnings)} warnings)")
    return store, warnings


def export_records(store: RecordStore) -> list[dict[str, Any]]:
    """Export the store as a JSON-serializable list, in store order."""
    return [record.to_payload() for record in store]


# ============================================================================
# Ancestry Walks
# ============================================================================

def iter_ancestry(start_id: str | None, parent_links: Mapping[str, str]) -> Iterator[str]:
    """
    Yield ``start_id`` and then each ancestor id, walking ``parent_links`` upward.

    Stops at the first id without a parent, or when an id repeats (a cycle is
    treated as having no further ancestor).
    """
    visited: set[str] = set()
    current = start_id
    while current is not None and current not in visited:
        visited.add(current)
        yield current
        current = parent_links.get(current)


def walk_to_root(start_id: str | None, parent_links: Mapping[str, str]) -> str | None:
    """Return the topmost ancestor reachable from ``start_id``."""
    top = None
    for top in iter_ancestry(start_id, parent_links):
        pass
    return top


def _raw_parent_links(store: RecordStore) -> dict[str, str]:
    return {
        record.id: record.parent_id
        for record in store
        if record.parent_id and record.parent_id != record.id and record.parent_id in store
    }


def find_parent_cycles(store: RecordStore) -> list[list[str]]:
    """Find every cycle formed by ``parentId`` links (self-parenting included)."""
    cycles = [[record.id] for record in store if record.parent_id == record.id]
    links = _raw_parent_links(store)

    finished: set[str] = set()
    for start in links:
        path: list[str] = []
        position: dict[str, int] = {}
        node = start
        while node is not None and node not in finished:
            if node in position:
                cycles.append(path[position[node]:])
                break
            position[node] = len(path)
            path.append(node)
            node = links.get(node)
        finished.update(path)

    return cycles


def resolve_parent_links(store: RecordStore) -> dict[str, str]:
    """
    Effective child -> parent map used for every traversal.

    Dangling references are dropped, and each parent cycle is broken at its
    smallest id so that all upward walks terminate.
    """
    links = _raw_parent_links(store)
    for cycle in find_parent_cycles(store):
        links.pop(min(cycle), None)
    return links


def detect_circular_ancestry(store: RecordStore, person_id: str, potential_parent_id: str) -> bool:
    """
    Check if adding potential_parent as parent of person would create circular ancestry.
    Returns True if circular relationship detected.
    """
    return person_id in iter_ancestry(potential_parent_id, resolve_parent_links(store))


# ============================================================================
# Data Quality
# ============================================================================

def check_data_quality(store: RecordStore) -> list[str]:
    """
    Report problems the tree builder tolerates but the user should know about:
    - Dangling parentId/spouseId references
    - One-sided or self spouse links
    - Cycles in parent links
    - Missing or repeated "Self" records

    Returns a list of warning messages.
    """
    warnings: list[str] = []

    self_count = 0
    for record in store:
        if record.relation == SELF_RELATION:
            self_count += 1

        if record.parent_id and record.parent_id not in store:
            warnings.append(f"'{record.label}' references missing parent {record.parent_id}")

        if record.spouse_id:
            spouse = store.get(record.spouse_id)
            if record.spouse_id == record.id:
                warnings.append(f"'{record.label}' is listed as their own spouse")
            elif spouse is None:
                warnings.append(f"'{record.label}' references missing spouse {record.spouse_id}")
            elif spouse.spouse_id != record.id:
                warnings.append(
                    f"Spouse link is one-sided: '{record.label}' -> '{spouse.label}'"
                )

    for cycle in find_parent_cycles(store):
        names = [store.get(record_id).label for record_id in cycle]
        warnings.append(f"Cycle detected in parent links: {names}")

    if self_count == 0:
        warnings.append("No record is tagged 'Self'")
    elif self_count > 1:
        warnings.append(f"{self_count} records are tagged 'Self'")

    return warnings
