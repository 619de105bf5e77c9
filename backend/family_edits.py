"""Add, edit and link operations on the record store.

Every command validates first and mutates only once nothing can fail, so a
rejected command leaves the store unchanged.
"""

import logging
from typing import Any

from family_records import (
    SELF_RELATION,
    SPOUSE_RELATION,
    PersonRecord,
    RecordStore,
    detect_circular_ancestry,
    new_record_id,
    seed_record,
)

logger = logging.getLogger("familytree.edits")

EDITABLE_FIELDS = ("name", "relation", "gender", "dob", "location", "address", "notes", "photo")
LINK_KINDS = ("Spouse", "Child", "Parent")


def _not_found(record_id: str) -> dict[str, Any]:
    return {"success": False, "status": 404, "error": f"Person not found: '{record_id}'."}


def _check_fields(fields: dict[str, Any]) -> str | None:
    """Return an error message if ``fields`` holds anything but editable fields."""
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        return f"Cannot set field(s) {', '.join(unknown)}. Editable fields: {', '.join(EDITABLE_FIELDS)}."
    return None


def _added(record: PersonRecord, **extra) -> dict[str, Any]:
    logger.info(f"Added {record.label} ({record.id})")
    return {
        "success": True,
        "id": record.id,
        "message": f"{record.label} added to the tree!",
        **extra,
    }


# ============================================================================
# Add Operations
# ============================================================================

def add_child(store: RecordStore, parent_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Add a new child under ``parent_id``."""
    if parent_id not in store:
        return _not_found(parent_id)
    error = _check_fields(fields)
    if error:
        return {"success": False, "error": error}

    child = store.add(PersonRecord(id=new_record_id(), parent_id=parent_id, **fields))
    return _added(child)


def add_parent(store: RecordStore, child_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    """
    Add a new parent above ``child_id``.

    A record holds a single parent link; the second parent is added as that
    parent's spouse, so a child that already has a parent is refused.
    """
    child = store.get(child_id)
    if child is None:
        return _not_found(child_id)
    error = _check_fields(fields)
    if error:
        return {"success": False, "error": error}

    existing = store.get(child.parent_id)
    if existing is not None:
        if existing.spouse_id in store:
            return {"success": False, "error": "Both parents already exist!"}
        return {
            "success": False,
            "error": f"Parent ({existing.label}) already exists. Add a spouse to them instead.",
            "parent_id": existing.id,
        }

    parent = store.add(PersonRecord(id=new_record_id(), parent_id=None, **fields))
    child.parent_id = parent.id
    return _added(parent)


def add_spouse(store: RecordStore, partner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Add a new spouse for ``partner_id``; the link is set on both records."""
    partner = store.get(partner_id)
    if partner is None:
        return _not_found(partner_id)
    error = _check_fields(fields)
    if error:
        return {"success": False, "error": error}
    if partner.spouse_id in store:
        return {"success": False, "error": "Partner/Spouse already exists!"}

    fields = {"relation": SPOUSE_RELATION, **fields}
    spouse = store.add(PersonRecord(id=new_record_id(), spouse_id=partner_id, **fields))
    partner.spouse_id = spouse.id
    return _added(spouse)


def add_sibling(store: RecordStore, reference_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    """
    Add a sibling of ``reference_id``.

    With no parent on record, a placeholder parent is created first so the
    two siblings share it.
    """
    reference = store.get(reference_id)
    if reference is None:
        return _not_found(reference_id)
    error = _check_fields(fields)
    if error:
        return {"success": False, "error": error}

    if reference.parent_id in store:
        return add_child(store, reference.parent_id, fields)

    placeholder = store.add(PersonRecord(
        id=new_record_id(),
        name="Parent" if reference.relation == SELF_RELATION else "Unknown Parent",
        relation="Parent",
        parent_id=None,
    ))
    reference.parent_id = placeholder.id
    logger.info(f"Created placeholder parent {placeholder.id} for {reference.label}")

    result = add_child(store, placeholder.id, fields)
    result["placeholder_parent_id"] = placeholder.id
    return result


def create_family(store: RecordStore) -> dict[str, Any]:
    """Start a new, independent family tree with a blank root."""
    root = store.add(PersonRecord(
        id=new_record_id(),
        name="New Family Root",
        relation="Root",
        gender="Other",
        parent_id=None,
    ))
    logger.info(f"Created new family root {root.id}")
    return {"success": True, "id": root.id, "message": "New family created!"}


def reset_tree(store: RecordStore) -> dict[str, Any]:
    """Wipe the tree and start over from a single "Me" record."""
    store.clear()
    seed = store.add(seed_record())
    logger.info("Tree reset")
    return {"success": True, "id": seed.id, "message": "Tree has been reset!"}


# ============================================================================
# Edit
# ============================================================================

def edit_person(store: RecordStore, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Update a person's descriptive fields. Links are changed with link_people."""
    record = store.get(record_id)
    if record is None:
        return _not_found(record_id)
    if not fields:
        return {"success": False, "error": "No fields to update."}
    error = _check_fields(fields)
    if error:
        return {"success": False, "error": error}

    for key, value in fields.items():
        setattr(record, key, value)

    logger.info(f"Updated {record_id}: {', '.join(fields)}")
    return {"success": True, "id": record_id, "message": f"{record.label} updated!"}


# ============================================================================
# Link
# ============================================================================

def _check_parent_link(store: RecordStore, child: PersonRecord, parent: PersonRecord) -> str | None:
    if child.parent_id in store and child.parent_id != parent.id:
        return f"{child.label} already has a parent ({store.get(child.parent_id).label})."
    if detect_circular_ancestry(store, child.id, parent.id):
        return f"Cannot link: would create circular ancestry. {parent.label} is a descendant of {child.label}."
    return None


def link_people(store: RecordStore, source_id: str, target_id: str, relation: str) -> dict[str, Any]:
    """
    Link two existing people.

    Args:
        store: Record store
        source_id: The person the link is made from
        target_id: The person they are linked to
        relation: 'Spouse' (source marries target), 'Child' (source becomes
            target's child) or 'Parent' (source becomes target's parent)

    Returns:
        dict with 'success' and 'message', or 'error'
    """
    if relation not in LINK_KINDS:
        return {"success": False, "error": f"Unknown link type '{relation}'. Use one of: {', '.join(LINK_KINDS)}."}
    if source_id == target_id:
        return {"success": False, "error": "Cannot link a person to themselves."}

    source = store.get(source_id)
    target = store.get(target_id)
    if source is None:
        return _not_found(source_id)
    if target is None:
        return _not_found(target_id)

    if relation == "Spouse":
        for person, other in ((source, target), (target, source)):
            if person.spouse_id in store and person.spouse_id != other.id:
                return {"success": False, "error": f"{person.label} already has a spouse."}
        source.spouse_id = target_id
        target.spouse_id = source_id
        source.relation = SPOUSE_RELATION

    elif relation == "Child":
        error = _check_parent_link(store, child=source, parent=target)
        if error:
            return {"success": False, "error": error}
        source.parent_id = target_id
        source.relation = "Child"

    else:
        error = _check_parent_link(store, child=target, parent=source)
        if error:
            return {"success": False, "error": error}
        target.parent_id = source_id
        source.relation = "Parent"

    logger.info(f"Linked {source_id} -> {target_id} as {relation}")
    return {"success": True, "message": f"Successfully linked {source.label} to {target.label}!"}
