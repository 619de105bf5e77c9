"""Cascading deletion of people and whole families from the record store.

Every operation computes its full deletion set before touching the store, so
a rejected request leaves the tree exactly as it was.
"""

import logging
from collections import deque
from typing import Any

import networkx as nx

from family_records import SELF_RELATION, RecordStore, seed_record

logger = logging.getLogger("familytree.deletion")


def _not_found(record_id: str) -> dict[str, Any]:
    return {"success": False, "status": 404, "error": f"Person not found: '{record_id}'."}


def _clear_references(store: RecordStore, deleted: set[str]) -> None:
    """Null out any surviving parentId/spouseId that points at a deleted record."""
    for record in store:
        if record.id in deleted:
            continue
        if record.spouse_id in deleted:
            record.spouse_id = None
        if record.parent_id in deleted:
            record.parent_id = None


def _apply_deletion(store: RecordStore, to_delete: set[str]) -> list[str]:
    _clear_references(store, to_delete)
    removed = store.remove(to_delete)
    if len(store) == 0:
        logger.info("Tree is empty after deletion, re-seeding 'Self' record")
        store.add(seed_record())
    return removed


# ============================================================================
# Delete Member (and descendants)
# ============================================================================

def delete_subtree(store: RecordStore, record_id: str) -> dict[str, Any]:
    """
    Delete a person and all of their descendants.

    The "Self" record can't be deleted, either directly or as someone's
    descendant. Surviving spouses of deleted people are unlinked.

    Returns:
        dict with 'success', 'message' and 'deleted_ids', or 'error'
    """
    record = store.get(record_id)
    if record is None:
        return _not_found(record_id)
    if record.relation == SELF_RELATION:
        logger.warning(f"Refused to delete 'Self' record {record_id}")
        return {"success": False, "error": 'Cannot delete the main "Me" record!'}

    to_delete = {record_id}
    found = True
    while found:
        found = False
        for candidate in store:
            if candidate.id not in to_delete and candidate.parent_id in to_delete:
                to_delete.add(candidate.id)
                found = True

    protected = [store.get(i).label for i in to_delete if store.get(i).relation == SELF_RELATION]
    if protected:
        logger.warning(f"Refused to delete {record_id}: subtree contains 'Self' record")
        return {
            "success": False,
            "error": f"Cannot delete {record.label}: their descendants include the main \"Me\" record ({protected[0]}).",
        }

    removed = _apply_deletion(store, to_delete)
    logger.info(f"Deleted subtree of {record_id}: {len(removed)} records")
    return {
        "success": True,
        "message": f"{record.label} removed from the tree",
        "deleted_ids": removed,
    }


# ============================================================================
# Delete Whole Family
# ============================================================================

def collect_family_closure(store: RecordStore, root_id: str) -> set[str]:
    """
    Work out who goes when the family rooted at ``root_id`` is deleted.

    1. All descendants of the root.
    2. Their spouses, when the spouse has no parent or a parent already
       being deleted, along with that spouse's own children.
    3. Salvage, repeated until stable: anyone still married to, or a child
       of, someone outside the set stays.
    """
    children = store.children_index()

    to_delete: set[str] = set()
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        if current in to_delete:
            continue
        to_delete.add(current)
        for child_id in children.get(current, []):
            if child_id not in to_delete:
                queue.append(child_id)

    for record in store:
        if record.id not in to_delete or not record.spouse_id:
            continue
        spouse = store.get(record.spouse_id)
        if spouse is None:
            continue
        if spouse.parent_id not in store or spouse.parent_id in to_delete:
            to_delete.add(spouse.id)
            to_delete.update(children.get(spouse.id, []))

    salvaged = True
    while salvaged:
        salvaged = False
        for member_id in list(to_delete):
            member = store.get(member_id)
            if member is None:
                continue
            # Dangling links count as absent
            married_to_survivor = member.spouse_id in store and member.spouse_id not in to_delete
            child_of_survivor = member.parent_id in store and member.parent_id not in to_delete
            if married_to_survivor or child_of_survivor:
                to_delete.discard(member_id)
                salvaged = True

    return to_delete


def delete_whole_family(store: RecordStore, root_id: str) -> dict[str, Any]:
    """
    Delete an entire family section without reaching into other families.

    People tied to surviving relatives are salvaged; an empty result is a
    valid outcome.

    Returns:
        dict with 'success', 'message' and 'deleted_ids', or 'error'
    """
    root = store.get(root_id)
    if root is None:
        return _not_found(root_id)

    to_delete = collect_family_closure(store, root_id)
    if not to_delete:
        logger.info(f"Whole-family delete of {root_id} salvaged every member")
        return {
            "success": True,
            "message": f"Nothing deleted: everyone in {root.label}'s family is still connected to other relatives.",
            "deleted_ids": [],
        }

    protected = [store.get(i).label for i in to_delete if store.get(i).relation == SELF_RELATION]
    if protected:
        logger.warning(f"Refused to delete family of {root_id}: it contains 'Self' record")
        return {
            "success": False,
            "error": f"Cannot delete {root.label}'s family: it includes the main \"Me\" record ({protected[0]}).",
        }

    removed = _apply_deletion(store, to_delete)
    logger.info(f"Deleted family rooted at {root_id}: {len(removed)} records")
    return {
        "success": True,
        "message": "Family tree deleted successfully.",
        "deleted_ids": removed,
    }


# ============================================================================
# Unlink Spouse's Extended Family
# ============================================================================

def build_family_graph(store: RecordStore, exclude_parent_of: str | None = None) -> nx.Graph:
    """
    Build an undirected graph over all parent and spouse links.

    Links to missing records are skipped. ``exclude_parent_of`` leaves out
    that person's parent link.
    """
    G = nx.Graph()
    G.add_nodes_from(record.id for record in store)

    for record in store:
        if record.parent_id in store and record.id != exclude_parent_of:
            G.add_edge(record.id, record.parent_id, relationship_type="PARENT_OF")
        if record.spouse_id in store:
            G.add_edge(record.id, record.spouse_id, relationship_type="SPOUSE_OF")

    return G


def delete_spouse_family(store: RecordStore, spouse_id: str) -> dict[str, Any]:
    """
    Cut a spouse off from their birth family and delete that whole family.

    Everything still connected to the spouse's former parent once the link is
    cut goes. The spouse and the rest of the main tree stay. If the spouse
    or the "Self" record is still reachable through another path, the
    request is refused.

    Returns:
        dict with 'success', 'message' and 'deleted_ids', or 'error'
    """
    spouse = store.get(spouse_id)
    if spouse is None or not spouse.parent_id:
        return {
            "success": False,
            "severity": "warning",
            "error": "No extended family found to unlink.",
        }

    parent_id = spouse.parent_id
    if parent_id not in store:
        spouse.parent_id = None
        logger.warning(f"Cleared dangling parent {parent_id} from {spouse_id}")
        return {
            "success": True,
            "message": f"{spouse.label}'s parent link was already broken; link removed.",
            "deleted_ids": [],
        }

    G = build_family_graph(store, exclude_parent_of=spouse_id)
    component = nx.node_connected_component(G, parent_id)

    if spouse_id in component or any(store.get(i).relation == SELF_RELATION for i in component):
        logger.warning(f"Refused to unlink family of {spouse_id}: still connected via another path")
        return {
            "success": False,
            "error": f"Cannot unlink {spouse.label}'s extended family: it is still connected to the main tree through another relative.",
        }

    spouse.parent_id = None
    removed = _apply_deletion(store, set(component))
    logger.info(f"Unlinked family of {spouse_id}: {len(removed)} records deleted")
    return {
        "success": True,
        "message": "Spouse's extended family unlinked and deleted.",
        "deleted_ids": removed,
    }
