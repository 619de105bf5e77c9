"""Couple resolution, hierarchy building and forest ordering for the family view.

The flat record set is turned into an ordered list of FamilyTree sections.
Each section holds one root render node; render nodes are a tagged variant
(person / couple / linked placeholder) so consumers never need to inspect
ad hoc flags.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from family_records import (
    SPOUSE_RELATION,
    PersonRecord,
    RecordStore,
    iter_ancestry,
    resolve_parent_links,
    walk_to_root,
)

logger = logging.getLogger("familytree.tree")

NEW_FAMILY_ROOT_NAME = "New Family Root"


# ============================================================================
# Render Nodes
# ============================================================================

class PersonCard(BaseModel):
    """The fields a person card needs."""
    id: str
    name: str | None = None
    relation: str | None = None
    gender: str | None = None
    dob: str | None = None
    photo: str | None = None

    @classmethod
    def from_record(cls, record: PersonRecord) -> "PersonCard":
        return cls(
            id=record.id,
            name=record.name,
            relation=record.relation,
            gender=record.gender,
            dob=record.dob,
            photo=record.photo,
        )


class PersonNode(BaseModel):
    """A single person with their children."""
    kind: Literal["person"] = "person"
    person: PersonCard
    children: list["RenderNode"] = []


class CoupleNode(BaseModel):
    """A couple drawn as one unit; children of both partners hang below it."""
    kind: Literal["couple"] = "couple"
    person: PersonCard
    partner: PersonCard
    children: list["RenderNode"] = []


class LinkedPlaceholderNode(BaseModel):
    """Marker left in a birth family for someone drawn in their spouse's tree."""
    kind: Literal["linked"] = "linked"
    id: str
    original_id: str
    name: str | None = None
    gender: str | None = None
    partner_name: str = ""


RenderNode = Annotated[
    Union[PersonNode, CoupleNode, LinkedPlaceholderNode],
    Field(discriminator="kind"),
]

PersonNode.model_rebuild()
CoupleNode.model_rebuild()


class FamilyTree(BaseModel):
    """One top-level family section of the forest."""
    root_id: str
    label: str = ""
    is_origin_family: bool = False
    origin_spouse_name: str | None = None
    target_link_id: str | None = None
    member_ids: list[str] = []
    root: RenderNode


# ============================================================================
# Couple Resolution
# ============================================================================

@dataclass
class CoupleResolution:
    partner_of: dict[str, str] = field(default_factory=dict)
    draws: dict[str, bool] = field(default_factory=dict)
    married_out: set[str] = field(default_factory=set)


def couple_draws(record: PersonRecord, spouse: PersonRecord, parent_links: dict[str, str]) -> bool:
    """
    Decide whether ``record`` is the partner that draws the couple.

    1. A partner with a parent draws over one without.
    2. With both parented, the partner not tagged "Spouse" draws over one who is.
    3. Otherwise the smaller id draws.
    """
    has_parent = record.id in parent_links
    spouse_has_parent = spouse.id in parent_links
    if has_parent != spouse_has_parent:
        return has_parent

    if has_parent:
        is_spouse = record.relation == SPOUSE_RELATION
        partner_is_spouse = spouse.relation == SPOUSE_RELATION
        if is_spouse != partner_is_spouse:
            return partner_is_spouse

    return record.id < spouse.id


def is_married_out(record: PersonRecord, spouse: PersonRecord, parent_links: dict[str, str]) -> bool:
    """
    Decide whether ``record`` leaves its birth family to be drawn with its spouse.

    Only parented records can be married out. A "Spouse"-tagged record always
    is; when both partners have parents and neither is tagged, the larger id is.
    """
    if record.id not in parent_links:
        return False
    if record.relation == SPOUSE_RELATION:
        return True
    if spouse.id not in parent_links or spouse.relation == SPOUSE_RELATION:
        return False
    return record.id > spouse.id


def resolve_couples(store: RecordStore, parent_links: dict[str, str]) -> CoupleResolution:
    """Pair up mutual spouses and compute draw and married-out flags."""
    resolution = CoupleResolution()

    for record in store:
        spouse_id = record.spouse_id
        if not spouse_id or spouse_id == record.id:
            continue
        spouse = store.get(spouse_id)
        if spouse is not None and spouse.spouse_id == record.id:
            resolution.partner_of[record.id] = spouse_id

    for record_id, spouse_id in resolution.partner_of.items():
        record = store.get(record_id)
        spouse = store.get(spouse_id)
        resolution.draws[record_id] = couple_draws(record, spouse, parent_links)
        if is_married_out(record, spouse, parent_links):
            resolution.married_out.add(record_id)

    return resolution


# ============================================================================
# Hierarchy Builder
# ============================================================================

def _family_label(tree: FamilyTree, root: PersonRecord) -> str:
    if root.name == NEW_FAMILY_ROOT_NAME:
        return "New Family"
    if tree.is_origin_family:
        return f"{tree.origin_spouse_name}'s Family"
    return f"{root.label}'s Family"


def _find_roots(store: RecordStore, couples: CoupleResolution, parent_links: dict[str, str]) -> list[str]:
    roots = []
    for record in store:
        if record.id in parent_links or record.id in couples.married_out:
            continue

        partner_id = couples.partner_of.get(record.id)
        if partner_id is None:
            roots.append(record.id)
        elif partner_id in couples.married_out:
            # Parentless, but anchoring a spouse who left their birth family
            roots.append(record.id)
        elif partner_id not in parent_links and couples.draws[record.id]:
            roots.append(record.id)
        # Otherwise drawn inside the partner's tree

    return roots


def build_hierarchy(store: RecordStore, parent_links: dict[str, str] | None = None) -> list[FamilyTree]:
    """
    Build the unordered list of family trees from the record store.

    Married-out records are drawn with their spouse and leave a linked
    placeholder under their birth parent. Every record is rendered exactly
    once across the returned trees.
    """
    if parent_links is None:
        parent_links = resolve_parent_links(store)

    couples = resolve_couples(store, parent_links)

    # parent id -> ordered child entries (record ids, then placeholders)
    children: dict[str, list[str | LinkedPlaceholderNode]] = {}
    for record in store:
        parent_id = parent_links.get(record.id)
        if parent_id and record.id not in couples.married_out:
            children.setdefault(parent_id, []).append(record.id)

    for record in store:
        if record.id not in couples.married_out:
            continue
        spouse = store.get(couples.partner_of[record.id])
        children.setdefault(parent_links[record.id], []).append(
            LinkedPlaceholderNode(
                id=f"{record.id}_link",
                original_id=record.id,
                name=record.name,
                gender=record.gender,
                partner_name=(spouse.name or "") if spouse else "",
            )
        )

    placed: set[str] = set()

    def build_node(record_id: str, members: list[str]) -> PersonNode | CoupleNode:
        record = store.get(record_id)
        placed.add(record_id)
        members.append(record_id)

        entries = list(children.get(record_id, []))
        partner_id = couples.partner_of.get(record_id)
        if partner_id in placed:
            partner_id = None
        if partner_id:
            placed.add(partner_id)
            members.append(partner_id)
            entries.extend(children.get(partner_id, []))

        kids = []
        seen_links: set[str] = set()
        for entry in entries:
            if isinstance(entry, LinkedPlaceholderNode):
                if entry.id not in seen_links:
                    seen_links.add(entry.id)
                    kids.append(entry)
            elif entry not in placed:
                kids.append(build_node(entry, members))

        card = PersonCard.from_record(record)
        if partner_id:
            partner = PersonCard.from_record(store.get(partner_id))
            return CoupleNode(person=card, partner=partner, children=kids)
        return PersonNode(person=card, children=kids)

    trees: list[FamilyTree] = []
    for root_id in _find_roots(store, couples, parent_links):
        if root_id in placed:
            continue
        members: list[str] = []
        node = build_node(root_id, members)
        trees.append(FamilyTree(root_id=root_id, member_ids=members, root=node))

    # Records only reachable through contradictory links
    for record in store:
        if record.id in placed:
            continue
        top = walk_to_root(record.id, parent_links)
        start = top if top not in placed else record.id
        logger.warning(f"'{record.label}' is not reachable from any root; drawing from '{store.get(start).label}'")
        members = []
        node = build_node(start, members)
        trees.append(FamilyTree(root_id=start, member_ids=members, root=node))

    by_root = {tree.root_id: tree for tree in trees}
    for record in store:
        if record.id not in couples.married_out:
            continue
        birth_parent = parent_links[record.id]
        tree = by_root.get(walk_to_root(birth_parent, parent_links))
        if tree is None:
            # Birth parent is drawn as someone's partner rather than a root
            tree = next((t for t in trees if birth_parent in t.member_ids), None)
        if tree is not None:
            tree.is_origin_family = True
            tree.origin_spouse_name = record.label
            tree.target_link_id = record.spouse_id

    for tree in trees:
        tree.label = _family_label(tree, store.get(tree.root_id))

    return trees


# ============================================================================
# Forest Orderer
# ============================================================================

def find_primary_tree(trees: list[FamilyTree], store: RecordStore, parent_links: dict[str, str]) -> FamilyTree | None:
    """The tree holding the "Self" record's lineage, or the first tree."""
    if not trees:
        return None

    self_record = store.find_self()
    if self_record is None:
        return trees[0]

    top = walk_to_root(self_record.id, parent_links)
    for tree in trees:
        if tree.root_id == top:
            return tree
    for tree in trees:
        if self_record.id in tree.member_ids:
            return tree
    return trees[0]


def order_forest(trees: list[FamilyTree], store: RecordStore, parent_links: dict[str, str] | None = None) -> list[FamilyTree]:
    """
    Order family trees for display.

    Starting from the primary tree, origin families are pulled in breadth-first
    whenever the person they married into rolls up to an already placed root.
    Unconnected trees follow. The result is then laid out around the primary
    tree, alternating right and left (e.g. 6 4 2 1 3 5 7).
    """
    if parent_links is None:
        parent_links = resolve_parent_links(store)

    primary = find_primary_tree(trees, store, parent_links)
    if primary is None:
        return []

    clustered: list[FamilyTree] = []
    visited: set[str] = set()
    queue = deque([primary])

    while queue:
        current = queue.popleft()
        if current.root_id in visited:
            continue
        visited.add(current.root_id)
        clustered.append(current)

        for candidate in trees:
            if not candidate.is_origin_family or candidate.root_id in visited:
                continue
            if current.root_id in iter_ancestry(candidate.target_link_id, parent_links):
                queue.append(candidate)

    clustered.extend(tree for tree in trees if tree.root_id not in visited)

    centered: deque[FamilyTree] = deque()
    for i, tree in enumerate(clustered):
        if i == 0 or i % 2 == 1:
            centered.append(tree)
        else:
            centered.appendleft(tree)

    return list(centered)


def build_forest(store: RecordStore) -> list[FamilyTree]:
    """Rebuild the ordered forest from scratch."""
    parent_links = resolve_parent_links(store)
    trees = build_hierarchy(store, parent_links)
    forest = order_forest(trees, store, parent_links)
    logger.debug(f"Built forest of {len(forest)} trees from {len(store)} records")
    return forest
