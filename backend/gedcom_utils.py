"""GEDCOM export of the family record store."""

from datetime import datetime
from typing import Any

from gedcom.element.element import Element
from gedcom.element.family import FamilyElement
from gedcom.element.individual import IndividualElement

from family_records import RecordStore, resolve_parent_links
from family_tree import resolve_couples

GEDCOM_VERSION = "5.5.1"
SEX_CODES = {"male": "M", "female": "F"}


# ============================================================================
# Building GEDCOM Elements
# ============================================================================

def _add(parent: Element, tag: str, value: str = "") -> Element:
    child = Element(level=parent.get_level() + 1, pointer="", tag=tag, value=value)
    parent.add_child_element(child)
    return child


def _add_text(parent: Element, tag: str, text: str) -> Element:
    """Add a text value, continuing embedded line breaks with CONT lines."""
    first, *rest = text.splitlines() or [""]
    element = _add(parent, tag, first)
    for line in rest:
        _add(element, "CONT", line)
    return element


def _sex_code(gender: str | None) -> str:
    return SEX_CODES.get((gender or "").strip().lower(), "U")


def collect_families(store: RecordStore) -> list[dict[str, Any]]:
    """
    Group records into GEDCOM families.

    Each couple gets a family, and so does each parent without a spouse who
    has children. Children join their parent's family.

    Returns:
        list of dicts with 'husband', 'wife' (record ids or None) and 'children'
    """
    parent_links = resolve_parent_links(store)
    couples = resolve_couples(store, parent_links)

    families: list[dict[str, Any]] = []
    family_of: dict[str, dict[str, Any]] = {}

    def new_family(*parents: str) -> dict[str, Any]:
        family = {"husband": None, "wife": None, "children": []}
        if len(parents) == 2:
            first, second = (store.get(p) for p in parents)
            # Determine husband/wife based on gender
            if _sex_code(first.gender) == "F" or _sex_code(second.gender) == "M":
                first, second = second, first
            family["husband"], family["wife"] = first.id, second.id
        elif _sex_code(store.get(parents[0]).gender) == "F":
            family["wife"] = parents[0]
        else:
            family["husband"] = parents[0]
        families.append(family)
        for parent_id in parents:
            family_of[parent_id] = family
        return family

    for record in store:
        partner_id = couples.partner_of.get(record.id)
        if partner_id and record.id not in family_of:
            new_family(record.id, partner_id)

    for record in store:
        parent_id = parent_links.get(record.id)
        if parent_id is None:
            continue
        family = family_of.get(parent_id) or new_family(parent_id)
        family["children"].append(record.id)

    return families


def build_gedcom_elements(store: RecordStore) -> list[Element]:
    """Build the level-0 GEDCOM records (HEAD, INDI, FAM, TRLR) for the store."""
    head = Element(level=0, pointer="", tag="HEAD", value="")
    _add(head, "SOUR", "FamilyTree")
    gedc = _add(head, "GEDC")
    _add(gedc, "VERS", GEDCOM_VERSION)
    _add(gedc, "FORM", "LINEAGE-LINKED")
    _add(head, "CHAR", "UTF-8")
    _add(head, "DATE", datetime.now().strftime("%d %b %Y").upper())

    pointers = {record.id: f"@I{n}@" for n, record in enumerate(store, start=1)}
    individuals: dict[str, IndividualElement] = {}

    for record in store:
        indi = IndividualElement(level=0, pointer=pointers[record.id], tag="INDI", value="")
        _add(indi, "NAME", record.name or "Unknown")
        _add(indi, "SEX", _sex_code(record.gender))

        if record.dob:
            birth = _add(indi, "BIRT")
            _add(birth, "DATE", record.dob)

        if record.location or record.address:
            residence = _add(indi, "RESI")
            if record.location:
                _add(residence, "PLAC", record.location)
            if record.address:
                _add_text(residence, "ADDR", record.address)

        if record.notes:
            _add_text(indi, "NOTE", record.notes)

        if record.photo:
            media = _add(indi, "OBJE")
            _add(media, "FILE", record.photo)

        _add(indi, "REFN", record.id)
        individuals[record.id] = indi

    families = []
    for n, family in enumerate(collect_families(store), start=1):
        family_id = f"@F{n}@"
        fam = FamilyElement(level=0, pointer=family_id, tag="FAM", value="")
        for tag in ("husband", "wife"):
            member_id = family[tag]
            if member_id:
                _add(fam, "HUSB" if tag == "husband" else "WIFE", pointers[member_id])
                _add(individuals[member_id], "FAMS", family_id)
        for child_id in family["children"]:
            _add(fam, "CHIL", pointers[child_id])
            _add(individuals[child_id], "FAMC", family_id)
        families.append(fam)

    trailer = Element(level=0, pointer="", tag="TRLR", value="")
    return [head, *individuals.values(), *families, trailer]


# ============================================================================
# Export GEDCOM
# ============================================================================

def export_gedcom_content(store: RecordStore) -> str:
    """Export the record store as GEDCOM text."""
    lines = []

    def element_to_lines(element, level=0):
        """Recursively convert an element to GEDCOM lines."""
        pointer = element.get_pointer() or ""
        tag = element.get_tag()
        value = element.get_value() or ""

        if pointer:
            line = f"{level} {pointer} {tag}"
        else:
            line = f"{level} {tag}"

        if value:
            line += f" {value}"

        lines.append(line)

        for child in element.get_child_elements():
            element_to_lines(child, level + 1)

    for element in build_gedcom_elements(store):
        element_to_lines(element, 0)

    return "\n".join(lines) + "\n"
