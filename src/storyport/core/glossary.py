"""Glossary appendix built from the entity store."""

from typing import Any, Iterable, Optional, Sequence

from storyport.core.models import Entity, GlossaryEntry, GlossaryField, GlossarySection
from storyport.formatting.ir import Block, ExportSection, get_entity_mark, iter_inlines

ENTITY_TYPE_TITLES = {
    "character": "Characters",
    "location": "Locations",
    "item": "Items",
    "magic_system": "Magic Systems",
    "faction": "Factions",
    "event": "Events",
    "concept": "Concepts",
}

DESCRIPTION_KEYS = ("description", "summary", "bio", "overview")
BACKSTORY_LIMIT = 300


def build_glossary(
    entities: Iterable[Entity],
    include_types: Sequence[str],
    only_referenced: bool = True,
    referenced_ids: Optional[set[str]] = None,
) -> list[GlossarySection]:
    """Build glossary sections for the given entities.

    Args:
        entities: All project entities
        include_types: Entity types to include; this order is section order
        only_referenced: Keep only entities whose id is in ``referenced_ids``
        referenced_ids: Ids referenced by the exported content. When None,
            no reference filtering happens.

    Returns:
        One section per type that has at least one entry
    """
    allowed = list(dict.fromkeys(include_types))
    by_type: dict[str, list[Entity]] = {t: [] for t in allowed}

    for entity in entities:
        if entity.type not in by_type:
            continue
        if only_referenced and referenced_ids is not None and entity.id not in referenced_ids:
            continue
        by_type[entity.type].append(entity)

    sections: list[GlossarySection] = []
    for entity_type in allowed:
        members = by_type[entity_type]
        if not members:
            continue
        members.sort(key=lambda e: (e.name.casefold(), e.name))
        sections.append(
            GlossarySection(
                type=entity_type,
                title=ENTITY_TYPE_TITLES.get(entity_type, entity_type),
                entries=[entity_to_entry(e) for e in members],
            )
        )
    return sections


def entity_to_entry(entity: Entity) -> GlossaryEntry:
    return GlossaryEntry(
        id=entity.id,
        name=entity.name,
        type=entity.type,
        aliases=list(entity.aliases or []),
        description=extract_description(entity),
        fields=extract_fields(entity),
    )


def extract_description(entity: Entity) -> Optional[str]:
    """Pick the first non-empty description source.

    Notes win, then the common description properties, then (characters
    only) a backstory cut down to 300 characters.
    """
    if isinstance(entity.notes, str) and entity.notes.strip():
        return entity.notes.strip()

    for key in DESCRIPTION_KEYS:
        value = _string_property(entity, key)
        if value:
            return value

    if entity.type == "character":
        backstory = _string_property(entity, "backstory")
        if backstory:
            if len(backstory) > BACKSTORY_LIMIT:
                return backstory[: BACKSTORY_LIMIT - 3] + "..."
            return backstory

    return None


def extract_fields(entity: Entity) -> list[GlossaryField]:
    fields: list[GlossaryField] = []
    props = entity.properties or {}

    if entity.type == "character":
        archetype = _string_property(entity, "archetype")
        if archetype:
            fields.append(GlossaryField("Archetype", format_label(archetype)))
        goals = _list_property(props.get("goals"))
        if goals:
            fields.append(GlossaryField("Goals", ", ".join(goals[:3])))

    elif entity.type == "location":
        for key, label in (("climate", "Climate"), ("atmosphere", "Atmosphere")):
            value = _string_property(entity, key)
            if value:
                fields.append(GlossaryField(label, value))

    elif entity.type == "item":
        for key, label in (("category", "Category"), ("rarity", "Rarity")):
            value = _string_property(entity, key)
            if value:
                fields.append(GlossaryField(label, format_label(value)))

    elif entity.type == "faction":
        goals = _list_property(props.get("goals"))
        if goals:
            fields.append(GlossaryField("Goals", ", ".join(goals[:2])))

    return fields


def format_label(value: str) -> str:
    """snake_case to Title Case ("wise_mentor" -> "Wise Mentor")."""
    return " ".join(word[:1].upper() + word[1:] for word in value.split("_"))


def _string_property(entity: Entity, key: str) -> Optional[str]:
    value = (entity.properties or {}).get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _list_property(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if str(item).strip()]


# =============================================================================
# Reference scanning
# =============================================================================

def collect_entity_ids(blocks: list[Block]) -> set[str]:
    """Ids of every entity referenced by an entity mark in ``blocks``."""
    ids: set[str] = set()
    for inline in iter_inlines(blocks):
        mark = get_entity_mark(inline)
        if mark is not None and mark.entity_id:
            ids.add(mark.entity_id)
    return ids


def collect_section_entity_ids(sections: Iterable[ExportSection]) -> set[str]:
    ids: set[str] = set()
    for section in sections:
        ids |= collect_entity_ids(section.blocks)
    return ids
