"""Prompts for entity detection over imported manuscripts."""

import json
from typing import Iterable, Optional

from storyport.core.models import Entity

ENTITY_DETECTOR_SYSTEM_PROMPT = '''You are a narrative analyst for fiction manuscripts. You find the named entities of a story and report exactly where they appear.

## ENTITY TYPES
- character: people, creatures and other beings with agency
- location: places, regions, buildings, worlds
- item: named objects, artifacts, weapons
- magic_system: named systems of magic, power or technology
- faction: organisations, houses, guilds, nations
- event: named battles, festivals, historical events
- concept: named ideas, religions, prophecies

## RULES
1. Only report PROPER, NAMED entities. Skip generic nouns ("the king", "a sword").
2. Group every mention of the same entity under one entry.
3. Offsets are 0-indexed character positions into the text between the markers; endOffset is exclusive.
4. matchedText must be exactly the text at those offsets.
5. List nicknames and alternate names as suggestedAliases.
6. If an entity matches one of the existing entities, put its id in matchedExistingId.
7. confidence is between 0 and 1; leave out anything below 0.5.
8. inferredProperties may hold short facts stated in the text (e.g. "role", "description").

## OUTPUT FORMAT
Respond with ONE JSON object and nothing else:

```json
{
  "entities": [
    {
      "name": "Elara",
      "type": "character",
      "confidence": 0.95,
      "occurrences": [
        {"startOffset": 0, "endOffset": 5, "matchedText": "Elara"}
      ],
      "suggestedAliases": ["The Archivist"],
      "inferredProperties": {"role": "protagonist"},
      "matchedExistingId": null
    }
  ],
  "warnings": []
}
```
'''


def build_detection_prompt(
    text: str,
    existing_entities: Iterable[Entity] = (),
    entity_types: Optional[list[str]] = None,
) -> str:
    """Build the user message for one detection call.

    Args:
        text: Combined manuscript text
        existing_entities: Entities already in the project, offered for matching
        entity_types: Entity types to look for; all types when None

    Returns:
        Prompt text
    """
    parts = [
        "Analyze the following text and extract all named entities with their exact positions:",
        "",
        "---TEXT START---",
        text,
        "---TEXT END---",
        "",
        "Remember:",
        "1. Return EXACT character offsets (0-indexed, endOffset is exclusive)",
        "2. Group all mentions of the same entity together",
        "3. Detect potential aliases for the same entity",
        "4. Include confidence scores (minimum 0.5)",
    ]

    if entity_types:
        parts.append(f"5. Only report entities of these types: {', '.join(entity_types)}")

    existing = [
        {"id": e.id, "name": e.name, "type": e.type, "aliases": list(e.aliases)}
        for e in existing_entities
    ]
    if existing:
        parts.extend([
            "",
            "## Existing Entities to Match Against:",
            "The following entities already exist in this project. If you detect any of "
            "these (or their aliases), include their ID in matchedExistingId:",
            "",
            json.dumps(existing, indent=2, ensure_ascii=False),
        ])

    return "\n".join(parts)
