"""Entity detection over manuscript text.

The model reports entities with character offsets into the text it was
given. Models are unreliable about offsets, so every occurrence is checked
against the text and moved to where its matched text actually is, or
dropped when it cannot be found.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger

from storyport.core.models import Entity
from storyport.formats.base import StoryportError
from storyport.llm.client import LLMClient, LLMError
from storyport.llm.prompts import ENTITY_DETECTOR_SYSTEM_PROMPT, build_detection_prompt

ENTITY_TYPES = (
    "character",
    "location",
    "item",
    "magic_system",
    "faction",
    "event",
    "concept",
)

# How far from the reported offset a match still counts as "near"
SEARCH_SLACK = 50
NEAR_DISTANCE = 100


class EntityDetectionError(StoryportError):
    """Entity detection failed or returned an unusable response."""

    pass


@dataclass
class EntityOccurrence:
    start_offset: int
    end_offset: int
    matched_text: str
    context: str = ""


@dataclass
class DetectedEntity:
    """One entity reported by the detector.

    Attributes:
        name: Canonical name
        type: Entity type (character, location...)
        confidence: Model confidence in [0, 1]
        occurrences: Verified mentions in the analysed text
        suggested_aliases: Other names for the entity seen in the text
        inferred_properties: Facts the model read from the text
        matched_existing_id: Id of an existing entity this one is
    """

    name: str
    type: str
    confidence: float = 1.0
    occurrences: list[EntityOccurrence] = field(default_factory=list)
    suggested_aliases: list[str] = field(default_factory=list)
    inferred_properties: dict[str, Any] = field(default_factory=dict)
    matched_existing_id: Optional[str] = None


@dataclass
class DetectionResult:
    entities: list[DetectedEntity] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class EntityDetector:
    """Detects named story entities in text with an LLM."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        min_confidence: float = 0.5,
        max_entities: int = 100,
        context_length: int = 50,
    ) -> None:
        """Initialize the detector.

        Args:
            client: LLM client to use; a default client is created lazily
            min_confidence: Entities below this confidence are dropped
            max_entities: Keep at most this many entities, highest confidence
                first (0 for no limit)
            context_length: Characters of context kept around each mention
        """
        self._client = client
        self.min_confidence = min_confidence
        self.max_entities = max_entities
        self.context_length = context_length

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    def detect(
        self,
        text: str,
        existing_entities: Iterable[Entity] = (),
        entity_types: Optional[list[str]] = None,
        token=None,
    ) -> DetectionResult:
        """Detect entities in text.

        Args:
            text: Text to analyse
            existing_entities: Project entities the model may match against
            entity_types: Types to keep; all types when None or empty
            token: CancellationToken; no request is sent once it is
                cancelled and retries stop when it is cancelled mid-call

        Returns:
            Entities with verified occurrences

        Raises:
            EntityDetectionError: The model call failed or its reply could
                not be read
        """
        if not text.strip():
            return DetectionResult()
        if token is not None and token.cancelled:
            logger.debug("Entity detection skipped, import cancelled")
            return DetectionResult()

        existing = list(existing_entities)
        prompt = build_detection_prompt(text, existing, entity_types)
        try:
            data = self.client.complete_json(prompt, ENTITY_DETECTOR_SYSTEM_PROMPT, token=token)
        except LLMError as e:
            raise EntityDetectionError(f"Entity detection failed: {e}") from e

        raw_entities = data.get("entities") or []
        if not isinstance(raw_entities, list):
            raise EntityDetectionError("Detector response 'entities' is not a list")

        known_ids = {e.id for e in existing}
        entities = []
        for item in raw_entities:
            entity = self._parse_entity(item, text, known_ids)
            if entity is not None:
                entities.append(entity)

        warnings = [
            w.get("message", str(w)) if isinstance(w, dict) else str(w)
            for w in data.get("warnings") or []
        ]
        return DetectionResult(entities=self._apply_filters(entities, entity_types), warnings=warnings)

    def _parse_entity(
        self, item: Any, text: str, known_ids: set[str]
    ) -> Optional[DetectedEntity]:
        if not isinstance(item, dict):
            return None
        name = str(item.get("name") or "").strip()
        entity_type = str(item.get("type") or "").strip()
        if not name or entity_type not in ENTITY_TYPES:
            logger.debug(f"Skipping detected entity {name!r} of type {entity_type!r}")
            return None

        occurrences = []
        for raw in item.get("occurrences") or []:
            occurrence = self._validate_occurrence(raw, text, name)
            if occurrence is not None:
                occurrences.append(occurrence)
        if not occurrences:
            return None

        matched = item.get("matchedExistingId")
        if matched is not None and matched not in known_ids:
            logger.debug(f"Ignoring match to unknown entity id {matched!r}")
            matched = None

        aliases = [str(a) for a in item.get("suggestedAliases") or [] if str(a).strip()]
        properties = item.get("inferredProperties")
        try:
            confidence = float(item.get("confidence", 1.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return DetectedEntity(
            name=name,
            type=entity_type,
            confidence=confidence,
            occurrences=occurrences,
            suggested_aliases=aliases,
            inferred_properties=properties if isinstance(properties, dict) else {},
            matched_existing_id=matched,
        )

    def _validate_occurrence(
        self, raw: Any, text: str, entity_name: str
    ) -> Optional[EntityOccurrence]:
        """Check a reported occurrence and correct its offsets if needed."""
        if not isinstance(raw, dict):
            return None
        matched_text = str(raw.get("matchedText") or entity_name)
        try:
            start = int(raw.get("startOffset", -1))
            end = int(raw.get("endOffset", -1))
        except (TypeError, ValueError):
            start, end = -1, -1

        if 0 <= start < end <= len(text) and text[start:end] == matched_text:
            return self._occurrence(text, start, end, matched_text)

        position = find_text_position(text, matched_text, max(start, 0))
        if position is not None:
            return self._occurrence(text, position[0], position[1], matched_text)

        if matched_text != entity_name:
            position = find_text_position(text, entity_name, max(start, 0))
            if position is not None:
                return self._occurrence(text, position[0], position[1], entity_name)

        logger.debug(f"Could not place occurrence of {matched_text!r} at {start}-{end}")
        return None

    def _occurrence(self, text: str, start: int, end: int, matched_text: str) -> EntityOccurrence:
        return EntityOccurrence(
            start_offset=start,
            end_offset=end,
            matched_text=matched_text,
            context=extract_context(text, start, end, self.context_length),
        )

    def _apply_filters(
        self, entities: list[DetectedEntity], entity_types: Optional[list[str]]
    ) -> list[DetectedEntity]:
        filtered = [e for e in entities if e.confidence >= self.min_confidence]
        if entity_types:
            filtered = [e for e in filtered if e.type in entity_types]
        if self.max_entities > 0 and len(filtered) > self.max_entities:
            filtered = sorted(filtered, key=lambda e: e.confidence, reverse=True)
            filtered = filtered[: self.max_entities]
        return filtered


def find_text_position(text: str, search: str, expected: int) -> Optional[tuple[int, int]]:
    """Find ``search`` in ``text``, preferring a match near ``expected``."""
    if not search:
        return None

    near = text.find(search, max(0, expected - SEARCH_SLACK))
    if near != -1 and abs(near - expected) < NEAR_DISTANCE:
        return near, near + len(search)

    first = text.find(search)
    if first != -1:
        return first, first + len(search)

    folded = text.lower().find(search.lower())
    if folded != -1:
        return folded, folded + len(search)

    return None


def extract_context(text: str, start: int, end: int, length: int) -> str:
    """Return the text around a span, with ``...`` where it was cut."""
    context_start = max(0, start - length)
    context_end = min(len(text), end + length)
    context = text[context_start:context_end]
    if context_start > 0:
        context = "..." + context
    if context_end < len(text):
        context += "..."
    return context
