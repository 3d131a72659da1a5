"""LLM integration for storyport."""

from storyport.llm.client import LLMClient, LLMError
from storyport.llm.detector import (
    DetectedEntity,
    DetectionResult,
    EntityDetectionError,
    EntityDetector,
    EntityOccurrence,
)
from storyport.llm.prompts import ENTITY_DETECTOR_SYSTEM_PROMPT

__all__ = [
    "LLMClient",
    "LLMError",
    "DetectedEntity",
    "DetectionResult",
    "EntityDetectionError",
    "EntityDetector",
    "EntityOccurrence",
    "ENTITY_DETECTOR_SYSTEM_PROMPT",
]
