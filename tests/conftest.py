"""Pytest fixtures for storyport tests."""

import pytest
from unittest.mock import Mock, patch

from storyport.config import reset_settings
from storyport.core.glossary import build_glossary
from storyport.core.models import Document, Entity, ExportOptions, Project
from storyport.formats.base import RenderRequest
from storyport.formatting.ir import ExportSection, SceneBreak, bold, entity, paragraph, text

API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY")


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    """Run every test without provider keys or a stray .env file."""
    for var in API_KEY_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


def text_node(value: str, *marks: dict) -> dict:
    node = {"type": "text", "text": value}
    if marks:
        node["marks"] = list(marks)
    return node


def paragraph_node(*content: dict) -> dict:
    return {"type": "paragraph", "content": list(content)}


def doc_node(*content: dict) -> dict:
    return {"type": "doc", "content": list(content)}


def entity_mark(entity_id: str, entity_type: str = "character") -> dict:
    return {"type": "entity", "attrs": {"entityId": entity_id, "entityType": entity_type}}


@pytest.fixture
def project() -> Project:
    return Project(id="proj-1", name="The Long Road", description="A journey north.")


@pytest.fixture
def entities() -> list[Entity]:
    """Two characters, a location and an item."""
    return [
        Entity(
            id="ent-elara",
            name="Elara",
            type="character",
            aliases=["The Archivist"],
            properties={"archetype": "wise_mentor", "goals": ["Find the map", "Stay hidden"]},
            notes="Keeper of the northern archive.",
        ),
        Entity(id="ent-bram", name="bram", type="character"),
        Entity(
            id="ent-vale",
            name="Vale",
            type="location",
            properties={"climate": "Cold", "description": "A frozen valley."},
        ),
        Entity(id="ent-key", name="Iron Key", type="item", properties={"rarity": "rare"}),
    ]


@pytest.fixture
def documents() -> list[Document]:
    """A chapter with one scene, a second chapter, and a non-story note."""
    return [
        Document(
            id="ch-2",
            project_id="proj-1",
            title="Arrival",
            type="chapter",
            order_index=1,
            content=doc_node(paragraph_node(text_node("They reached the gate."))),
        ),
        Document(
            id="ch-1",
            project_id="proj-1",
            title="Departure",
            type="chapter",
            order_index=0,
            content=doc_node(
                paragraph_node(
                    text_node("Elara", entity_mark("ent-elara")),
                    text_node(" left "),
                    text_node("Vale", entity_mark("ent-vale", "location")),
                    text_node(" at dawn."),
                )
            ),
        ),
        Document(
            id="sc-1",
            project_id="proj-1",
            title="The Bridge",
            type="scene",
            parent_id="ch-1",
            order_index=0,
            content=doc_node(
                paragraph_node(text_node("The bridge was ", {"type": "bold"}), text_node("gone."))
            ),
        ),
        Document(
            id="note-1",
            project_id="proj-1",
            title="Research",
            type="note",
            order_index=0,
            content=doc_node(paragraph_node(text_node("Not part of the story."))),
        ),
    ]


@pytest.fixture
def mock_llm_response() -> str:
    """Detector reply naming Elara (existing) and Corin (new)."""
    return """```json
{
  "entities": [
    {
      "name": "Elara",
      "type": "character",
      "confidence": 0.9,
      "occurrences": [{"startOffset": 0, "endOffset": 5, "matchedText": "Elara"}],
      "suggestedAliases": ["Lady Elara"],
      "matchedExistingId": "ent-elara"
    },
    {
      "name": "Corin",
      "type": "character",
      "confidence": 0.8,
      "occurrences": [{"startOffset": 999, "endOffset": 1004, "matchedText": "Corin"}],
      "suggestedAliases": [],
      "inferredProperties": {"role": "guide"}
    }
  ],
  "warnings": []
}
```"""


@pytest.fixture
def mock_llm_client(mock_llm_response: str):
    """Patch LiteLLM so no API calls are made."""
    with patch("storyport.llm.client.completion") as mock_completion:
        mock_completion.return_value = Mock(
            choices=[Mock(message=Mock(content=mock_llm_response))]
        )
        yield mock_completion


@pytest.fixture
def sections() -> list[ExportSection]:
    """Two chapters, the first with one scene."""
    return [
        ExportSection(
            id="ch-1",
            title="Departure",
            level=1,
            blocks=[
                paragraph(
                    text("Elara", entity("ent-elara")),
                    " left ",
                    text("Vale", entity("ent-vale", "location")),
                    " at ",
                    text("dawn", bold()),
                    ".",
                )
            ],
        ),
        ExportSection(
            id="sc-1",
            title="The Bridge",
            level=2,
            blocks=[paragraph("The bridge was gone."), SceneBreak(), paragraph("They turned back.")],
        ),
        ExportSection(id="ch-2", title="Arrival", level=1, blocks=[paragraph("They reached the gate.")]),
    ]


@pytest.fixture
def make_request(project, sections, entities):
    """Factory for render requests; keyword arguments override ExportOptions."""

    def factory(glossary: bool = False, **overrides) -> RenderRequest:
        options = ExportOptions(**overrides)
        options.glossary.include = glossary
        glossary_sections = (
            build_glossary(entities, ["character", "location"], only_referenced=False)
            if glossary
            else []
        )
        return RenderRequest(
            project=project, sections=sections, glossary=glossary_sections, options=options
        )

    return factory
