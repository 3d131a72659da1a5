"""Core data models for storyport.

Projects, documents and entities are the plain-data stand-ins for the
document and entity stores. Options and results describe one export or
import call.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from storyport.formatting.ir import Block

STORY_DOCUMENT_TYPES = ("chapter", "scene")
DEFAULT_GLOSSARY_TYPES = ("character", "location")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Project:
    id: str
    name: str
    description: Optional[str] = None


@dataclass
class Document:
    """A chapter, scene or other document in a project's flat list.

    Attributes:
        id: Unique document id
        project_id: Owning project
        title: Display title (may be empty)
        type: Document kind, usually "chapter" or "scene"
        parent_id: Parent document id, None for roots
        order_index: Sort key among siblings
        content: Editor tree (``{"type": "doc", ...}``) or None
        word_count: Whitespace-separated word count of the content
    """

    id: str
    project_id: str
    title: str = ""
    type: str = "chapter"
    parent_id: Optional[str] = None
    order_index: int = 0
    content: Optional[dict[str, Any]] = None
    word_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Entity:
    """A world entity (character, location, item...)."""

    id: str
    name: str
    type: str
    aliases: list[str] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    project_id: Optional[str] = None


@dataclass
class StoryNode:
    doc: Document
    children: list["StoryNode"] = field(default_factory=list)


# =============================================================================
# Glossary
# =============================================================================

@dataclass
class GlossaryField:
    label: str
    value: str


@dataclass
class GlossaryEntry:
    id: str
    name: str
    type: str
    aliases: list[str] = field(default_factory=list)
    description: Optional[str] = None
    fields: list[GlossaryField] = field(default_factory=list)


@dataclass
class GlossarySection:
    type: str
    title: str
    entries: list[GlossaryEntry] = field(default_factory=list)


# =============================================================================
# Export
# =============================================================================

@dataclass
class GlossaryOptions:
    include: bool = True
    types: list[str] = field(default_factory=lambda: list(DEFAULT_GLOSSARY_TYPES))
    only_referenced: bool = True


@dataclass
class ExportOptions:
    """Options for one export call.

    Attributes:
        format: Output format id ("markdown", "docx", "epub", "pdf")
        include_title_page: Start with a page showing the project name
        include_toc: Add a table of contents
        preserve_entity_marks: Keep entity references visible in the output
        glossary: Glossary appendix options
        file_name: Output file name; defaults to the project name
    """

    format: str = "markdown"
    include_title_page: bool = True
    include_toc: bool = True
    preserve_entity_marks: bool = False
    glossary: GlossaryOptions = field(default_factory=GlossaryOptions)
    file_name: Optional[str] = None


@dataclass
class ExportResult:
    data: bytes
    mime_type: str
    file_name: str


# =============================================================================
# Import
# =============================================================================

class ImportMode(str, Enum):
    APPEND = "append"
    REPLACE = "replace"


class ImportStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ImportOptions:
    """Options for one import call.

    Attributes:
        format: Input format id, or "auto" to detect from the file
        mode: Append after existing chapters or replace them
        detect_entities: Run LLM entity detection over the imported text
        entity_types: Entity types the detector may report
        api_key: Provider key; detection is skipped without one
    """

    format: str = "auto"
    mode: ImportMode = ImportMode.APPEND
    detect_entities: bool = False
    entity_types: list[str] = field(default_factory=lambda: list(DEFAULT_GLOSSARY_TYPES))
    api_key: Optional[str] = None


@dataclass
class ImportSource:
    """An input file held in memory."""

    file_name: str
    data: bytes
    mime_type: Optional[str] = None


@dataclass
class DocumentDraft:
    """A chapter or scene produced by heading-based splitting."""

    id: str
    title: str
    type: str
    parent_id: Optional[str] = None
    order_index: int = 0
    blocks: list[Block] = field(default_factory=list)


@dataclass
class ImportProgress:
    phase: str
    percent: int
    message: str = ""


ProgressCallback = Callable[[ImportProgress], None]


@dataclass
class ImportResult:
    status: ImportStatus
    documents: list[Document] = field(default_factory=list)
    entities_created: list[Entity] = field(default_factory=list)
    entities_updated: list[Entity] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.status == ImportStatus.CANCELLED
