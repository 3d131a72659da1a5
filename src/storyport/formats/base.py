"""Abstract base class and shared pieces for document format handlers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Union

from storyport.core.filenames import sanitize_file_name
from storyport.core.models import ExportOptions, ExportResult, GlossarySection, Project
from storyport.formatting.ir import Block, ExportSection


class StoryportError(Exception):
    """Base class for storyport errors."""

    pass


class UnsupportedFormatError(StoryportError, ValueError):
    """Format id, extension or MIME type is unknown, or lacks a capability."""

    pass


class MalformedDocumentError(StoryportError):
    """Input file is structurally broken (bad container, missing parts)."""

    pass


class RenderError(StoryportError):
    """The output library failed to produce a document."""

    pass


@dataclass
class RenderRequest:
    """Everything a renderer needs for one export.

    Attributes:
        project: Project whose name titles the output
        sections: Chapters (level 1) and scenes (level 2) in reading order
        glossary: Glossary sections; empty when the glossary is off
        options: Export options
    """

    project: Project
    sections: list[ExportSection]
    glossary: list[GlossarySection] = field(default_factory=list)
    options: ExportOptions = field(default_factory=ExportOptions)

    @property
    def include_glossary(self) -> bool:
        return self.options.glossary.include and bool(self.glossary)

    @property
    def link_entities(self) -> bool:
        """Entity marks point at glossary anchors."""
        return self.options.preserve_entity_marks and self.options.glossary.include


class FormatHandler(ABC):
    """Abstract base class for document format handlers.

    A handler parses its format into IR blocks, renders an export request
    into its format, or both. Capabilities a handler does not have raise
    ``UnsupportedFormatError``.
    """

    #: MIME type of rendered output
    mime_type: str = "application/octet-stream"

    @property
    @abstractmethod
    def supported_extensions(self) -> tuple[str, ...]:
        """Return tuple of supported file extensions (e.g., ('.epub',))."""
        ...

    @property
    def default_extension(self) -> str:
        return self.supported_extensions[0]

    def parse(self, data: Union[bytes, str]) -> list[Block]:
        """Parse document content into IR blocks.

        Args:
            data: Raw bytes for binary formats, decoded text otherwise

        Returns:
            IR blocks in reading order
        """
        raise UnsupportedFormatError(f"{type(self).__name__} cannot parse documents")

    def render(self, request: RenderRequest) -> ExportResult:
        """Render an export request into this format."""
        raise UnsupportedFormatError(f"{type(self).__name__} cannot render documents")

    def output_file_name(self, project: Project) -> str:
        return f"{sanitize_file_name(project.name)}{self.default_extension}"


def decode_text(data: bytes) -> str:
    """Decode text input as UTF-8, dropping a BOM and replacing bad bytes."""
    return data.decode("utf-8-sig", errors="replace")


def content_heading_level(level: int) -> int:
    """Headings inside a section sit one level below the section title."""
    return min(level + 1, 6)


def entity_anchor(entity_id: str) -> str:
    return f"entity-{entity_id}"
