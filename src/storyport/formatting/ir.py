"""Intermediate Representation for rich-text story content.

This module defines the format-neutral data structures every converter
targets. Editor trees, Markdown, DOCX, EPUB, PDF and plain text are all
translated to and from these blocks, inlines and marks, so the structure of
a chapter survives the trip between formats even when the formats disagree
on how to express it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Union


# =============================================================================
# Marks
# =============================================================================

class MarkKind(str, Enum):
    """Inline styling kinds."""

    BOLD = "bold"
    ITALIC = "italic"
    STRIKE = "strike"
    CODE = "code"
    UNDERLINE = "underline"
    LINK = "link"
    ENTITY = "entity"


@dataclass(frozen=True)
class Mark:
    """A single inline mark.

    Attributes:
        kind: The mark kind
        href: Link target (LINK marks only)
        entity_id: Referenced entity id (ENTITY marks only)
        entity_type: Referenced entity type (ENTITY marks only)
    """

    kind: MarkKind
    href: Optional[str] = None
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None


def bold() -> Mark:
    return Mark(MarkKind.BOLD)


def italic() -> Mark:
    return Mark(MarkKind.ITALIC)


def strike() -> Mark:
    return Mark(MarkKind.STRIKE)


def code() -> Mark:
    return Mark(MarkKind.CODE)


def underline() -> Mark:
    return Mark(MarkKind.UNDERLINE)


def link(href: str) -> Mark:
    return Mark(MarkKind.LINK, href=href)


def entity(entity_id: str, entity_type: str = "character") -> Mark:
    return Mark(MarkKind.ENTITY, entity_id=entity_id, entity_type=entity_type)


# =============================================================================
# Inlines
# =============================================================================

@dataclass
class Text:
    """A run of text with the marks applied to it."""

    text: str
    marks: list[Mark] = field(default_factory=list)


@dataclass
class HardBreak:
    """A line break inside a block."""


Inline = Union[Text, HardBreak]


# =============================================================================
# Blocks
# =============================================================================

@dataclass
class Heading:
    """A heading (level 1-6) containing inline content."""

    level: int = 1
    inlines: list[Inline] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.level = max(1, min(6, int(self.level)))


@dataclass
class Paragraph:
    inlines: list[Inline] = field(default_factory=list)


@dataclass
class Blockquote:
    blocks: list["Block"] = field(default_factory=list)


@dataclass
class BulletList:
    """An unordered list. Each item is its own list of blocks."""

    items: list[list["Block"]] = field(default_factory=list)


@dataclass
class OrderedList:
    """An ordered list. ``start`` is None when the source did not say."""

    items: list[list["Block"]] = field(default_factory=list)
    start: Optional[int] = None


@dataclass
class CodeBlock:
    text: str = ""
    language: Optional[str] = None


@dataclass
class HorizontalRule:
    pass


@dataclass
class SceneBreak:
    """Boundary between scenes inside one document."""

    scene_id: Optional[str] = None
    scene_name: Optional[str] = None


Block = Union[
    Heading,
    Paragraph,
    Blockquote,
    BulletList,
    OrderedList,
    CodeBlock,
    HorizontalRule,
    SceneBreak,
]


@dataclass
class ExportSection:
    """A flattened chapter (level 1) or scene (level 2).

    The section heading lives in ``title`` and is never repeated in
    ``blocks``.
    """

    id: str
    title: str
    level: int = 1
    blocks: list[Block] = field(default_factory=list)


# =============================================================================
# Constructors and readers
# =============================================================================

def text(value: str, *marks: Mark) -> Text:
    """Create a text inline with the given marks."""
    return Text(text=value, marks=list(marks))


def paragraph(*inlines: Union[Inline, str]) -> Paragraph:
    """Create a paragraph. Plain strings are wrapped as unmarked text."""
    return Paragraph(inlines=[_coerce_inline(i) for i in inlines])


def heading(level: int, *inlines: Union[Inline, str]) -> Heading:
    """Create a heading. Plain strings are wrapped as unmarked text."""
    return Heading(level=level, inlines=[_coerce_inline(i) for i in inlines])


def _coerce_inline(value: Union[Inline, str]) -> Inline:
    if isinstance(value, str):
        return Text(text=value)
    return value


def has_mark(inline: Inline, kind: MarkKind) -> bool:
    """Check whether an inline carries a mark of the given kind."""
    if not isinstance(inline, Text):
        return False
    return any(mark.kind == kind for mark in inline.marks)


def get_entity_mark(inline: Inline) -> Optional[Mark]:
    """Return the first entity mark on an inline, if any."""
    if not isinstance(inline, Text):
        return None
    for mark in inline.marks:
        if mark.kind == MarkKind.ENTITY:
            return mark
    return None


def inlines_to_text(inlines: list[Inline]) -> str:
    """Project inline content to plain text. Hard breaks become newlines."""
    parts: list[str] = []
    for inline in inlines:
        if isinstance(inline, Text):
            parts.append(inline.text)
        elif isinstance(inline, HardBreak):
            parts.append("\n")
    return "".join(parts)


def blocks_to_text(blocks: list[Block]) -> str:
    """Project a block tree to a linear plain-text approximation.

    Used for entity scanning and word counts, so it keeps every piece of
    prose and drops purely visual blocks (rules and scene breaks).
    """
    parts: list[str] = []
    for block in blocks:
        value = _block_to_text(block)
        if value:
            parts.append(value)
    return "\n\n".join(parts)


def _block_to_text(block: Block) -> str:
    if isinstance(block, (Heading, Paragraph)):
        return inlines_to_text(block.inlines)
    if isinstance(block, Blockquote):
        return blocks_to_text(block.blocks)
    if isinstance(block, (BulletList, OrderedList)):
        return "\n\n".join(
            item_text for item_text in (blocks_to_text(item) for item in block.items)
            if item_text
        )
    if isinstance(block, CodeBlock):
        return block.text
    return ""


def iter_inlines(blocks: list[Block]) -> Iterator[Inline]:
    """Yield every inline in a block tree, depth first."""
    for block in blocks:
        if isinstance(block, (Heading, Paragraph)):
            yield from block.inlines
        elif isinstance(block, Blockquote):
            yield from iter_inlines(block.blocks)
        elif isinstance(block, (BulletList, OrderedList)):
            for item in block.items:
                yield from iter_inlines(item)


_WORD_SPLIT = re.compile(r"\s+")


def count_words(value: str) -> int:
    """Count whitespace-separated words."""
    return len([word for word in _WORD_SPLIT.split(value.strip()) if word])
