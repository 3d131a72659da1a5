"""Intermediate representation and the shared HTML reader."""

from storyport.formatting.ir import (
    Block,
    Blockquote,
    BulletList,
    CodeBlock,
    ExportSection,
    HardBreak,
    Heading,
    HorizontalRule,
    Inline,
    Mark,
    MarkKind,
    OrderedList,
    Paragraph,
    SceneBreak,
    Text,
    blocks_to_text,
    inlines_to_text,
)
from storyport.formatting.html import html_to_blocks

__all__ = [
    "Block",
    "Blockquote",
    "BulletList",
    "CodeBlock",
    "ExportSection",
    "HardBreak",
    "Heading",
    "HorizontalRule",
    "Inline",
    "Mark",
    "MarkKind",
    "OrderedList",
    "Paragraph",
    "SceneBreak",
    "Text",
    "blocks_to_text",
    "inlines_to_text",
    "html_to_blocks",
]
