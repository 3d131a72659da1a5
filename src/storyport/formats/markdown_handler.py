"""Markdown file handler.

Parsing goes Markdown -> HTML (markdown-it-py, CommonMark plus the GFM
table and strikethrough rules) -> the shared HTML reader. Rendering writes
CommonMark directly from the IR.
"""

import re
from typing import Union

from markdown_it import MarkdownIt

from storyport.core.filenames import slugify
from storyport.core.models import ExportResult, GlossarySection
from storyport.formats.base import (
    FormatHandler,
    RenderRequest,
    content_heading_level,
    decode_text,
    entity_anchor,
)
from storyport.formatting.html import html_to_blocks
from storyport.formatting.ir import (
    Block,
    Blockquote,
    BulletList,
    CodeBlock,
    HardBreak,
    Heading,
    HorizontalRule,
    Inline,
    MarkKind,
    OrderedList,
    Paragraph,
    SceneBreak,
    Text,
)

# Inner to outer; code is rendered first as a code span
MARK_ORDER = (
    MarkKind.CODE,
    MarkKind.ENTITY,
    MarkKind.LINK,
    MarkKind.STRIKE,
    MarkKind.UNDERLINE,
    MarkKind.ITALIC,
    MarkKind.BOLD,
)

SCENE_BREAK = "* * *"

_ESCAPE_ALWAYS = re.compile(r"([\\`*_\[\]<>~])")
_ENTITY_REFERENCE = re.compile(r"&(?=#?[A-Za-z0-9]+;)")
_LINE_START_SYMBOL = re.compile(r"^( {0,3})([#+=-])", re.MULTILINE)
_LINE_START_ENUMERATOR = re.compile(r"^( {0,3})(\d{1,9})([.)])", re.MULTILINE)
_BACKTICK_RUN = re.compile(r"`+")
_FENCE_RUN = re.compile(r"^ {0,3}(`{3,})", re.MULTILINE)


def create_markdown_parser() -> MarkdownIt:
    """CommonMark parser with GFM tables and strikethrough, raw HTML on."""
    return MarkdownIt("commonmark", {"html": True, "breaks": False}).enable(
        ["table", "strikethrough"]
    )


class MarkdownHandler(FormatHandler):
    """Handler for Markdown (.md) files."""

    mime_type = "text/markdown"

    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return (".md", ".markdown", ".mdown", ".mkd")

    def parse(self, data: Union[bytes, str]) -> list[Block]:
        """Parse Markdown into IR blocks."""
        text = decode_text(data) if isinstance(data, bytes) else data
        html = create_markdown_parser().render(text)
        return html_to_blocks(html)

    def render(self, request: RenderRequest) -> ExportResult:
        """Render an export request as a CommonMark document."""
        content = MarkdownRenderer(request).render()
        return ExportResult(
            data=content.encode("utf-8"),
            mime_type=self.mime_type,
            file_name=self.output_file_name(request.project),
        )


class MarkdownRenderer:
    """Renders one export request to Markdown text."""

    def __init__(self, request: RenderRequest) -> None:
        self.request = request
        self.options = request.options
        self.link_entities = request.link_entities

    def render(self) -> str:
        chunks: list[str] = []
        project = self.request.project
        sections = self.request.sections

        if self.options.include_title_page:
            chunks.append(f"# {escape_text(project.name)}")
            if project.description:
                chunks.append(f"*{escape_text(project.description.strip())}*")
            chunks.append("---")

        if self.options.include_toc and sections:
            chunks.append("## Table of Contents")
            chunks.append(self._render_toc())
            chunks.append("---")

        for section in sections:
            prefix = "#" if section.level == 1 else "##"
            chunks.append(f"{prefix} {_heading_text(escape_text(section.title))}")
            chunks.extend(self.render_blocks(section.blocks))

        if self.request.include_glossary:
            chunks.append("---")
            chunks.append("# Glossary")
            chunks.extend(self._render_glossary(self.request.glossary))

        return "\n\n".join(chunk for chunk in chunks if chunk) + "\n"

    def _render_toc(self) -> str:
        slugger = Slugger()
        lines = []
        for section in self.request.sections:
            indent = "  " if section.level == 2 else ""
            slug = slugger.slug(section.title)
            lines.append(f"{indent}- [{escape_text(section.title)}](#{slug})")
        if self.request.include_glossary:
            lines.append(f"- [Glossary](#{slugger.slug('Glossary')})")
        return "\n".join(lines)

    def _render_glossary(self, glossary: list[GlossarySection]) -> list[str]:
        chunks: list[str] = []
        for section in glossary:
            chunks.append(f"## {escape_text(section.title)}")
            for entry in section.entries:
                chunks.append(f'<a id="{entity_anchor(entry.id)}"></a>')
                chunks.append(f"### {_heading_text(escape_text(entry.name))}")
                if entry.aliases:
                    aliases = ", ".join(escape_text(a) for a in entry.aliases)
                    chunks.append(f"*Also known as: {aliases}*")
                if entry.description:
                    chunks.append(escape_lines(entry.description))
                if entry.fields:
                    chunks.append(
                        "\n".join(
                            f"- **{escape_text(f.label)}:** {escape_text(f.value)}"
                            for f in entry.fields
                        )
                    )
        return chunks

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def render_blocks(self, blocks: list[Block]) -> list[str]:
        chunks: list[str] = []
        for block in blocks:
            chunk = self.render_block(block)
            if chunk:
                chunks.append(chunk)
        return chunks

    def render_block(self, block: Block) -> str:
        if isinstance(block, Heading):
            level = content_heading_level(block.level)
            body = self.render_inlines(block.inlines, single_line=True)
            return f"{'#' * level} {_heading_text(body)}".rstrip()

        if isinstance(block, Paragraph):
            return self.render_inlines(block.inlines).lstrip(" \t")

        if isinstance(block, Blockquote):
            inner = "\n\n".join(self.render_blocks(block.blocks))
            return "\n".join(f"> {line}" if line else ">" for line in inner.split("\n"))

        if isinstance(block, BulletList):
            return self._render_list(block.items, lambda i: "- ")

        if isinstance(block, OrderedList):
            start = block.start if block.start is not None else 1
            return self._render_list(block.items, lambda i: f"{start + i}. ")

        if isinstance(block, CodeBlock):
            longest = max((len(run) for run in _FENCE_RUN.findall(block.text)), default=2)
            fence = "`" * max(3, longest + 1)
            return f"{fence}{block.language or ''}\n{block.text}\n{fence}"

        if isinstance(block, HorizontalRule):
            return "---"

        if isinstance(block, SceneBreak):
            return SCENE_BREAK

        return ""

    def _render_list(self, items: list[list[Block]], marker) -> str:
        rendered: list[str] = []
        loose = False
        for i, item in enumerate(items):
            chunks = self.render_blocks(item)
            if len(chunks) > 1:
                loose = True
            prefix = marker(i)
            body = "\n\n".join(chunks)
            lines = body.split("\n") if body else [""]
            indent = " " * len(prefix)
            out = [f"{prefix}{lines[0]}".rstrip()]
            out.extend(f"{indent}{line}" if line else "" for line in lines[1:])
            rendered.append("\n".join(out))
        return ("\n\n" if loose else "\n").join(rendered)

    # -------------------------------------------------------------------------
    # Inlines
    # -------------------------------------------------------------------------

    def render_inlines(self, inlines: list[Inline], single_line: bool = False) -> str:
        runs = merge_runs(inlines)
        while runs and isinstance(runs[-1], HardBreak):
            runs.pop()

        parts: list[str] = []
        for run in runs:
            if isinstance(run, HardBreak):
                if single_line:
                    parts.append(" ")
                else:
                    # Trailing spaces before a backslash break are dropped
                    if parts:
                        parts[-1] = parts[-1].rstrip(" ")
                    parts.append("\\\n")
                continue
            parts.append(self.render_run(run))

        rendered = "".join(parts)
        return escape_line_starts(rendered)

    def render_run(self, run: Text) -> str:
        """Render one text run with its marks applied in fixed order."""
        kinds = {mark.kind: mark for mark in run.marks}

        if MarkKind.CODE in kinds:
            leading, core, trailing = "", code_span(run.text), ""
        else:
            leading, core, trailing = _split_edges(run.text)
            if not core:
                return escape_text(run.text)
            core = escape_text(core)

        linked = False
        for kind in MARK_ORDER[1:]:
            mark = kinds.get(kind)
            if mark is None:
                continue
            if kind == MarkKind.ENTITY:
                if self.link_entities and mark.entity_id:
                    core = f"[{core}](#{entity_anchor(mark.entity_id)})"
                    linked = True
            elif kind == MarkKind.LINK:
                # Links cannot nest
                if not linked:
                    core = f"[{core}]({_link_destination(mark.href or '')})"
                    linked = True
            elif kind == MarkKind.STRIKE:
                core = f"~~{core}~~"
            elif kind == MarkKind.UNDERLINE:
                core = f"<u>{core}</u>"
            elif kind == MarkKind.ITALIC:
                core = f"*{core}*"
            elif kind == MarkKind.BOLD:
                core = f"**{core}**"

        return f"{leading}{core}{trailing}"


class Slugger:
    """GitHub-style slugs with -1, -2 suffixes for repeated titles."""

    def __init__(self) -> None:
        self._seen: dict[str, int] = {}

    def slug(self, value: str) -> str:
        base = slugify(value)
        count = self._seen.get(base)
        if count is None:
            self._seen[base] = 0
            return base
        count += 1
        self._seen[base] = count
        return f"{base}-{count}"


def merge_runs(inlines: list[Inline]) -> list[Inline]:
    """Merge adjacent text runs that carry the same set of marks."""
    merged: list[Inline] = []
    for inline in inlines:
        if isinstance(inline, HardBreak):
            merged.append(inline)
            continue
        if not inline.text:
            continue
        previous = merged[-1] if merged else None
        if isinstance(previous, Text) and set(previous.marks) == set(inline.marks):
            merged[-1] = Text(text=previous.text + inline.text, marks=list(previous.marks))
        else:
            merged.append(Text(text=inline.text, marks=list(inline.marks)))
    return merged


def escape_text(value: str) -> str:
    """Escape characters that Markdown would read as markup."""
    value = _ESCAPE_ALWAYS.sub(r"\\\1", value)
    return _ENTITY_REFERENCE.sub("&amp;", value)


def escape_line_starts(value: str) -> str:
    """Escape block markers (headings, list bullets, numbers) at line starts."""
    value = _LINE_START_SYMBOL.sub(r"\1\\\2", value)
    return _LINE_START_ENUMERATOR.sub(r"\1\2\\\3", value)


def escape_lines(value: str) -> str:
    return escape_line_starts(escape_text(value.strip()))


def code_span(value: str) -> str:
    longest = max((len(run) for run in _BACKTICK_RUN.findall(value)), default=0)
    fence = "`" * (longest + 1)
    if value.startswith("`") or value.endswith("`") or (
        value.startswith(" ") and value.endswith(" ") and value.strip()
    ):
        value = f" {value} "
    return f"{fence}{value}{fence}"


def _split_edges(value: str) -> tuple[str, str, str]:
    core = value.strip()
    if not core:
        return value, "", ""
    start = value.index(core)
    return value[:start], core, value[start + len(core):]


def _link_destination(href: str) -> str:
    if not href or any(c in href for c in " ()<>"):
        return f"<{href.replace('<', '%3C').replace('>', '%3E')}>"
    return href


def _heading_text(value: str) -> str:
    # A trailing run of # would be read as a closing sequence
    if value.endswith("#"):
        return value[:-1] + "\\#"
    return value
