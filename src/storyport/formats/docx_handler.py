"""Microsoft Word (.docx) file handler."""

import io
import re
from html import escape
from typing import Optional, Union

from docx import Document
from docx.enum.style import WD_STYLE_TYPE
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_COLOR_INDEX
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor
from docx.table import Table
from docx.text.hyperlink import Hyperlink
from docx.text.paragraph import Paragraph as DocxParagraph
from docx.text.run import Run
from loguru import logger

from storyport.core.models import ExportResult
from storyport.formats.base import (
    FormatHandler,
    MalformedDocumentError,
    RenderError,
    RenderRequest,
    content_heading_level,
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

LINK_COLOR = RGBColor(0x05, 0x63, 0xC1)
RULE_COLOR = "CCCCCC"
CODE_SHADING = "F0F0F0"
CODE_FONT = "Courier New"
MONOSPACE_FONTS = {"courier", "courier new", "consolas", "menlo", "monaco", "lucida console"}

QUOTE_STYLES = {"quote", "intense quote"}
CODE_STYLES = {"code", "html preformatted", "macro text", "source code"}
SCENE_SEPARATOR = re.compile(r"^(?:(?:\*\s*){3,}|#|~{3,})$")

_HEADING_STYLE = re.compile(r"^heading\s+(\d)$", re.IGNORECASE)
_LIST_STYLE = re.compile(r"^list\s+(bullet|number)(?:\s+(\d))?$", re.IGNORECASE)


class DOCXHandler(FormatHandler):
    """Handler for Microsoft Word (.docx) files.

    Reading maps paragraph styles to HTML (headings, quotes, code, lists)
    and hands the result to the shared HTML reader. Writing builds a fresh
    document with python-docx; entity references become a yellow
    highlight when they are preserved.
    """

    mime_type = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return (".docx",)

    # =========================================================================
    # Reading
    # =========================================================================

    def parse(self, data: Union[bytes, str]) -> list[Block]:
        """Parse DOCX bytes into IR blocks."""
        if isinstance(data, str):
            raise MalformedDocumentError("DOCX input must be bytes")
        try:
            doc = Document(io.BytesIO(data))
        except Exception as e:
            raise MalformedDocumentError(f"Not a readable DOCX file: {e}") from e
        blocks = html_to_blocks(docx_to_html(doc))
        logger.debug(f"Parsed {len(blocks)} blocks from DOCX")
        return blocks

    # =========================================================================
    # Writing
    # =========================================================================

    def render(self, request: RenderRequest) -> ExportResult:
        """Render an export request as a Word document."""
        try:
            doc = DOCXWriter(request).build()
            buffer = io.BytesIO()
            doc.save(buffer)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"DOCX generation failed: {e}") from e

        return ExportResult(
            data=buffer.getvalue(),
            mime_type=self.mime_type,
            file_name=self.output_file_name(request.project),
        )


# =============================================================================
# DOCX -> HTML
# =============================================================================

def docx_to_html(doc) -> str:
    """Convert a python-docx Document to HTML using the style map."""
    builder = _HtmlBuilder()
    for item in doc.iter_inner_content():
        if isinstance(item, DocxParagraph):
            builder.add_paragraph(item)
        elif isinstance(item, Table):
            for paragraph in _table_paragraphs(item):
                builder.add_paragraph(paragraph)
    builder.close_all()
    return "".join(builder.parts)


def _table_paragraphs(table: Table) -> list[DocxParagraph]:
    """Flatten a table to its cell paragraphs, skipping merged duplicates."""
    seen: list = []
    paragraphs: list[DocxParagraph] = []
    for row in table.rows:
        for cell in row.cells:
            if any(cell._tc is tc for tc in seen):
                continue
            seen.append(cell._tc)
            paragraphs.extend(cell.paragraphs)
    return paragraphs


class _HtmlBuilder:
    """Accumulates HTML while grouping consecutive quote, code and list paragraphs."""

    def __init__(self) -> None:
        self.parts: list[str] = []
        self.code_lines: list[str] = []
        self.in_quote = False
        self.list_stack: list[str] = []

    def add_paragraph(self, paragraph: DocxParagraph) -> None:
        style = (paragraph.style.name if paragraph.style is not None else "") or ""
        style_key = style.strip().lower()

        if style_key in CODE_STYLES:
            self._close_quote()
            self._close_lists()
            self.code_lines.append(paragraph.text)
            return
        self._close_code()

        inner = _paragraph_inlines_html(paragraph)
        plain = paragraph.text.strip()

        list_match = _LIST_STYLE.match(style)
        if list_match or (style_key == "list paragraph" and _has_numbering(paragraph)):
            self._close_quote()
            kind = list_match.group(1).lower() if list_match else "bullet"
            level = int(list_match.group(2) or 1) if list_match else 1
            self._open_list_item("ol" if kind == "number" else "ul", level, inner)
            return
        self._close_lists()

        if style_key in QUOTE_STYLES:
            if not self.in_quote:
                self.parts.append("<blockquote>")
                self.in_quote = True
            if plain:
                self.parts.append(f"<p>{inner}</p>")
            return
        self._close_quote()

        if not plain:
            # Empty spacing paragraphs carry no content
            return

        heading_level = _style_heading_level(style_key)
        if heading_level is not None:
            self.parts.append(f"<h{heading_level}>{inner}</h{heading_level}>")
        elif SCENE_SEPARATOR.match(plain):
            self.parts.append("<hr/>")
        else:
            self.parts.append(f"<p>{inner}</p>")

    def _open_list_item(self, tag: str, level: int, inner: str) -> None:
        level = max(1, min(level, 9))
        while len(self.list_stack) > level:
            self.parts.append(f"</li></{self.list_stack.pop()}>")
        if len(self.list_stack) == level:
            if self.list_stack[-1] != tag:
                self.parts.append(f"</li></{self.list_stack.pop()}>")
            else:
                self.parts.append("</li>")
        while len(self.list_stack) < level:
            self.parts.append(f"<{tag}>")
            self.list_stack.append(tag)
            if len(self.list_stack) < level:
                self.parts.append("<li>")
        self.parts.append(f"<li>{inner}")

    def _close_lists(self) -> None:
        while self.list_stack:
            self.parts.append(f"</li></{self.list_stack.pop()}>")

    def _close_quote(self) -> None:
        if self.in_quote:
            self.parts.append("</blockquote>")
            self.in_quote = False

    def _close_code(self) -> None:
        if self.code_lines:
            body = escape("\n".join(self.code_lines), quote=False)
            self.parts.append(f"<pre><code>{body}</code></pre>")
            self.code_lines = []

    def close_all(self) -> None:
        self._close_code()
        self._close_lists()
        self._close_quote()


def _style_heading_level(style_key: str) -> Optional[int]:
    if style_key == "title":
        return 1
    if style_key == "subtitle":
        return 2
    match = _HEADING_STYLE.match(style_key)
    if match:
        return max(1, min(6, int(match.group(1))))
    return None


def _has_numbering(paragraph: DocxParagraph) -> bool:
    p_pr = paragraph._p.pPr
    return p_pr is not None and p_pr.numPr is not None


def _paragraph_inlines_html(paragraph: DocxParagraph) -> str:
    parts: list[str] = []
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            inner = "".join(_run_html(run) for run in item.runs)
            address = item.address
            if address:
                if item.fragment:
                    address = f"{address}#{item.fragment}"
                parts.append(f'<a href="{escape(address)}">{inner}</a>')
            else:
                parts.append(inner)
        elif isinstance(item, Run):
            parts.append(_run_html(item))
    return "".join(parts)


def _run_html(run: Run) -> str:
    if not run.text:
        return ""
    html = escape(run.text, quote=False).replace("\n", "<br/>").replace("\t", " ")

    font_name = (run.font.name or "").lower()
    if font_name in MONOSPACE_FONTS:
        html = f"<code>{html}</code>"
    if run.font.strike:
        html = f"<s>{html}</s>"
    if run.underline:
        html = f"<u>{html}</u>"
    if run.italic:
        html = f"<em>{html}</em>"
    if run.bold:
        html = f"<strong>{html}</strong>"
    return html


# =============================================================================
# IR -> DOCX
# =============================================================================

class DOCXWriter:
    """Builds a python-docx Document from an export request."""

    def __init__(self, request: RenderRequest) -> None:
        self.request = request
        self.options = request.options
        self.doc = Document()

    def build(self):
        doc = self.doc
        project = self.request.project

        style = doc.styles["Normal"]
        style.font.name = "Calibri"
        style.font.size = Pt(11)
        self._ensure_code_style()

        doc.core_properties.title = project.name
        if project.description:
            doc.core_properties.subject = project.description

        if self.options.include_title_page:
            doc.add_paragraph(project.name, style="Title")
            if project.description:
                para = doc.add_paragraph()
                para.add_run(project.description).italic = True
            doc.add_page_break()

        if self.options.include_toc and self.request.sections:
            self._add_toc()

        for section in self.request.sections:
            doc.add_heading(section.title, level=section.level)
            self.add_blocks(section.blocks)

        if self.request.include_glossary:
            self._add_glossary()

        return doc

    def _add_toc(self) -> None:
        header = self.doc.add_paragraph()
        header_run = header.add_run("Table of Contents")
        header_run.bold = True
        header_run.font.size = Pt(16)

        for section in self.request.sections:
            para = self.doc.add_paragraph(section.title)
            if section.level == 2:
                para.paragraph_format.left_indent = Inches(0.5)
        if self.request.include_glossary:
            self.doc.add_paragraph("Glossary")
        self.doc.add_page_break()

    def _add_glossary(self) -> None:
        doc = self.doc
        doc.add_page_break()
        doc.add_heading("Glossary", level=1)
        for section in self.request.glossary:
            doc.add_heading(section.title, level=2)
            for entry in section.entries:
                doc.add_heading(entry.name, level=3)
                if entry.aliases:
                    para = doc.add_paragraph()
                    para.add_run(f"Also known as: {', '.join(entry.aliases)}").italic = True
                if entry.description:
                    doc.add_paragraph(entry.description)
                for field in entry.fields:
                    para = doc.add_paragraph()
                    para.add_run(f"{field.label}: ").bold = True
                    para.add_run(field.value)

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def add_blocks(self, blocks: list[Block], quote: bool = False, list_depth: int = 0) -> None:
        for block in blocks:
            self.add_block(block, quote, list_depth)

    def add_block(self, block: Block, quote: bool = False, list_depth: int = 0) -> None:
        doc = self.doc

        if isinstance(block, Heading):
            para = doc.add_heading("", level=content_heading_level(block.level))
            self.add_inlines(para, block.inlines)

        elif isinstance(block, Paragraph):
            para = doc.add_paragraph(style="Quote" if quote else None)
            if list_depth:
                para.paragraph_format.left_indent = Inches(0.25 + 0.25 * list_depth)
            self.add_inlines(para, block.inlines)

        elif isinstance(block, Blockquote):
            self.add_blocks(block.blocks, quote=True, list_depth=list_depth)

        elif isinstance(block, (BulletList, OrderedList)):
            self._add_list(block, quote, list_depth + 1)

        elif isinstance(block, CodeBlock):
            for line in block.text.split("\n"):
                para = doc.add_paragraph(style="Code")
                para.add_run(line)
                _set_paragraph_shading(para, CODE_SHADING)

        elif isinstance(block, HorizontalRule):
            _add_horizontal_line(doc)

        elif isinstance(block, SceneBreak):
            para = doc.add_paragraph("* * *")
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER

    def _add_list(self, block, quote: bool, depth: int) -> None:
        kind = "List Number" if isinstance(block, OrderedList) else "List Bullet"
        style = kind if depth == 1 else f"{kind} {min(depth, 3)}"

        for item in block.items:
            first, rest = (item[0], item[1:]) if item else (Paragraph(), [])
            if isinstance(first, Paragraph):
                para = self.doc.add_paragraph(style=style)
                self.add_inlines(para, first.inlines)
            else:
                self.doc.add_paragraph(style=style)
                rest = item
            self.add_blocks(rest, quote=quote, list_depth=depth)

    # -------------------------------------------------------------------------
    # Inlines
    # -------------------------------------------------------------------------

    def add_inlines(self, para, inlines: list[Inline]) -> None:
        for inline in inlines:
            if isinstance(inline, HardBreak):
                para.add_run().add_break()
            elif isinstance(inline, Text) and inline.text:
                self._add_text(para, inline)

    def _add_text(self, para, inline: Text) -> None:
        kinds = {mark.kind: mark for mark in inline.marks}
        run = para.add_run(inline.text)
        run.bold = MarkKind.BOLD in kinds or None
        run.italic = MarkKind.ITALIC in kinds or None
        if MarkKind.UNDERLINE in kinds:
            run.underline = True
        if MarkKind.STRIKE in kinds:
            run.font.strike = True
        if MarkKind.CODE in kinds:
            run.font.name = CODE_FONT
        if MarkKind.ENTITY in kinds and self.options.preserve_entity_marks:
            run.font.highlight_color = WD_COLOR_INDEX.YELLOW

        link = kinds.get(MarkKind.LINK)
        if link is not None and link.href and _is_external(link.href):
            _wrap_in_hyperlink(para, run, link.href)

    def _ensure_code_style(self) -> None:
        styles = self.doc.styles
        if "Code" in [s.name for s in styles]:
            return
        style = styles.add_style("Code", WD_STYLE_TYPE.PARAGRAPH)
        style.base_style = styles["Normal"]
        style.font.name = CODE_FONT
        style.font.size = Pt(10)
        style.paragraph_format.space_before = Pt(0)
        style.paragraph_format.space_after = Pt(0)


def _is_external(href: str) -> bool:
    return re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*:", href) is not None


def _wrap_in_hyperlink(para, run: Run, url: str) -> None:
    """Move a run inside a w:hyperlink pointing at an external URL."""
    r_id = para.part.relate_to(url, RT.HYPERLINK, is_external=True)
    hyperlink = OxmlElement("w:hyperlink")
    hyperlink.set(qn("r:id"), r_id)
    run.font.color.rgb = LINK_COLOR
    run.underline = True
    hyperlink.append(run._r)
    para._p.append(hyperlink)


def _add_horizontal_line(doc) -> None:
    """Add a horizontal line separator."""
    para = doc.add_paragraph()
    para.paragraph_format.space_before = Pt(12)
    para.paragraph_format.space_after = Pt(12)

    pPr = para._p.get_or_add_pPr()
    pBdr = OxmlElement("w:pBdr")
    bottom = OxmlElement("w:bottom")
    bottom.set(qn("w:val"), "single")
    bottom.set(qn("w:sz"), "6")
    bottom.set(qn("w:space"), "1")
    bottom.set(qn("w:color"), RULE_COLOR)
    pBdr.append(bottom)
    pPr.append(pBdr)


def _set_paragraph_shading(para, fill: str) -> None:
    shading = OxmlElement("w:shd")
    shading.set(qn("w:val"), "clear")
    shading.set(qn("w:color"), "auto")
    shading.set(qn("w:fill"), fill)
    para._p.get_or_add_pPr().append(shading)
