"""PDF file handler (export only)."""

import io
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable,
    ListFlowable,
    ListItem,
    PageBreak,
    Paragraph,
    Preformatted,
    SimpleDocTemplate,
    Spacer,
)

from storyport.core.models import ExportResult, GlossarySection
from storyport.formats.base import (
    FormatHandler,
    RenderError,
    RenderRequest,
    content_heading_level,
    entity_anchor,
)
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
    MarkKind,
    OrderedList,
    Paragraph as ParagraphBlock,
    SceneBreak,
    Text,
)

CODE_BG_COLOR = HexColor("#F0F0F0")
ENTITY_BG_COLOR = "#FFFFCC"
LINK_COLOR = "#1976D2"
RULE_COLOR = HexColor("#CCCCCC")

HEADING_SIZES = {1: 20, 2: 16, 3: 14, 4: 12, 5: 11, 6: 10}


class PDFHandler(FormatHandler):
    """Handler for PDF output.

    PDF is written with reportlab's platypus layer. Reading PDF is not
    supported: the text layer of a PDF does not carry enough structure to
    rebuild chapters and scenes.
    """

    mime_type = "application/pdf"
    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return (".pdf",)

    def render(self, request: RenderRequest) -> ExportResult:
        """Render an export request as a PDF document."""
        buffer = io.BytesIO()
        try:
            PDFWriter(request).build(buffer)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"PDF generation failed: {e}") from e

        return ExportResult(
            data=buffer.getvalue(),
            mime_type=self.mime_type,
            file_name=self.output_file_name(request.project),
        )


class PDFWriter:
    """Lays out one export request as a list of platypus flowables."""

    def __init__(self, request: RenderRequest) -> None:
        self.request = request
        self.options = request.options
        self.styles = create_styles()

    def build(self, output) -> None:
        project = self.request.project
        doc = SimpleDocTemplate(
            output,
            pagesize=letter,
            rightMargin=inch,
            leftMargin=inch,
            topMargin=inch,
            bottomMargin=inch,
            title=project.name,
            subject=project.description or "",
        )
        story = self.story()
        if not story:
            story.append(Spacer(1, 12))
        doc.build(story)

    def story(self) -> list:
        project = self.request.project
        sections = self.request.sections
        story: list = []

        if self.options.include_title_page:
            story.append(Spacer(1, 2 * inch))
            story.append(Paragraph(escape(project.name), self.styles["title"]))
            if project.description:
                story.append(Paragraph(escape(project.description), self.styles["subtitle"]))
            story.append(PageBreak())

        if self.options.include_toc and sections:
            story.append(Paragraph("Table of Contents", self.styles["h1"]))
            for index, section in enumerate(sections):
                style = self.styles["toc1"] if section.level == 1 else self.styles["toc2"]
                link = f'<a href="#section-{index}">{escape(section.title)}</a>'
                story.append(Paragraph(link, style))
            if self.request.include_glossary:
                story.append(Paragraph('<a href="#glossary">Glossary</a>', self.styles["toc1"]))
            story.append(PageBreak())

        for index, section in enumerate(sections):
            if section.level == 1 and index > 0:
                story.append(PageBreak())
            story.extend(self.section_flowables(index, section))

        if self.request.include_glossary:
            story.append(PageBreak())
            story.extend(self.glossary_flowables(self.request.glossary))

        return story

    def section_flowables(self, index: int, section: ExportSection) -> list:
        style = self.styles["h1"] if section.level == 1 else self.styles["h2"]
        title = f'<a name="section-{index}"/>{escape(section.title)}'
        return [Paragraph(title, style), *self.block_flowables(section.blocks)]

    def glossary_flowables(self, glossary: list[GlossarySection]) -> list:
        flowables: list = [Paragraph('<a name="glossary"/>Glossary', self.styles["h1"])]
        for section in glossary:
            flowables.append(Paragraph(escape(section.title), self.styles["h2"]))
            for entry in section.entries:
                anchor = f'<a name="{escape(entity_anchor(entry.id))}"/>'
                flowables.append(Paragraph(anchor + escape(entry.name), self.styles["h3"]))
                if entry.aliases:
                    aliases = escape(", ".join(entry.aliases))
                    flowables.append(
                        Paragraph(f"<i>Also known as: {aliases}</i>", self.styles["body"])
                    )
                if entry.description:
                    flowables.append(Paragraph(escape(entry.description), self.styles["body"]))
                for field in entry.fields:
                    flowables.append(
                        Paragraph(
                            f"<b>{escape(field.label)}:</b> {escape(field.value)}",
                            self.styles["field"],
                        )
                    )
        return flowables

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def block_flowables(self, blocks: list[Block], quoted: bool = False) -> list:
        flowables: list = []
        for block in blocks:
            flowables.extend(self.block_flowable(block, quoted))
        return flowables

    def block_flowable(self, block: Block, quoted: bool = False) -> list:
        body_style = self.styles["quote"] if quoted else self.styles["body"]

        if isinstance(block, Heading):
            level = content_heading_level(block.level)
            return [Paragraph(self.inlines_markup(block.inlines), self.styles[f"h{level}"])]

        if isinstance(block, ParagraphBlock):
            if not block.inlines:
                return [Spacer(1, 12)]
            return [Paragraph(self.inlines_markup(block.inlines), body_style)]

        if isinstance(block, Blockquote):
            return self.block_flowables(block.blocks, quoted=True)

        if isinstance(block, (BulletList, OrderedList)):
            items = [
                ListItem(self.block_flowables(item, quoted) or [Spacer(1, 0)])
                for item in block.items
            ]
            if not items:
                return []
            if isinstance(block, BulletList):
                return [ListFlowable(items, bulletType="bullet", leftIndent=18)]
            start = block.start if block.start is not None else 1
            return [ListFlowable(items, bulletType="1", start=start, leftIndent=18)]

        if isinstance(block, CodeBlock):
            return [Preformatted(block.text, self.styles["code"])]

        if isinstance(block, HorizontalRule):
            return [
                Spacer(1, 6),
                HRFlowable(width="100%", thickness=1, color=RULE_COLOR),
                Spacer(1, 6),
            ]

        if isinstance(block, SceneBreak):
            return [Paragraph("* * *", self.styles["scene_break"])]

        return []

    # -------------------------------------------------------------------------
    # Inlines
    # -------------------------------------------------------------------------

    def inlines_markup(self, inlines: list[Inline]) -> str:
        """Convert inline runs to reportlab paragraph markup."""
        parts: list[str] = []
        for inline in inlines:
            if isinstance(inline, HardBreak):
                parts.append("<br/>")
            elif isinstance(inline, Text) and inline.text:
                parts.append(self._run_markup(inline))
        return "".join(parts)

    def _run_markup(self, run: Text) -> str:
        kinds = {mark.kind: mark for mark in run.marks}
        text = escape(run.text)

        if MarkKind.CODE in kinds:
            text = f'<font face="Courier">{text}</font>'

        # Entity marks are a highlight, never a link
        entity = kinds.get(MarkKind.ENTITY)
        if entity is not None and self.options.preserve_entity_marks and entity.entity_id:
            text = f'<font backColor="{ENTITY_BG_COLOR}">{text}</font>'

        link = kinds.get(MarkKind.LINK)
        if link is not None and link.href:
            href = escape(link.href, {'"': "&quot;"})
            text = f'<a href="{href}" color="{LINK_COLOR}">{text}</a>'

        if MarkKind.STRIKE in kinds:
            text = f"<strike>{text}</strike>"
        if MarkKind.UNDERLINE in kinds:
            text = f"<u>{text}</u>"
        if MarkKind.ITALIC in kinds:
            text = f"<i>{text}</i>"
        if MarkKind.BOLD in kinds:
            text = f"<b>{text}</b>"
        return text


def create_styles() -> dict[str, ParagraphStyle]:
    """Create all paragraph styles for the document."""
    base_styles = getSampleStyleSheet()
    styles = {
        "title": ParagraphStyle(
            "StoryTitle",
            parent=base_styles["Title"],
            fontSize=28,
            leading=34,
            alignment=TA_CENTER,
            spaceAfter=24,
        ),
        "subtitle": ParagraphStyle(
            "StorySubtitle",
            parent=base_styles["Italic"],
            fontSize=13,
            leading=18,
            alignment=TA_CENTER,
        ),
        "body": ParagraphStyle(
            "StoryBody",
            parent=base_styles["Normal"],
            fontSize=12,
            leading=18,
            spaceBefore=6,
            spaceAfter=6,
        ),
        "quote": ParagraphStyle(
            "StoryQuote",
            parent=base_styles["Italic"],
            fontSize=12,
            leading=18,
            leftIndent=24,
            rightIndent=24,
            spaceBefore=6,
            spaceAfter=6,
        ),
        "code": ParagraphStyle(
            "StoryCode",
            parent=base_styles["Code"],
            fontName="Courier",
            fontSize=10,
            leading=13,
            backColor=CODE_BG_COLOR,
            borderPadding=6,
            spaceBefore=8,
            spaceAfter=8,
        ),
        "scene_break": ParagraphStyle(
            "SceneBreak",
            parent=base_styles["Normal"],
            fontSize=12,
            alignment=TA_CENTER,
            spaceBefore=12,
            spaceAfter=12,
        ),
        "field": ParagraphStyle(
            "GlossaryField",
            parent=base_styles["Normal"],
            fontSize=10,
            leading=14,
            leftIndent=12,
        ),
        "toc1": ParagraphStyle(
            "TOCChapter",
            parent=base_styles["Normal"],
            fontSize=12,
            leading=18,
        ),
        "toc2": ParagraphStyle(
            "TOCScene",
            parent=base_styles["Normal"],
            fontSize=11,
            leading=16,
            leftIndent=18,
        ),
    }
    for level, size in HEADING_SIZES.items():
        parent = base_styles[f"Heading{min(level, 6)}"]
        styles[f"h{level}"] = ParagraphStyle(
            f"StoryHeading{level}",
            parent=parent,
            fontSize=size,
            leading=size + 6,
            spaceBefore=12,
            spaceAfter=6,
        )
    return styles
