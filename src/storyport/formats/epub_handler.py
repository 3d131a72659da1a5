"""EPUB e-book file handler."""

import io
import zipfile
from html import escape
from typing import Union

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub
from loguru import logger
from lxml import etree

from storyport.core.models import ExportResult, GlossarySection
from storyport.formats.base import (
    FormatHandler,
    MalformedDocumentError,
    RenderError,
    RenderRequest,
    content_heading_level,
    entity_anchor,
)
from storyport.formatting.html import SCENE_BREAK_CLASS, html_to_blocks
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
    Paragraph,
    SceneBreak,
    Text,
)

XHTML_NS = "http://www.w3.org/1999/xhtml"

GLOSSARY_FILE = "glossary.xhtml"
TITLE_FILE = "title.xhtml"

STYLESHEET = """
body {
    font-family: Georgia, serif;
    font-size: 1em;
    line-height: 1.6;
    margin: 1em;
}
h1, h2, h3, h4, h5, h6 {
    font-family: Helvetica, Arial, sans-serif;
    line-height: 1.2;
}
p {
    margin: 0.5em 0;
    text-indent: 1.5em;
}
h1 + p, h2 + p, h3 + p, .scene-break + p {
    text-indent: 0;
}
blockquote {
    margin: 1em 2em;
    font-style: italic;
}
pre {
    font-family: "Courier New", monospace;
    font-size: 0.9em;
    background: #f0f0f0;
    padding: 0.5em;
    white-space: pre-wrap;
}
.scene-break {
    text-align: center;
    text-indent: 0;
    margin: 1.5em 0;
}
.title-page {
    text-align: center;
    margin-top: 30%;
}
.title-page .description {
    font-style: italic;
    text-indent: 0;
}
.entity {
    color: inherit;
    text-decoration: none;
    border-bottom: 1px dotted #888;
}
.glossary-entry {
    margin: 1em 0;
}
.glossary-entry .aliases {
    font-style: italic;
    text-indent: 0;
}
.glossary-entry .field {
    text-indent: 0;
}
"""


class EPUBHandler(FormatHandler):
    """Handler for EPUB e-book files.

    Both directions use ebooklib. Reading follows the spine and skips
    non-linear items and the navigation document.
    """

    mime_type = "application/epub+zip"
    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return (".epub",)

    # =========================================================================
    # Reading
    # =========================================================================

    def parse(self, data: Union[bytes, str]) -> list[Block]:
        """Parse EPUB bytes into IR blocks, spine item by spine item.

        Raises:
            MalformedDocumentError: The archive, container or package
                document is missing or broken
        """
        if isinstance(data, str):
            raise MalformedDocumentError("EPUB input must be bytes")
        book = read_book(data)

        blocks: list[Block] = []
        for item in content_items(book):
            blocks.extend(html_to_blocks(body_inner_html(item.content)))

        logger.debug(f"Parsed {len(blocks)} blocks from EPUB")
        return blocks

    # =========================================================================
    # Writing
    # =========================================================================

    def render(self, request: RenderRequest) -> ExportResult:
        """Render an export request as an EPUB 3 package."""
        try:
            book = EPUBWriter(request).build()
            buffer = io.BytesIO()
            epub.write_epub(buffer, book, {})
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"EPUB generation failed: {e}") from e

        return ExportResult(
            data=buffer.getvalue(),
            mime_type=self.mime_type,
            file_name=self.output_file_name(request.project),
        )


# =============================================================================
# Package reading
# =============================================================================

def read_book(data: bytes) -> epub.EpubBook:
    """Load an EPUB package with ebooklib.

    ebooklib reports structural faults as a mix of its own and builtin
    exceptions; all of them mean the package cannot be read.
    """
    try:
        return epub.read_epub(io.BytesIO(data), {"ignore_ncx": True})
    except epub.EpubException as e:
        raise MalformedDocumentError(f"Invalid EPUB package: {e.msg}") from e
    except KeyError as e:
        raise MalformedDocumentError(f"Missing file in EPUB: {e.args[0]}") from e
    except zipfile.BadZipFile as e:
        raise MalformedDocumentError(f"Not a zip archive: {e}") from e
    except (AttributeError, IndexError, TypeError, etree.LxmlError) as e:
        raise MalformedDocumentError(f"Invalid EPUB package document: {e}") from e


def content_items(book: epub.EpubBook) -> list[epub.EpubHtml]:
    """Linear, non-navigation HTML documents in spine order."""
    items: list[epub.EpubHtml] = []
    for idref, linear in book.spine:
        item = book.get_item_with_id(idref)
        if item is None:
            raise MalformedDocumentError(f"Spine references unknown manifest item {idref!r}")
        if (linear or "yes").lower() == "no":
            logger.debug(f"Skipping non-linear spine item {idref}")
            continue
        if isinstance(item, epub.EpubNav):
            continue
        if item.get_type() != ebooklib.ITEM_DOCUMENT:
            logger.warning(f"Skipping spine item {idref} with media type {item.media_type}")
            continue
        items.append(item)
    return items


def body_inner_html(raw: bytes) -> str:
    """Return the inner HTML of a content document's body.

    Content documents should be well-formed XHTML; anything that is not is
    read with BeautifulSoup instead.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
    try:
        root = etree.fromstring(raw, parser=parser)
    except etree.XMLSyntaxError:
        logger.debug("Content document is not well-formed XML, using the HTML parser")
        soup = BeautifulSoup(raw, "html.parser")
        body = soup.body or soup
        return body.decode_contents()

    body = root.find(f".//{{{XHTML_NS}}}body")
    if body is None:
        body = root.find(".//body")
    if body is None:
        return ""
    parts = [escape(body.text or "", quote=False)]
    parts.extend(etree.tostring(child, encoding="unicode") for child in body)
    return "".join(parts)


# =============================================================================
# Package writing
# =============================================================================

class EPUBWriter:
    """Builds an ebooklib EpubBook from an export request."""

    def __init__(self, request: RenderRequest) -> None:
        self.request = request
        self.options = request.options
        self.link_entities = request.link_entities

    def build(self) -> epub.EpubBook:
        project = self.request.project
        book = epub.EpubBook()
        book.FOLDER_NAME = "OEBPS"
        book.set_identifier(f"storyport-{project.id}")
        book.set_title(project.name)
        book.set_language("en")
        if project.description:
            book.add_metadata("DC", "description", project.description)

        css = epub.EpubItem(
            uid="style",
            file_name="styles.css",
            media_type="text/css",
            content=STYLESHEET.encode("utf-8"),
        )
        book.add_item(css)

        spine: list = []
        if self.options.include_title_page:
            title_page = self._page(project.name, TITLE_FILE, self._title_page_html(), css)
            book.add_item(title_page)
            spine.append(title_page)

        if self.options.include_toc:
            spine.append("nav")

        chapters: list[epub.EpubHtml] = []
        for index, section in enumerate(self.request.sections, start=1):
            page = self._page(
                section.title,
                f"section-{index:03d}.xhtml",
                self.section_html(section),
                css,
            )
            book.add_item(page)
            chapters.append(page)
            spine.append(page)

        glossary_page = None
        if self.request.include_glossary:
            glossary_page = self._page(
                "Glossary", GLOSSARY_FILE, self.glossary_html(self.request.glossary), css
            )
            book.add_item(glossary_page)
            spine.append(glossary_page)

        book.toc = self._toc(chapters, glossary_page)
        book.spine = spine
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        return book

    def _page(self, title: str, file_name: str, body: str, css) -> epub.EpubHtml:
        page = epub.EpubHtml(title=title, file_name=file_name, lang="en")
        document = (
            '<html xmlns="http://www.w3.org/1999/xhtml"><head>'
            '<meta charset="utf-8"/>'
            f"<title>{escape(title)}</title></head>"
            f"<body>{body}</body></html>"
        )
        page.set_content(document.encode("utf-8"))
        page.add_item(css)
        return page

    def _toc(self, chapters: list[epub.EpubHtml], glossary_page) -> list:
        """Nest scene links under the chapter that precedes them."""
        toc: list = []
        current: list = []
        for section, page in zip(self.request.sections, chapters):
            link = epub.Link(page.file_name, section.title, page.id)
            if section.level == 2 and toc and isinstance(toc[-1], tuple):
                current.append(link)
            elif section.level == 1:
                current = []
                toc.append((epub.Section(section.title, href=page.file_name), current))
            else:
                toc.append(link)
        # Chapters without scenes become plain links
        toc = [
            epub.Link(entry[0].href, entry[0].title, f"toc-{i}")
            if isinstance(entry, tuple) and not entry[1]
            else entry
            for i, entry in enumerate(toc)
        ]
        if glossary_page is not None:
            toc.append(epub.Link(GLOSSARY_FILE, "Glossary", "glossary"))
        return toc

    # -------------------------------------------------------------------------
    # XHTML
    # -------------------------------------------------------------------------

    def _title_page_html(self) -> str:
        project = self.request.project
        parts = ['<div class="title-page">', f"<h1>{escape(project.name)}</h1>"]
        if project.description:
            parts.append(f'<p class="description">{escape(project.description)}</p>')
        parts.append("</div>")
        return "".join(parts)

    def section_html(self, section: ExportSection) -> str:
        tag = "h1" if section.level == 1 else "h2"
        return f"<{tag}>{escape(section.title)}</{tag}>" + self.blocks_html(section.blocks)

    def glossary_html(self, glossary: list[GlossarySection]) -> str:
        parts = ["<h1>Glossary</h1>"]
        for section in glossary:
            parts.append(f"<h2>{escape(section.title)}</h2>")
            for entry in section.entries:
                parts.append(f'<div class="glossary-entry" id="{escape(entity_anchor(entry.id))}">')
                parts.append(f"<h3>{escape(entry.name)}</h3>")
                if entry.aliases:
                    aliases = escape(", ".join(entry.aliases))
                    parts.append(f'<p class="aliases">Also known as: {aliases}</p>')
                if entry.description:
                    parts.append(f"<p>{escape(entry.description)}</p>")
                for field in entry.fields:
                    parts.append(
                        f'<p class="field"><strong>{escape(field.label)}:</strong> '
                        f"{escape(field.value)}</p>"
                    )
                parts.append("</div>")
        return "".join(parts)

    def blocks_html(self, blocks: list[Block]) -> str:
        return "".join(self.block_html(block) for block in blocks)

    def block_html(self, block: Block) -> str:
        if isinstance(block, Heading):
            level = content_heading_level(block.level)
            return f"<h{level}>{self.inlines_html(block.inlines)}</h{level}>"

        if isinstance(block, Paragraph):
            if not block.inlines:
                return ""
            return f"<p>{self.inlines_html(block.inlines)}</p>"

        if isinstance(block, Blockquote):
            return f"<blockquote>{self.blocks_html(block.blocks)}</blockquote>"

        if isinstance(block, (BulletList, OrderedList)):
            items = "".join(f"<li>{self.blocks_html(item)}</li>" for item in block.items)
            if isinstance(block, BulletList):
                return f"<ul>{items}</ul>"
            start = block.start if block.start is not None else 1
            start_attr = f' start="{start}"' if start != 1 else ""
            return f"<ol{start_attr}>{items}</ol>"

        if isinstance(block, CodeBlock):
            cls = f' class="language-{escape(block.language)}"' if block.language else ""
            return f"<pre><code{cls}>{escape(block.text, quote=False)}</code></pre>"

        if isinstance(block, HorizontalRule):
            return "<hr/>"

        if isinstance(block, SceneBreak):
            return f'<p class="{SCENE_BREAK_CLASS}">* * *</p>'

        return ""

    def inlines_html(self, inlines: list[Inline]) -> str:
        parts: list[str] = []
        for inline in inlines:
            if isinstance(inline, HardBreak):
                parts.append("<br/>")
            elif isinstance(inline, Text) and inline.text:
                parts.append(self._text_html(inline))
        return "".join(parts)

    def _text_html(self, inline: Text) -> str:
        kinds = {mark.kind: mark for mark in inline.marks}
        html = escape(inline.text, quote=False)

        if MarkKind.CODE in kinds:
            html = f"<code>{html}</code>"

        linked = False
        entity = kinds.get(MarkKind.ENTITY)
        if entity is not None and self.options.preserve_entity_marks and entity.entity_id:
            entity_type = entity.entity_type or "character"
            attrs = (
                f'class="entity entity-{escape(entity_type)}" '
                f'data-entity-id="{escape(entity.entity_id)}" '
                f'data-entity-type="{escape(entity_type)}"'
            )
            if self.link_entities:
                href = f"{GLOSSARY_FILE}#{entity_anchor(entity.entity_id)}"
                html = f'<a href="{escape(href)}" {attrs}>{html}</a>'
                linked = True
            else:
                html = f"<span {attrs}>{html}</span>"

        link = kinds.get(MarkKind.LINK)
        if link is not None and not linked:
            html = f'<a href="{escape(link.href or "")}">{html}</a>'

        if MarkKind.STRIKE in kinds:
            html = f"<del>{html}</del>"
        if MarkKind.UNDERLINE in kinds:
            html = f"<u>{html}</u>"
        if MarkKind.ITALIC in kinds:
            html = f"<em>{html}</em>"
        if MarkKind.BOLD in kinds:
            html = f"<strong>{html}</strong>"
        return html
