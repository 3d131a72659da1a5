"""Shared HTML to IR converter.

Markdown, DOCX and EPUB imports all produce HTML first and then come
through here, so there is exactly one place that decides how markup maps
onto blocks and marks.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction
from loguru import logger

from storyport.formatting.ir import (
    Block,
    Blockquote,
    BulletList,
    CodeBlock,
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
)

HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}

# Generic containers are walked through as if they were not there
CONTAINER_TAGS = {
    "html", "body", "div", "section", "article", "main", "header",
    "footer", "aside", "nav", "figure", "center",
}

# Block-level tags with no IR counterpart collapse to a paragraph
OTHER_BLOCK_TAGS = {
    "table", "thead", "tbody", "tfoot", "tr", "td", "th", "caption",
    "dl", "dt", "dd", "figcaption", "address", "details", "summary",
}

BLOCK_TAGS = (
    set(HEADING_TAGS)
    | CONTAINER_TAGS
    | OTHER_BLOCK_TAGS
    | {"p", "blockquote", "ul", "ol", "li", "pre", "hr"}
)

SKIP_TAGS = {
    "head", "title", "script", "style", "meta", "link", "img", "svg",
    "noscript", "template", "object", "video", "audio", "picture",
}

SIMPLE_MARK_TAGS = {
    "strong": MarkKind.BOLD,
    "b": MarkKind.BOLD,
    "em": MarkKind.ITALIC,
    "i": MarkKind.ITALIC,
    "del": MarkKind.STRIKE,
    "s": MarkKind.STRIKE,
    "strike": MarkKind.STRIKE,
    "code": MarkKind.CODE,
    "u": MarkKind.UNDERLINE,
}

_WHITESPACE = re.compile(r"\s+")
_LANGUAGE_CLASS = re.compile(r"^(?:language|lang)-(\S+)$")

# Class the EPUB writer puts on scene separators
SCENE_BREAK_CLASS = "scene-break"

_NON_CONTENT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


def html_to_blocks(html: str) -> list[Block]:
    """Convert an HTML fragment or document to IR blocks.

    Args:
        html: HTML markup (fragment, body content or full document)

    Returns:
        List of IR blocks in document order
    """
    soup = BeautifulSoup(html, "html.parser")
    root = soup.body or soup
    return convert_children(root)


def convert_children(parent: Tag) -> list[Block]:
    """Convert the children of an element into blocks.

    Consecutive inline content (text and inline tags) between block
    elements is gathered into a single paragraph.
    """
    blocks: list[Block] = []
    pending: list = []

    def flush() -> None:
        if pending:
            block = _inline_run_to_paragraph(pending)
            if block is not None:
                blocks.append(block)
            pending.clear()

    for node in parent.children:
        if isinstance(node, _NON_CONTENT_STRINGS):
            continue
        if isinstance(node, NavigableString):
            pending.append(node)
            continue
        if not isinstance(node, Tag):
            continue

        name = node.name.lower()
        if name in SKIP_TAGS:
            continue
        if name not in BLOCK_TAGS:
            pending.append(node)
            continue

        flush()
        blocks.extend(_convert_block(node, name))

    flush()
    return blocks


def _inline_run_to_paragraph(nodes: list) -> Optional[Paragraph]:
    inlines: list[Inline] = []
    for node in nodes:
        _collect_inlines(node, [], inlines)
    inlines = normalise_inlines(inlines)
    if any(isinstance(inline, Text) for inline in inlines):
        return Paragraph(inlines=inlines)
    # A stray <br> between blocks stands for an empty line
    if any(isinstance(node, Tag) and node.name.lower() == "br" for node in nodes):
        return Paragraph(inlines=[])
    return None


def _convert_block(el: Tag, name: str) -> list[Block]:
    if SCENE_BREAK_CLASS in (el.get("class") or []):
        return [SceneBreak()]

    if name in HEADING_TAGS:
        return [Heading(level=HEADING_TAGS[name], inlines=extract_inlines(el))]

    if name == "p":
        return [Paragraph(inlines=extract_inlines(el))]

    if name == "blockquote":
        return [Blockquote(blocks=convert_children(el))]

    if name == "ul":
        return [BulletList(items=_extract_list_items(el))]

    if name == "ol":
        return [OrderedList(items=_extract_list_items(el), start=_parse_start(el))]

    if name == "li":
        # Orphan list item outside ul/ol
        return _convert_list_item(el)

    if name == "pre":
        return [_convert_pre(el)]

    if name == "hr":
        return [HorizontalRule()]

    if name in CONTAINER_TAGS:
        return convert_children(el)

    inlines = extract_inlines(el)
    if inlines:
        return [Paragraph(inlines=inlines)]
    return []


def _parse_start(el: Tag) -> Optional[int]:
    start = el.get("start")
    if not start:
        return None
    try:
        return int(str(start).strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric list start: {start!r}")
        return None


def _convert_pre(el: Tag) -> CodeBlock:
    code_el = el.find("code")
    source = code_el if isinstance(code_el, Tag) else el
    body = source.get_text()
    if body.endswith("\n"):
        body = body[:-1]

    language = None
    for cls in source.get("class") or []:
        match = _LANGUAGE_CLASS.match(cls)
        if match:
            language = match.group(1)
            break
    return CodeBlock(text=body, language=language)


def _extract_list_items(list_el: Tag) -> list[list[Block]]:
    items: list[list[Block]] = []
    for child in list_el.find_all("li", recursive=False):
        items.append(_convert_list_item(child))
    return items


def _convert_list_item(li: Tag) -> list[Block]:
    has_block_children = any(
        isinstance(child, Tag) and child.name.lower() in BLOCK_TAGS
        for child in li.children
    )
    if has_block_children:
        return convert_children(li)

    inlines = extract_inlines(li)
    if inlines:
        return [Paragraph(inlines=inlines)]
    return []


# =============================================================================
# Inline extraction
# =============================================================================

def extract_inlines(el: Tag) -> list[Inline]:
    """Extract the inline content of an element with composed marks."""
    inlines: list[Inline] = []
    for child in el.children:
        _collect_inlines(child, [], inlines)
    return normalise_inlines(inlines)


def _collect_inlines(node, marks: list[Mark], out: list[Inline]) -> None:
    """Walk a node, pushing marks on the way down.

    Each terminal text node receives a copy of the mark stack that is
    active at its position, so nested tags compose in document order.
    """
    if isinstance(node, _NON_CONTENT_STRINGS):
        return
    if isinstance(node, NavigableString):
        value = str(node)
        if value:
            out.append(Text(text=value, marks=list(marks)))
        return
    if not isinstance(node, Tag):
        return

    name = node.name.lower()
    if name in SKIP_TAGS:
        return
    if name == "br":
        out.append(HardBreak())
        return

    mark = _mark_for_tag(node, name)
    child_marks = marks + [mark] if mark is not None else marks
    for child in node.children:
        _collect_inlines(child, child_marks, out)


def _mark_for_tag(el: Tag, name: str) -> Optional[Mark]:
    entity_id = el.get("data-entity-id")
    if entity_id and name in ("span", "a"):
        entity_type = el.get("data-entity-type") or "character"
        return Mark(MarkKind.ENTITY, entity_id=str(entity_id), entity_type=str(entity_type))

    if name in SIMPLE_MARK_TAGS:
        return Mark(SIMPLE_MARK_TAGS[name])

    if name == "a":
        href = el.get("href")
        if href is None:
            # Bare anchors (<a id="...">) carry no styling
            return None
        return Mark(MarkKind.LINK, href=str(href))

    return None


def normalise_inlines(inlines: list[Inline]) -> list[Inline]:
    """Collapse whitespace the way a browser lays out inline content.

    Runs of whitespace become a single space, whitespace is trimmed at the
    start and end of the block and around hard breaks, and text runs left
    empty are dropped.
    """
    result: list[Inline] = []
    for inline in inlines:
        if isinstance(inline, HardBreak):
            _rstrip_last(result)
            result.append(HardBreak())
            continue

        value = _WHITESPACE.sub(" ", inline.text)
        previous = result[-1] if result else None
        if previous is None or isinstance(previous, HardBreak):
            value = value.lstrip()
        elif previous.text.endswith(" ") and value.startswith(" "):
            value = value[1:]
        if value:
            result.append(Text(text=value, marks=list(inline.marks)))

    _rstrip_last(result)
    return result


def _rstrip_last(inlines: list[Inline]) -> None:
    if inlines and isinstance(inlines[-1], Text):
        stripped = inlines[-1].text.rstrip()
        if stripped:
            inlines[-1].text = stripped
        else:
            inlines.pop()
