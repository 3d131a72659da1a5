"""Conversion between editor trees and the IR.

The editor tree is the JSON the rich-text editor stores for a document:
nested ``{"type", "attrs", "content", "text", "marks"}`` dicts under a
``{"type": "doc"}`` root.
"""

from typing import Any, Optional

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

EditorNode = dict[str, Any]

SCENE_BREAK_AS_RULE = "horizontalRule"
SCENE_BREAK_IGNORE = "ignore"

_SIMPLE_MARKS = {
    "bold": MarkKind.BOLD,
    "italic": MarkKind.ITALIC,
    "strike": MarkKind.STRIKE,
    "code": MarkKind.CODE,
    "underline": MarkKind.UNDERLINE,
}


# =============================================================================
# Editor tree -> IR
# =============================================================================

def editor_tree_to_blocks(doc: Any) -> list[Block]:
    """Convert an editor tree to IR blocks.

    Args:
        doc: Editor tree root; anything other than a ``doc`` node yields []

    Returns:
        IR blocks in document order
    """
    if not isinstance(doc, dict) or doc.get("type") != "doc":
        return []
    return _convert_nodes(doc.get("content") or [])


def _convert_nodes(nodes: list[EditorNode]) -> list[Block]:
    blocks: list[Block] = []
    for node in nodes:
        if isinstance(node, dict):
            blocks.extend(_convert_node(node))
    return blocks


def _convert_node(node: EditorNode) -> list[Block]:
    node_type = node.get("type")
    attrs = node.get("attrs") or {}
    content = node.get("content") or []

    if node_type == "paragraph":
        return [Paragraph(inlines=_convert_inlines(content))]

    if node_type == "heading":
        return [Heading(level=_as_int(attrs.get("level"), 1), inlines=_convert_inlines(content))]

    if node_type == "blockquote":
        return [Blockquote(blocks=_convert_nodes(content))]

    if node_type == "bulletList":
        return [BulletList(items=_convert_list_items(content))]

    if node_type == "orderedList":
        return [
            OrderedList(
                items=_convert_list_items(content),
                start=_as_int(attrs.get("start"), 1),
            )
        ]

    if node_type == "listItem":
        return _convert_nodes(content)

    if node_type == "codeBlock":
        body = "".join(
            child.get("text", "")
            for child in content
            if isinstance(child, dict) and child.get("type") == "text"
        )
        return [CodeBlock(text=body, language=attrs.get("language") or None)]

    if node_type == "horizontalRule":
        return [HorizontalRule()]

    if node_type == "sceneBlock":
        scene_break = SceneBreak(
            scene_id=attrs.get("sceneId"),
            scene_name=attrs.get("sceneName"),
        )
        return [scene_break, *_convert_nodes(content)]

    if node_type in ("text", "hardBreak"):
        # Stray inline at block level
        inlines = _convert_inlines([node])
        return [Paragraph(inlines=inlines)] if inlines else []

    inlines = _convert_inlines(content)
    if inlines:
        logger.warning(f"Unknown editor node {node_type!r} converted to paragraph")
        return [Paragraph(inlines=inlines)]

    logger.warning(f"Dropping unknown editor node {node_type!r}")
    return []


def _convert_list_items(nodes: list[EditorNode]) -> list[list[Block]]:
    items: list[list[Block]] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        if node.get("type") == "listItem":
            items.append(_convert_nodes(node.get("content") or []))
        else:
            items.append(_convert_node(node))
    return items


def _convert_inlines(nodes: list[EditorNode]) -> list[Inline]:
    inlines: list[Inline] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        node_type = node.get("type")
        if node_type == "text":
            value = node.get("text") or ""
            if value:
                inlines.append(Text(text=value, marks=_convert_marks(node.get("marks") or [])))
        elif node_type == "hardBreak":
            inlines.append(HardBreak())
    return inlines


def _convert_marks(marks: list[dict[str, Any]]) -> list[Mark]:
    result: list[Mark] = []
    for mark in marks:
        if not isinstance(mark, dict):
            continue
        mark_type = mark.get("type")
        attrs = mark.get("attrs") or {}

        if mark_type in _SIMPLE_MARKS:
            result.append(Mark(_SIMPLE_MARKS[mark_type]))
        elif mark_type == "link":
            result.append(Mark(MarkKind.LINK, href=attrs.get("href") or ""))
        elif mark_type == "entity":
            entity_id = attrs.get("entityId")
            if not entity_id:
                logger.warning("Dropping entity mark without an entity id")
                continue
            result.append(
                Mark(
                    MarkKind.ENTITY,
                    entity_id=str(entity_id),
                    entity_type=attrs.get("entityType") or "character",
                )
            )
        else:
            logger.warning(f"Dropping unknown mark {mark_type!r}")
    return result


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# =============================================================================
# IR -> editor tree
# =============================================================================

def blocks_to_editor_tree(
    blocks: list[Block],
    ensure_non_empty: bool = True,
    scene_break: str = SCENE_BREAK_AS_RULE,
) -> EditorNode:
    """Convert IR blocks to an editor tree.

    Args:
        blocks: IR blocks
        ensure_non_empty: Add one empty paragraph when there is no content,
            since the editor cannot open a document without nodes
        scene_break: "horizontalRule" to keep scene breaks as rules,
            "ignore" to drop them

    Returns:
        Editor tree rooted at a ``doc`` node
    """
    if scene_break not in (SCENE_BREAK_AS_RULE, SCENE_BREAK_IGNORE):
        raise ValueError(f"Unknown scene break behaviour: {scene_break}")

    content = _blocks_to_nodes(blocks, scene_break)
    if not content and ensure_non_empty:
        content = [{"type": "paragraph"}]
    return {"type": "doc", "content": content}


def _blocks_to_nodes(blocks: list[Block], scene_break: str) -> list[EditorNode]:
    nodes: list[EditorNode] = []
    for block in blocks:
        node = _block_to_node(block, scene_break)
        if node is not None:
            nodes.append(node)
    return nodes


def _block_to_node(block: Block, scene_break: str) -> Optional[EditorNode]:
    if isinstance(block, Paragraph):
        return _with_inlines({"type": "paragraph"}, block.inlines)

    if isinstance(block, Heading):
        return _with_inlines({"type": "heading", "attrs": {"level": block.level}}, block.inlines)

    if isinstance(block, Blockquote):
        return {
            "type": "blockquote",
            "content": _blocks_to_nodes(block.blocks, scene_break) or [{"type": "paragraph"}],
        }

    if isinstance(block, BulletList):
        return {"type": "bulletList", "content": _list_items(block.items, scene_break)}

    if isinstance(block, OrderedList):
        node: EditorNode = {"type": "orderedList"}
        if block.start is not None:
            node["attrs"] = {"start": block.start}
        node["content"] = _list_items(block.items, scene_break)
        return node

    if isinstance(block, CodeBlock):
        node = {"type": "codeBlock", "attrs": {"language": block.language}}
        if block.text:
            node["content"] = [{"type": "text", "text": block.text}]
        return node

    if isinstance(block, HorizontalRule):
        return {"type": "horizontalRule"}

    if isinstance(block, SceneBreak):
        if scene_break == SCENE_BREAK_IGNORE:
            return None
        return {"type": "horizontalRule"}

    logger.warning(f"Skipping unsupported block {type(block).__name__}")
    return None


def _list_items(items: list[list[Block]], scene_break: str) -> list[EditorNode]:
    return [
        {
            "type": "listItem",
            "content": _blocks_to_nodes(item, scene_break) or [{"type": "paragraph"}],
        }
        for item in items
    ]


def _with_inlines(node: EditorNode, inlines: list[Inline]) -> EditorNode:
    content = [_inline_to_node(inline) for inline in inlines]
    content = [c for c in content if c is not None]
    if content:
        node["content"] = content
    return node


def _inline_to_node(inline: Inline) -> Optional[EditorNode]:
    if isinstance(inline, HardBreak):
        return {"type": "hardBreak"}
    if not inline.text:
        return None
    node: EditorNode = {"type": "text", "text": inline.text}
    if inline.marks:
        node["marks"] = [_mark_to_node(mark) for mark in inline.marks]
    return node


def _mark_to_node(mark: Mark) -> dict[str, Any]:
    if mark.kind == MarkKind.LINK:
        return {"type": "link", "attrs": {"href": mark.href or ""}}
    if mark.kind == MarkKind.ENTITY:
        return {
            "type": "entity",
            "attrs": {"entityId": mark.entity_id, "entityType": mark.entity_type or "character"},
        }
    return {"type": mark.kind.value}


# =============================================================================
# Helpers
# =============================================================================

def empty_editor_tree() -> EditorNode:
    return {"type": "doc", "content": [{"type": "paragraph"}]}


def is_editor_tree_empty(doc: Any) -> bool:
    """True when a tree has no nodes or only paragraphs without content."""
    if not isinstance(doc, dict):
        return True
    content = doc.get("content") or []
    return all(
        isinstance(node, dict) and node.get("type") == "paragraph" and not node.get("content")
        for node in content
    )
