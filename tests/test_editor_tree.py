"""Tests for editor tree <-> IR conversion."""

import pytest

from storyport.core.editor_tree import (
    blocks_to_editor_tree,
    editor_tree_to_blocks,
    empty_editor_tree,
    is_editor_tree_empty,
)
from storyport.formatting.ir import (
    Blockquote,
    BulletList,
    CodeBlock,
    HardBreak,
    Heading,
    HorizontalRule,
    MarkKind,
    OrderedList,
    Paragraph,
    SceneBreak,
    Text,
    bold,
    code,
    entity,
    italic,
    link,
    paragraph,
    strike,
    text,
    underline,
)


def mark_sets(blocks):
    """Project blocks to (kind, text, mark set) tuples for comparison."""
    result = []
    for block in blocks:
        if isinstance(block, (Paragraph, Heading)):
            runs = [
                (i.text, frozenset(i.marks)) if isinstance(i, Text) else ("<br>", frozenset())
                for i in block.inlines
            ]
            result.append((type(block).__name__, getattr(block, "level", None), tuple(runs)))
        elif isinstance(block, Blockquote):
            result.append(("Blockquote", tuple(mark_sets(block.blocks))))
        elif isinstance(block, (BulletList, OrderedList)):
            items = tuple(tuple(mark_sets(item)) for item in block.items)
            result.append((type(block).__name__, getattr(block, "start", None), items))
        else:
            result.append(block)
    return result


class TestEditorTreeToBlocks:
    """Tests for reading editor trees."""

    def test_basic_nodes(self):
        doc = {
            "type": "doc",
            "content": [
                {"type": "heading", "attrs": {"level": 2}, "content": [{"type": "text", "text": "Hi"}]},
                {
                    "type": "paragraph",
                    "content": [
                        {"type": "text", "text": "a", "marks": [{"type": "bold"}]},
                        {"type": "hardBreak"},
                        {"type": "text", "text": "b"},
                    ],
                },
                {"type": "horizontalRule"},
            ],
        }
        blocks = editor_tree_to_blocks(doc)

        assert blocks[0] == Heading(level=2, inlines=[Text(text="Hi")])
        assert blocks[1].inlines[0].marks == [bold()]
        assert isinstance(blocks[1].inlines[1], HardBreak)
        assert isinstance(blocks[2], HorizontalRule)

    def test_not_a_doc(self):
        assert editor_tree_to_blocks(None) == []
        assert editor_tree_to_blocks({"type": "paragraph"}) == []

    def test_ordered_list_start_defaults_to_one(self):
        doc = {
            "type": "doc",
            "content": [
                {
                    "type": "orderedList",
                    "content": [{"type": "listItem", "content": [{"type": "paragraph"}]}],
                }
            ],
        }
        assert editor_tree_to_blocks(doc)[0].start == 1

    def test_scene_block_becomes_break_then_content(self):
        doc = {
            "type": "doc",
            "content": [
                {
                    "type": "sceneBlock",
                    "attrs": {"sceneId": "s1", "sceneName": "Night"},
                    "content": [{"type": "paragraph", "content": [{"type": "text", "text": "x"}]}],
                }
            ],
        }
        blocks = editor_tree_to_blocks(doc)

        assert blocks[0] == SceneBreak(scene_id="s1", scene_name="Night")
        assert blocks[1].inlines[0].text == "x"

    def test_entity_mark(self):
        doc = {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [
                        {
                            "type": "text",
                            "text": "Vale",
                            "marks": [{"type": "entity", "attrs": {"entityId": "e1"}}],
                        }
                    ],
                }
            ],
        }
        mark = editor_tree_to_blocks(doc)[0].inlines[0].marks[0]

        assert mark.kind == MarkKind.ENTITY
        assert mark.entity_type == "character"

    def test_unknown_marks_and_blank_entities_are_dropped(self):
        doc = {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [
                        {
                            "type": "text",
                            "text": "x",
                            "marks": [
                                {"type": "highlight"},
                                {"type": "entity", "attrs": {}},
                                {"type": "italic"},
                            ],
                        }
                    ],
                }
            ],
        }
        assert editor_tree_to_blocks(doc)[0].inlines[0].marks == [italic()]

    def test_unknown_node_degrades(self):
        doc = {
            "type": "doc",
            "content": [
                {"type": "callout", "content": [{"type": "text", "text": "Note"}]},
                {"type": "image", "attrs": {"src": "x.png"}},
            ],
        }
        blocks = editor_tree_to_blocks(doc)

        assert blocks == [Paragraph(inlines=[Text(text="Note")])]


class TestBlocksToEditorTree:
    """Tests for writing editor trees."""

    def test_empty_input_gets_a_paragraph(self):
        assert blocks_to_editor_tree([]) == empty_editor_tree()
        assert blocks_to_editor_tree([], ensure_non_empty=False) == {"type": "doc", "content": []}

    def test_empty_paragraph_has_no_content_key(self):
        tree = blocks_to_editor_tree([Paragraph()])
        assert tree["content"][0] == {"type": "paragraph"}

    def test_scene_break_modes(self):
        blocks = [paragraph("a"), SceneBreak(), paragraph("b")]

        as_rule = blocks_to_editor_tree(blocks)
        ignored = blocks_to_editor_tree(blocks, scene_break="ignore")

        assert as_rule["content"][1] == {"type": "horizontalRule"}
        assert len(ignored["content"]) == 2

    def test_bad_scene_break_mode(self):
        with pytest.raises(ValueError):
            blocks_to_editor_tree([], scene_break="keep")

    def test_ordered_list_start_only_when_known(self):
        tree = blocks_to_editor_tree([OrderedList(items=[[paragraph("a")]])])
        assert "attrs" not in tree["content"][0]

    def test_is_editor_tree_empty(self):
        assert is_editor_tree_empty(empty_editor_tree())
        assert is_editor_tree_empty(None)
        assert not is_editor_tree_empty(blocks_to_editor_tree([paragraph("x")]))


class TestRoundTrip:
    """IR -> editor tree -> IR keeps structure, text and marks."""

    def test_round_trip(self):
        blocks = [
            Heading(level=3, inlines=[text("Section")]),
            paragraph(
                text("plain "),
                text("bold italic", bold(), italic()),
                HardBreak(),
                text("struck", strike()),
                text(" "),
                text("under", underline()),
                text("code", code()),
                text("site", link("https://example.com")),
                text("Elara", entity("e1", "character")),
            ),
            Blockquote(blocks=[paragraph("quoted")]),
            BulletList(items=[[paragraph("one")], [paragraph("two"), BulletList(items=[[paragraph("deep")]])]]),
            OrderedList(items=[[paragraph("first")]], start=4),
            CodeBlock(text="x = 1\ny = 2", language="python"),
            HorizontalRule(),
        ]

        again = editor_tree_to_blocks(blocks_to_editor_tree(blocks))

        assert mark_sets(again) == mark_sets(blocks)

    def test_mark_order_does_not_matter(self):
        a = editor_tree_to_blocks(blocks_to_editor_tree([paragraph(text("x", bold(), italic()))]))
        b = editor_tree_to_blocks(blocks_to_editor_tree([paragraph(text("x", italic(), bold()))]))

        assert mark_sets(a) == mark_sets(b)
