"""Tests for the intermediate representation helpers."""

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
    blocks_to_text,
    bold,
    count_words,
    entity,
    get_entity_mark,
    has_mark,
    heading,
    inlines_to_text,
    iter_inlines,
    paragraph,
    text,
)


class TestConstructors:
    """Tests for block and inline constructors."""

    def test_paragraph_wraps_strings(self):
        """Plain strings become unmarked text runs."""
        para = paragraph("Hello ", text("world", bold()))

        assert para.inlines[0] == Text(text="Hello ")
        assert para.inlines[1].marks == [bold()]

    def test_heading_level_is_clamped(self):
        assert Heading(level=0).level == 1
        assert Heading(level=9).level == 6
        assert heading(3, "Title").level == 3

    def test_entity_mark_defaults_to_character(self):
        mark = entity("e1")
        assert mark.kind == MarkKind.ENTITY
        assert mark.entity_type == "character"


class TestMarkQueries:
    """Tests for mark lookups."""

    def test_has_mark(self):
        run = text("x", bold())
        assert has_mark(run, MarkKind.BOLD)
        assert not has_mark(run, MarkKind.ITALIC)
        assert not has_mark(HardBreak(), MarkKind.BOLD)

    def test_get_entity_mark(self):
        run = text("Elara", bold(), entity("e1"))
        assert get_entity_mark(run).entity_id == "e1"
        assert get_entity_mark(text("plain")) is None


class TestTextProjection:
    """Tests for plain-text projection and word counts."""

    def test_hard_break_becomes_newline(self):
        assert inlines_to_text([Text("a"), HardBreak(), Text("b")]) == "a\nb"

    def test_blocks_to_text_skips_visual_blocks(self):
        blocks = [
            paragraph("One."),
            HorizontalRule(),
            SceneBreak(),
            Blockquote(blocks=[paragraph("Two.")]),
            BulletList(items=[[paragraph("Three.")], [paragraph("Four.")]]),
            CodeBlock(text="five()"),
        ]

        assert blocks_to_text(blocks) == "One.\n\nTwo.\n\nThree.\n\nFour.\n\nfive()"

    def test_iter_inlines_walks_nested_blocks(self):
        blocks = [
            Blockquote(blocks=[paragraph("a")]),
            OrderedList(items=[[paragraph("b")]]),
            Paragraph(inlines=[Text("c")]),
        ]

        assert [i.text for i in iter_inlines(blocks)] == ["a", "b", "c"]

    def test_count_words(self):
        assert count_words("  The quick\n\nbrown fox ") == 4
        assert count_words("") == 0
