"""Tests for the shared HTML reader."""

from storyport.formatting.html import html_to_blocks
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
)


class TestBlocks:
    """Tests for block-level elements."""

    def test_headings_and_paragraphs(self):
        blocks = html_to_blocks("<h1>Title</h1><p>Body text.</p><h4>Minor</h4>")

        assert isinstance(blocks[0], Heading) and blocks[0].level == 1
        assert blocks[1] == Paragraph(inlines=[Text(text="Body text.")])
        assert blocks[2].level == 4

    def test_full_document_uses_body(self):
        html = "<html><head><title>Ignored</title></head><body><p>Kept</p></body></html>"
        blocks = html_to_blocks(html)

        assert len(blocks) == 1
        assert blocks[0].inlines[0].text == "Kept"

    def test_nested_lists(self):
        html = "<ul><li>One</li><li><p>Two</p><ol start=\"3\"><li>Three</li></ol></li></ul>"
        blocks = html_to_blocks(html)

        assert isinstance(blocks[0], BulletList)
        first, second = blocks[0].items
        assert first[0].inlines[0].text == "One"
        assert isinstance(second[1], OrderedList)
        assert second[1].start == 3

    def test_ordered_list_without_start(self):
        blocks = html_to_blocks("<ol><li>a</li></ol>")
        assert blocks[0].start is None

    def test_code_block_keeps_whitespace(self):
        html = '<pre><code class="language-python">def f():\n    return 1\n</code></pre>'
        block = html_to_blocks(html)[0]

        assert block == CodeBlock(text="def f():\n    return 1", language="python")

    def test_blockquote_and_rule(self):
        blocks = html_to_blocks("<blockquote><p>Quoted</p></blockquote><hr/>")

        assert isinstance(blocks[0], Blockquote)
        assert isinstance(blocks[1], HorizontalRule)

    def test_scene_break_class(self):
        blocks = html_to_blocks('<p>a</p><p class="scene-break">* * *</p><p>b</p>')
        assert isinstance(blocks[1], SceneBreak)

    def test_loose_inline_content_becomes_paragraph(self):
        blocks = html_to_blocks("<div>Loose <b>text</b><p>Para</p></div>")

        assert len(blocks) == 2
        assert [i.text for i in blocks[0].inlines] == ["Loose ", "text"]

    def test_scripts_are_skipped(self):
        blocks = html_to_blocks("<script>alert(1)</script><p>Safe</p>")
        assert len(blocks) == 1


class TestInlines:
    """Tests for inline marks and whitespace."""

    def test_nested_marks_compose(self):
        para = html_to_blocks("<p><strong>bold <em>both</em></strong></p>")[0]

        assert [m.kind for m in para.inlines[0].marks] == [MarkKind.BOLD]
        assert [m.kind for m in para.inlines[1].marks] == [MarkKind.BOLD, MarkKind.ITALIC]

    def test_link_and_entity(self):
        html = (
            '<p><a href="https://example.com">site</a> and '
            '<span data-entity-id="e1" data-entity-type="location">Vale</span></p>'
        )
        para = html_to_blocks(html)[0]

        assert para.inlines[0].marks[0].href == "https://example.com"
        entity = para.inlines[2].marks[0]
        assert entity.kind == MarkKind.ENTITY
        assert entity.entity_id == "e1"
        assert entity.entity_type == "location"

    def test_anchor_without_href_has_no_mark(self):
        para = html_to_blocks('<p><a id="x">plain</a></p>')[0]
        assert para.inlines[0].marks == []

    def test_whitespace_collapses(self):
        para = html_to_blocks("<p>  many   \n spaces  </p>")[0]
        assert para.inlines == [Text(text="many spaces")]

    def test_hard_breaks(self):
        para = html_to_blocks("<p>line one <br/> line two</p>")[0]

        assert para.inlines[0].text == "line one"
        assert isinstance(para.inlines[1], HardBreak)
        assert para.inlines[2].text == "line two"

    def test_strike_underline_code(self):
        para = html_to_blocks("<p><del>a</del><u>b</u><code>c</code></p>")[0]

        kinds = [i.marks[0].kind for i in para.inlines]
        assert kinds == [MarkKind.STRIKE, MarkKind.UNDERLINE, MarkKind.CODE]
