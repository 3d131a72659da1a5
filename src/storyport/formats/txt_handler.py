"""Plain text file handler."""

import re
from typing import Union

from storyport.formats.base import FormatHandler, decode_text
from storyport.formatting.ir import Block, HardBreak, Heading, Inline, Paragraph, SceneBreak, Text

_BLANK_LINE = re.compile(r"\n[ \t]*\n")

_NUMBER_WORD = (
    r"(?:(?:twenty|thirty|forty|fifty)(?:[- ](?:one|two|three|four|five|six|seven|eight|nine))?"
    r"|eleven|twelve|thirteen|fourteen|fifteen|sixteen|seventeen|eighteen|nineteen|ten"
    r"|one|two|three|four|five|six|seven|eight|nine)"
)
# "Part One" and "Book II: Exile" are headings; "Part of me wanted to run." is not
_CHAPTER_PREFIX = re.compile(
    r"^(?:chapter|part|book|prologue|epilogue|interlude|act|afterword|foreword|introduction)"
    r"(?:\s+(?:\d+|(?-i:[IVXLCDM]+)|" + _NUMBER_WORD + r"))?"
    r"(?:[.:]?\s*$|\s*[:.]\s*\S|\s+[-\u2013\u2014]\s+\S)",
    re.IGNORECASE,
)
_ENUMERATOR = re.compile(r"^(?:[IVXLCDM]+|\d+)[.):]\s+\S")
_SCENE_SEPARATOR = re.compile(
    r"^(?:(?:\*\s*){3,}|(?:-\s*){3,}|(?:~\s*){3,}|#|scene\s+break\.?)$",
    re.IGNORECASE,
)

MAX_HEADING_LENGTH = 80
MAX_CAPS_HEADING_LENGTH = 60


class TXTHandler(FormatHandler):
    """Handler for plain text (.txt) files.

    Paragraphs are separated by blank lines. A one-line paragraph that
    looks like a chapter title becomes a heading, separator lines such as
    ``* * *`` become scene breaks, and single newlines inside a paragraph
    become hard breaks.
    """

    mime_type = "text/plain"

    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return (".txt", ".text")

    def parse(self, data: Union[bytes, str]) -> list[Block]:
        """Parse plain text into IR blocks."""
        text = decode_text(data) if isinstance(data, bytes) else data
        text = text.replace("\r\n", "\n").replace("\r", "\n")

        blocks: list[Block] = []
        for chunk in _BLANK_LINE.split(text):
            lines = [line.strip() for line in chunk.split("\n")]
            lines = [line for line in lines if line]
            if not lines:
                continue

            if len(lines) == 1:
                blocks.append(self._single_line_block(lines[0]))
                continue

            inlines: list[Inline] = []
            for i, line in enumerate(lines):
                if i:
                    inlines.append(HardBreak())
                inlines.append(Text(text=line))
            blocks.append(Paragraph(inlines=inlines))

        return blocks

    def _single_line_block(self, line: str) -> Block:
        if _SCENE_SEPARATOR.match(line):
            return SceneBreak()

        level = heading_level(line)
        if level is not None:
            return Heading(level=level, inlines=[Text(text=line)])
        return Paragraph(inlines=[Text(text=line)])


def heading_level(line: str):
    """Return the heading level a single line stands for, or None."""
    if len(line) > MAX_HEADING_LENGTH:
        return None

    if _CHAPTER_PREFIX.match(line):
        return 1

    letters = [c for c in line if c.isalpha()]
    if (
        len(letters) >= 2
        and len(line) <= MAX_CAPS_HEADING_LENGTH
        and all(c.isupper() for c in letters)
    ):
        return 2

    if _ENUMERATOR.match(line):
        return 2

    return None
