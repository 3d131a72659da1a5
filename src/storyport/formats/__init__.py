"""Document format handlers for storyport.

Handlers are looked up through ``FORMATS`` and imported on first use, so
python-docx, ebooklib and reportlab are only loaded when a DOCX, EPUB or
PDF file is actually involved.
"""

import importlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from storyport.formats.base import FormatHandler, UnsupportedFormatError


class FormatId(str, Enum):
    MARKDOWN = "markdown"
    DOCX = "docx"
    EPUB = "epub"
    PDF = "pdf"
    TEXT = "text"


@dataclass(frozen=True)
class FormatInfo:
    """Registry entry for one format.

    Attributes:
        id: Format id
        label: Human-readable name
        extensions: File extensions, preferred first
        mime_types: MIME types, preferred first
        binary: Input is read as bytes
        handler: ``module:Class`` path of the handler
        can_parse: Import is supported
        can_render: Export is supported
    """

    id: FormatId
    label: str
    extensions: tuple[str, ...]
    mime_types: tuple[str, ...]
    binary: bool
    handler: str
    can_parse: bool
    can_render: bool

    @property
    def mime_type(self) -> str:
        return self.mime_types[0]


FORMATS: dict[FormatId, FormatInfo] = {
    FormatId.MARKDOWN: FormatInfo(
        id=FormatId.MARKDOWN,
        label="Markdown",
        extensions=(".md", ".markdown", ".mdown", ".mkd"),
        mime_types=("text/markdown", "text/x-markdown"),
        binary=False,
        handler="storyport.formats.markdown_handler:MarkdownHandler",
        can_parse=True,
        can_render=True,
    ),
    FormatId.DOCX: FormatInfo(
        id=FormatId.DOCX,
        label="Word document",
        extensions=(".docx",),
        mime_types=("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
        binary=True,
        handler="storyport.formats.docx_handler:DOCXHandler",
        can_parse=True,
        can_render=True,
    ),
    FormatId.EPUB: FormatInfo(
        id=FormatId.EPUB,
        label="EPUB e-book",
        extensions=(".epub",),
        mime_types=("application/epub+zip",),
        binary=True,
        handler="storyport.formats.epub_handler:EPUBHandler",
        can_parse=True,
        can_render=True,
    ),
    FormatId.PDF: FormatInfo(
        id=FormatId.PDF,
        label="PDF",
        extensions=(".pdf",),
        mime_types=("application/pdf",),
        binary=True,
        handler="storyport.formats.pdf_handler:PDFHandler",
        can_parse=False,
        can_render=True,
    ),
    FormatId.TEXT: FormatInfo(
        id=FormatId.TEXT,
        label="Plain text",
        extensions=(".txt", ".text"),
        mime_types=("text/plain",),
        binary=False,
        handler="storyport.formats.txt_handler:TXTHandler",
        can_parse=True,
        can_render=False,
    ),
}

_ALIASES = {
    "md": FormatId.MARKDOWN,
    "txt": FormatId.TEXT,
    "plain": FormatId.TEXT,
}

SUPPORTED_EXTENSIONS = tuple(ext for info in FORMATS.values() for ext in info.extensions)

_handler_cache: dict[FormatId, type[FormatHandler]] = {}


def resolve_format(value: Union[str, FormatId]) -> FormatId:
    """Turn a format id or alias ("md", "txt") into a ``FormatId``."""
    if isinstance(value, FormatId):
        return value
    key = str(value).strip().lower().lstrip(".")
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return FormatId(key)
    except ValueError:
        raise UnsupportedFormatError(
            f"Unsupported format: {value}. "
            f"Supported formats: {', '.join(f.value for f in FormatId)}"
        ) from None


def get_handler(fmt: Union[str, FormatId]) -> type[FormatHandler]:
    """Get the handler class for a format, importing it on first use."""
    format_id = resolve_format(fmt)
    if format_id not in _handler_cache:
        module_name, class_name = FORMATS[format_id].handler.split(":")
        module = importlib.import_module(module_name)
        _handler_cache[format_id] = getattr(module, class_name)
    return _handler_cache[format_id]


def get_parser(fmt: Union[str, FormatId]) -> FormatHandler:
    format_id = resolve_format(fmt)
    if not FORMATS[format_id].can_parse:
        raise UnsupportedFormatError(f"Import from {format_id.value} is not supported")
    return get_handler(format_id)()


def get_renderer(fmt: Union[str, FormatId]) -> FormatHandler:
    format_id = resolve_format(fmt)
    if not FORMATS[format_id].can_render:
        raise UnsupportedFormatError(f"Export to {format_id.value} is not supported")
    return get_handler(format_id)()


def detect_format(file_name: str, mime_type: Optional[str] = None) -> FormatId:
    """Detect a format from the file extension, falling back to the MIME type.

    Raises:
        UnsupportedFormatError: Neither the extension nor the MIME type is known
    """
    name = file_name.lower()
    for info in FORMATS.values():
        if any(name.endswith(ext) for ext in info.extensions):
            return info.id

    if mime_type:
        essence = mime_type.split(";", 1)[0].strip().lower()
        for info in FORMATS.values():
            if essence in info.mime_types:
                return info.id

    raise UnsupportedFormatError(
        f"Cannot detect format of {file_name!r}"
        + (f" ({mime_type})" if mime_type else "")
        + f". Supported extensions: {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def requires_binary(fmt: Union[str, FormatId]) -> bool:
    return FORMATS[resolve_format(fmt)].binary


__all__ = [
    "FORMATS",
    "FormatHandler",
    "FormatId",
    "FormatInfo",
    "SUPPORTED_EXTENSIONS",
    "UnsupportedFormatError",
    "detect_format",
    "get_handler",
    "get_parser",
    "get_renderer",
    "requires_binary",
    "resolve_format",
]
