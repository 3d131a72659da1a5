"""Export orchestration: documents and entities in, one rendered file out."""

from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from loguru import logger

from storyport.core.editor_tree import editor_tree_to_blocks
from storyport.core.filenames import ensure_extension, sanitize_file_name
from storyport.core.glossary import build_glossary, collect_section_entity_ids
from storyport.core.models import Document, Entity, ExportOptions, ExportResult, Project
from storyport.core.story_tree import build_story_tree, flatten_story_tree
from storyport.formats import FORMATS, get_renderer, resolve_format
from storyport.formats.base import RenderRequest
from storyport.formatting.ir import Block, ExportSection, Heading, inlines_to_text

_UNSET = object()


def export_story(
    project: Project,
    documents: Iterable[Document],
    entities: Iterable[Entity],
    options: Optional[ExportOptions] = None,
    current_document_id: Optional[str] = None,
    current_editor_content: Any = _UNSET,
) -> ExportResult:
    """Render a project's chapters and scenes to one file.

    Args:
        project: Project being exported
        documents: All project documents, in any order
        entities: All project entities
        options: Export options; quick-export defaults when None
        current_document_id: Document open in the editor
        current_editor_content: Unsaved editor tree for that document; it
            replaces the stored content when given

    Returns:
        Rendered bytes with MIME type and file name

    Raises:
        UnsupportedFormatError: Unknown format or a format that cannot be
            rendered
        RenderError: The output library failed
    """
    options = options or ExportOptions()
    format_id = resolve_format(options.format)
    renderer = get_renderer(format_id)

    ordered = flatten_story_tree(build_story_tree(documents))
    if current_document_id is not None and current_editor_content is not _UNSET:
        ordered = [
            replace(doc, content=current_editor_content) if doc.id == current_document_id else doc
            for doc in ordered
        ]
    logger.debug(f"Exporting {len(ordered)} documents as {format_id.value}")

    sections = build_sections(ordered)

    glossary = []
    if options.glossary.include:
        referenced = collect_section_entity_ids(sections)
        glossary = build_glossary(
            entities,
            include_types=options.glossary.types,
            only_referenced=options.glossary.only_referenced,
            referenced_ids=referenced,
        )
        logger.debug(
            f"Glossary: {sum(len(s.entries) for s in glossary)} entries "
            f"from {len(referenced)} referenced ids"
        )

    request = RenderRequest(project=project, sections=sections, glossary=glossary, options=options)
    result = renderer.render(request)

    if options.file_name:
        extension = FORMATS[format_id].extensions[0]
        result = replace(
            result,
            file_name=ensure_extension(sanitize_file_name(options.file_name), extension),
        )

    logger.info(f"Exported {project.name!r} to {result.file_name} ({len(result.data)} bytes)")
    return result


def build_sections(documents: Iterable[Document]) -> list[ExportSection]:
    """Turn reading-order documents into export sections.

    Chapters are level 1 and every other type level 2. A heading at the
    very start of a document that repeats its title is folded into the
    title; an untitled document takes its title from such a heading.
    """
    sections: list[ExportSection] = []
    for doc in documents:
        blocks = editor_tree_to_blocks(doc.content)
        level = 1 if doc.type == "chapter" else 2
        title, blocks = _consume_title_heading(doc.title.strip(), blocks)
        if not title:
            title = default_title(doc.type, len(sections) + 1)
        sections.append(ExportSection(id=doc.id, title=title, level=level, blocks=blocks))
    return sections


def _consume_title_heading(title: str, blocks: list[Block]) -> tuple[str, list[Block]]:
    if not blocks:
        return title, blocks
    first = blocks[0]
    if not isinstance(first, Heading) or first.level > 2:
        return title, blocks
    heading_text = inlines_to_text(first.inlines).strip()
    if not title and heading_text:
        return heading_text, blocks[1:]
    if heading_text and heading_text.casefold() == title.casefold():
        return title, blocks[1:]
    return title, blocks


def default_title(doc_type: str, index: int) -> str:
    if doc_type == "chapter":
        return f"Chapter {index}"
    if doc_type == "scene":
        return f"Scene {index}"
    return f"Section {index}"


def write_export(result: ExportResult, directory: Union[str, Path]) -> Path:
    """Write an export result into a directory and return the file path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / result.file_name
    path.write_bytes(result.data)
    logger.debug(f"Wrote {path}")
    return path
