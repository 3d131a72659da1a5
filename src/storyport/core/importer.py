"""Import orchestration: one file in, chapter and scene documents out.

Phases and the progress reported at their start:

    read           5 / 10
    parse          25
    structure      50
    convert        65
    entity-detect  80
    done           100

Cancellation is checked between phases and after each document is built.
A cancelled import returns a result with status ``cancelled`` and nothing
else; callers must not persist anything from it.
"""

import uuid
from pathlib import Path
from typing import Iterable, Optional, Union

from loguru import logger

from storyport.config import get_settings
from storyport.core.cancellation import CancellationToken
from storyport.core.editor_tree import blocks_to_editor_tree
from storyport.core.filenames import base_title_from_file_name
from storyport.core.models import (
    STORY_DOCUMENT_TYPES,
    Document,
    DocumentDraft,
    Entity,
    ImportMode,
    ImportOptions,
    ImportProgress,
    ImportResult,
    ImportSource,
    ImportStatus,
    ProgressCallback,
    utcnow,
)
from storyport.core.splitter import split_blocks_by_headings
from storyport.formats import FORMATS, detect_format, get_parser, resolve_format
from storyport.formats.base import decode_text
from storyport.formatting.ir import blocks_to_text, count_words


def import_story(
    source: Union[ImportSource, str, Path],
    options: Optional[ImportOptions] = None,
    existing_documents: Iterable[Document] = (),
    existing_entities: Iterable[Entity] = (),
    project_id: str = "",
    on_progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
    detector=None,
) -> ImportResult:
    """Import a manuscript file as chapter and scene documents.

    Args:
        source: File held in memory, or a path to read
        options: Import options; append with auto-detection when None
        existing_documents: Documents already in the project
        existing_entities: Entities already in the project, for matching
        project_id: Project the new documents belong to
        on_progress: Called at every phase boundary
        token: Cancellation token checked between phases
        detector: Object with a ``detect(text, existing_entities,
            entity_types)`` method; an LLM detector is used when None and
            an API key is configured

    Returns:
        New documents and entity upserts, or a cancelled result

    Raises:
        UnsupportedFormatError: The format is unknown or cannot be imported
        MalformedDocumentError: The file is structurally broken
    """
    options = options or ImportOptions()
    existing_documents = list(existing_documents)
    existing_entities = list(existing_entities)

    def progress(phase: str, percent: int, message: str) -> None:
        logger.debug(f"[{phase}] {percent}% {message}")
        if on_progress is not None:
            on_progress(ImportProgress(phase=phase, percent=percent, message=message))

    def cancelled() -> bool:
        if token is not None and token.cancelled:
            logger.info("Import cancelled")
            return True
        return False

    file_name = source.file_name if isinstance(source, ImportSource) else Path(source).name
    mime_type = source.mime_type if isinstance(source, ImportSource) else None

    # Unsupported formats fail before any I/O
    if options.format == "auto":
        format_id = detect_format(file_name, mime_type)
    else:
        format_id = resolve_format(options.format)
    parser = get_parser(format_id)

    if cancelled():
        return ImportResult(status=ImportStatus.CANCELLED)

    progress("read", 5, f"Reading {file_name}...")
    data = source.data if isinstance(source, ImportSource) else Path(source).read_bytes()
    progress("read", 10, f"Read {len(data)} bytes")
    if cancelled():
        return ImportResult(status=ImportStatus.CANCELLED)

    progress("parse", 25, f"Parsing {FORMATS[format_id].label}...")
    blocks = parser.parse(data if FORMATS[format_id].binary else decode_text(data))
    if cancelled():
        return ImportResult(status=ImportStatus.CANCELLED)

    progress("structure", 50, "Splitting into chapters and scenes...")
    drafts = split_blocks_by_headings(blocks, base_title_from_file_name(file_name))
    if cancelled():
        return ImportResult(status=ImportStatus.CANCELLED)

    progress("convert", 65, f"Creating {len(drafts)} documents...")
    offset = root_order_offset(existing_documents) if options.mode == ImportMode.APPEND else 0
    documents: list[Document] = []
    for draft in drafts:
        documents.append(draft_to_document(draft, project_id, offset))
        if cancelled():
            return ImportResult(status=ImportStatus.CANCELLED)

    result = ImportResult(status=ImportStatus.COMPLETED, documents=documents)

    api_key = options.api_key or get_settings().api_key
    if options.detect_entities and (api_key or detector is not None):
        progress("entity-detect", 80, "Detecting entities...")
        if detector is None:
            detector = _default_detector(options.api_key)
        try:
            created, updated = detect_entities_for_drafts(
                drafts, existing_entities, options.entity_types, project_id, detector, token
            )
        except Exception as e:
            if cancelled():
                return ImportResult(status=ImportStatus.CANCELLED)
            logger.warning(f"Entity detection failed, continuing without entities: {e}")
        else:
            result.entities_created = created
            result.entities_updated = updated
        if cancelled():
            return ImportResult(status=ImportStatus.CANCELLED)
    elif options.detect_entities:
        logger.warning("Entity detection requested but no API key is configured")

    progress("done", 100, f"Imported {len(documents)} documents")
    return result


def root_order_offset(documents: Iterable[Document]) -> int:
    """First free root ``order_index`` after the existing story documents."""
    indexes = [
        d.order_index
        for d in documents
        if d.parent_id is None and d.type in STORY_DOCUMENT_TYPES
    ]
    return max(indexes) + 1 if indexes else 0


def draft_to_document(draft: DocumentDraft, project_id: str, root_offset: int = 0) -> Document:
    order_index = draft.order_index + root_offset if draft.parent_id is None else draft.order_index
    now = utcnow()
    return Document(
        id=draft.id,
        project_id=project_id,
        title=draft.title,
        type=draft.type,
        parent_id=draft.parent_id,
        order_index=order_index,
        content=blocks_to_editor_tree(draft.blocks),
        word_count=count_words(blocks_to_text(draft.blocks)),
        created_at=now,
        updated_at=now,
    )


def _default_detector(api_key: Optional[str]):
    from storyport.llm import EntityDetector, LLMClient

    return EntityDetector(client=LLMClient(api_key=api_key))


def detect_entities_for_drafts(
    drafts: list[DocumentDraft],
    existing_entities: list[Entity],
    entity_types: list[str],
    project_id: str,
    detector,
    token=None,
) -> tuple[list[Entity], list[Entity]]:
    """Run one detection call over all drafts and turn results into upserts.

    Draft texts are joined with blank lines; the offset range of each draft
    maps every occurrence back to the document it came from. The token is
    handed to the detector so a cancelled import sends no further requests.

    Returns:
        (created, updated) entities
    """
    spans: list[tuple[str, int, int]] = []
    combined = ""
    for draft in drafts:
        start = len(combined)
        combined += blocks_to_text(draft.blocks) + "\n\n"
        spans.append((draft.id, start, len(combined) - 2))

    if not combined.strip():
        return [], []

    detection = detector.detect(combined, existing_entities, entity_types, token=token)

    existing_by_id = {e.id: e for e in existing_entities}
    updated: dict[str, Entity] = {}
    created: dict[tuple[str, str], Entity] = {}
    now_aliases: dict[str, list[str]] = {}

    for detected in detection.entities:
        mention_docs = {
            doc_id
            for occurrence in detected.occurrences
            for doc_id, start, end in spans
            if start <= occurrence.start_offset < end
        }
        logger.debug(f"Detected {detected.type} {detected.name!r} in {len(mention_docs)} documents")

        existing = existing_by_id.get(detected.matched_existing_id or "")
        if existing is not None:
            base = updated.get(existing.id, existing)
            aliases = now_aliases.setdefault(existing.id, list(base.aliases))
            candidates = list(detected.suggested_aliases)
            if detected.name != existing.name:
                candidates.append(detected.name)
            for alias in candidates:
                if alias and alias != existing.name and alias not in aliases:
                    aliases.append(alias)
            updated[existing.id] = Entity(
                id=existing.id,
                name=existing.name,
                type=existing.type,
                aliases=list(aliases),
                properties=dict(existing.properties),
                notes=existing.notes,
                project_id=existing.project_id,
            )
            continue

        key = (detected.type, detected.name.casefold())
        if key in created:
            entity = created[key]
            for alias in detected.suggested_aliases:
                if alias not in entity.aliases:
                    entity.aliases.append(alias)
            continue
        created[key] = Entity(
            id=str(uuid.uuid4()),
            name=detected.name,
            type=detected.type,
            aliases=list(dict.fromkeys(detected.suggested_aliases)),
            properties=dict(detected.inferred_properties),
            project_id=project_id or None,
        )

    logger.info(f"Entity detection: {len(created)} new, {len(updated)} updated")
    return list(created.values()), list(updated.values())
