"""Project bundles: one JSON file holding a project, its documents and entities.

A bundle stands in for the document and entity stores. The CLI loads one,
exports from it, and writes import results back into it.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from storyport.core.models import (
    STORY_DOCUMENT_TYPES,
    Document,
    Entity,
    ImportMode,
    ImportResult,
    Project,
)
from storyport.formats.base import StoryportError


class BundleError(StoryportError):
    """A bundle file is missing or does not hold a valid project."""

    pass


@dataclass
class StoryBundle:
    project: Project
    documents: list[Document] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)


_adapter = TypeAdapter(StoryBundle)


def load_bundle(path: Union[str, Path]) -> StoryBundle:
    """Read a bundle from a JSON file.

    Raises:
        BundleError: The file does not exist or is not a valid bundle
    """
    path = Path(path)
    if not path.exists():
        raise BundleError(f"Bundle not found: {path}")
    try:
        bundle = _adapter.validate_json(path.read_bytes())
    except ValidationError as e:
        raise BundleError(f"Invalid bundle {path}: {e}") from e
    logger.debug(
        f"Loaded {path}: {len(bundle.documents)} documents, {len(bundle.entities)} entities"
    )
    return bundle


def save_bundle(bundle: StoryBundle, path: Union[str, Path]) -> Path:
    """Write a bundle as indented JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_adapter.dump_json(bundle, indent=2))
    logger.debug(f"Saved {path}")
    return path


def apply_import(bundle: StoryBundle, result: ImportResult, mode: ImportMode) -> StoryBundle:
    """Persist an import result into a bundle.

    Replace mode drops the existing chapters and scenes first; other
    documents are kept either way. New documents are added parents first.
    Entity upserts replace entities with the same id and add the rest.

    Raises:
        ValueError: The import was cancelled
    """
    if result.cancelled:
        raise ValueError("Cannot apply a cancelled import")

    documents = list(bundle.documents)
    if mode == ImportMode.REPLACE:
        documents = [d for d in documents if d.type not in STORY_DOCUMENT_TYPES]
    documents.extend(parents_first(result.documents))

    entities = {e.id: e for e in bundle.entities}
    replaced = 0
    for entity in result.entities_updated:
        if entity.id in entities:
            replaced += 1
        entities[entity.id] = entity
    for entity in result.entities_created:
        entities[entity.id] = entity

    logger.info(
        f"Applied import: {len(result.documents)} documents, "
        f"{len(result.entities_created)} new entities, {replaced} updated"
    )
    return StoryBundle(project=bundle.project, documents=documents, entities=list(entities.values()))


def parents_first(documents: list[Document]) -> list[Document]:
    """Order documents so that every parent precedes its children."""
    ids = {d.id for d in documents}
    placed: set[str] = set()
    ordered: list[Document] = []
    pending = list(documents)
    while pending:
        remaining = []
        for doc in pending:
            if doc.parent_id is None or doc.parent_id not in ids or doc.parent_id in placed:
                ordered.append(doc)
                placed.add(doc.id)
            else:
                remaining.append(doc)
        if len(remaining) == len(pending):
            # Parent cycle; keep the rest in their given order
            ordered.extend(remaining)
            break
        pending = remaining
    return ordered


def new_bundle(project_id: str, name: str, description: str = "") -> StoryBundle:
    """Empty bundle for a new project."""
    return StoryBundle(project=Project(id=project_id, name=name, description=description or None))
