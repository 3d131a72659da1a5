"""Heading-based splitting of an imported block stream.

Level-1 headings open chapters, level-2 headings open scenes inside the
current chapter, and everything else (including deeper headings) is
content for whichever draft is open. The splitter is written as a reducer:
``step`` folds one block into an immutable ``SplitState`` and ``finish``
flushes what is left.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional

from storyport.core.models import DocumentDraft
from storyport.formatting.ir import Block, Heading, inlines_to_text

IdFactory = Callable[[], str]


def _uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class SplitState:
    """Reducer state.

    Attributes:
        base_title: Title for implicit chapters (usually the file name)
        current_chapter_id: Chapter that new scenes attach to
        current_doc_id: Draft that receives flushed content
        pending: Content blocks not yet assigned to a draft
        chapter_index: Next chapter order index
        scene_index: Next scene order index inside the current chapter
        drafts: Drafts emitted so far, in order
    """

    base_title: str
    current_chapter_id: Optional[str] = None
    current_doc_id: Optional[str] = None
    pending: tuple[Block, ...] = ()
    chapter_index: int = 0
    scene_index: int = 0
    drafts: tuple[DocumentDraft, ...] = ()


def initial_state(base_title: str) -> SplitState:
    return SplitState(base_title=base_title)


def step(state: SplitState, block: Block, id_factory: IdFactory = _uuid) -> SplitState:
    """Fold one block into the state."""
    if not isinstance(block, Heading) or block.level > 2:
        return replace(state, pending=state.pending + (block,))

    title = inlines_to_text(block.inlines).strip()
    state = flush(state, id_factory)

    if block.level == 1:
        chapter = DocumentDraft(
            id=id_factory(),
            title=title or f"Chapter {state.chapter_index + 1}",
            type="chapter",
            order_index=state.chapter_index,
        )
        return replace(
            state,
            current_chapter_id=chapter.id,
            current_doc_id=chapter.id,
            chapter_index=state.chapter_index + 1,
            scene_index=0,
            drafts=state.drafts + (chapter,),
        )

    if state.current_chapter_id is None:
        chapter = DocumentDraft(
            id=id_factory(),
            title=state.base_title,
            type="chapter",
            order_index=state.chapter_index,
        )
        state = replace(
            state,
            current_chapter_id=chapter.id,
            chapter_index=state.chapter_index + 1,
            drafts=state.drafts + (chapter,),
        )

    scene = DocumentDraft(
        id=id_factory(),
        title=title or f"Scene {state.scene_index + 1}",
        type="scene",
        parent_id=state.current_chapter_id,
        order_index=state.scene_index,
    )
    return replace(
        state,
        current_doc_id=scene.id,
        scene_index=state.scene_index + 1,
        drafts=state.drafts + (scene,),
    )


def flush(state: SplitState, id_factory: IdFactory = _uuid) -> SplitState:
    """Move pending blocks into the open draft, opening a chapter if none."""
    if not state.pending:
        return state

    if state.current_doc_id is None:
        chapter = DocumentDraft(
            id=id_factory(),
            title=state.base_title,
            type="chapter",
            order_index=state.chapter_index,
            blocks=list(state.pending),
        )
        return replace(
            state,
            current_chapter_id=chapter.id,
            current_doc_id=chapter.id,
            chapter_index=state.chapter_index + 1,
            pending=(),
            drafts=state.drafts + (chapter,),
        )

    drafts = tuple(
        replace(draft, blocks=draft.blocks + list(state.pending))
        if draft.id == state.current_doc_id
        else draft
        for draft in state.drafts
    )
    return replace(state, pending=(), drafts=drafts)


def finish(state: SplitState, id_factory: IdFactory = _uuid) -> list[DocumentDraft]:
    """Flush remaining content and return the drafts."""
    state = flush(state, id_factory)
    if not state.drafts:
        return [
            DocumentDraft(
                id=id_factory(),
                title=state.base_title,
                type="chapter",
                order_index=0,
            )
        ]
    return list(state.drafts)


def split_blocks_by_headings(
    blocks: list[Block],
    base_title: str,
    id_factory: IdFactory = _uuid,
) -> list[DocumentDraft]:
    """Split a block stream into chapter and scene drafts.

    Args:
        blocks: Imported IR blocks in reading order
        base_title: Title for chapters that have no heading of their own
        id_factory: Produces draft ids

    Returns:
        Drafts in creation order; scenes always follow their chapter
    """
    state = initial_state(base_title)
    for block in blocks:
        state = step(state, block, id_factory)
    return finish(state, id_factory)
