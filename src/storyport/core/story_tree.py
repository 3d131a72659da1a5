"""Rebuild the chapter/scene hierarchy from a flat document list."""

from collections import defaultdict
from typing import Iterable, Optional, Sequence

from storyport.core.models import STORY_DOCUMENT_TYPES, Document, StoryNode


def build_story_tree(
    documents: Iterable[Document],
    types: Sequence[str] = STORY_DOCUMENT_TYPES,
) -> list[StoryNode]:
    """Build the story tree from documents keyed by parent id.

    Only documents whose type is in ``types`` take part. Traversal starts
    from the documents without a parent, so a document whose parent is
    missing (and everything below it) is left out of the tree.

    Args:
        documents: Flat document list
        types: Document types to keep

    Returns:
        Root nodes sorted by order index
    """
    allowed = set(types)
    children_of: dict[Optional[str], list[Document]] = defaultdict(list)
    for doc in documents:
        if doc.type in allowed:
            children_of[doc.parent_id].append(doc)

    for siblings in children_of.values():
        siblings.sort(key=lambda d: d.order_index)

    visited: set[str] = set()

    def build(parent_id: Optional[str]) -> list[StoryNode]:
        nodes: list[StoryNode] = []
        for doc in children_of.get(parent_id, []):
            if doc.id in visited:
                continue
            visited.add(doc.id)
            nodes.append(StoryNode(doc=doc, children=build(doc.id)))
        return nodes

    return build(None)


def flatten_story_tree(nodes: Sequence[StoryNode]) -> list[Document]:
    """Pre-order traversal back to a flat reading-order list."""
    result: list[Document] = []
    for node in nodes:
        result.append(node.doc)
        result.extend(flatten_story_tree(node.children))
    return result


def nodes_at_depth(nodes: Sequence[StoryNode], depth: int) -> list[StoryNode]:
    """Return every node at ``depth`` (0 = roots), left to right."""
    if depth < 0:
        return []
    level = list(nodes)
    for _ in range(depth):
        level = [child for node in level for child in node.children]
    return level


def find_node(nodes: Sequence[StoryNode], doc_id: str) -> Optional[StoryNode]:
    for node in nodes:
        if node.doc.id == doc_id:
            return node
        found = find_node(node.children, doc_id)
        if found is not None:
            return found
    return None


def node_path(nodes: Sequence[StoryNode], doc_id: str) -> list[StoryNode]:
    """Return the nodes from a root down to ``doc_id``, or [] if absent."""
    for node in nodes:
        if node.doc.id == doc_id:
            return [node]
        below = node_path(node.children, doc_id)
        if below:
            return [node] + below
    return []
