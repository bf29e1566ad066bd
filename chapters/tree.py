"""In-memory chapter hierarchy materialized from key-ordered records."""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from config.exceptions import ConstraintViolationError, NotFoundError
from models.chapter import Chapter
from tools.path_codec import PathCodec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeNode:
    chapter: Chapter
    children: tuple[int, ...]
    depth: int


class ChapterTree:
    """Immutable arena of chapter nodes keyed by chapter id.

    Relationships are id lookups; nodes never hold references to each other.
    Rebuild the tree after any structural change.
    """

    def __init__(self, nodes: dict[int, TreeNode], roots: tuple[int, ...]):
        self._nodes = nodes
        self._roots = roots

    @classmethod
    def build(cls, chapters: Iterable[Chapter]) -> "ChapterTree":
        """Build the tree from chapters ordered by sort key, in one pass.

        The stack holds the ancestors of the current position. A chapter pops
        the stack until the top is one of its ancestors; that top must then
        be its direct parent.
        """
        children: dict[int, list[int]] = {}
        depths: dict[int, int] = {}
        by_id: dict[int, Chapter] = {}
        roots: list[int] = []
        stack: list[Chapter] = []
        previous_key: Optional[str] = None

        for chapter in chapters:
            key = chapter.sort_path
            if previous_key is not None and key <= previous_key:
                raise ConstraintViolationError(
                    "Chapters are not in strict sort-key order",
                    {"chapter_id": chapter.id, "sort_path": key, "previous": previous_key},
                )
            previous_key = key

            while stack and not PathCodec.is_descendant(key, stack[-1].sort_path):
                stack.pop()

            depth = PathCodec.depth(key)
            if stack:
                parent = stack[-1]
                if depths[parent.id] + 1 != depth or chapter.parent_id != parent.id:
                    raise ConstraintViolationError(
                        "Chapter is not a direct child of its key ancestor",
                        {"chapter_id": chapter.id, "parent_id": chapter.parent_id, "ancestor_id": parent.id},
                    )
                children[parent.id].append(chapter.id)
            else:
                if depth != 0 or chapter.parent_id is not None:
                    raise ConstraintViolationError(
                        "Chapter's parent is missing from the tree",
                        {"chapter_id": chapter.id, "parent_id": chapter.parent_id},
                    )
                roots.append(chapter.id)

            by_id[chapter.id] = chapter
            depths[chapter.id] = depth
            children[chapter.id] = []
            stack.append(chapter)

        nodes = {
            cid: TreeNode(chapter=by_id[cid], children=tuple(children[cid]), depth=depths[cid])
            for cid in by_id
        }
        logger.debug("Built chapter tree: %d nodes, %d roots", len(nodes), len(roots))
        return cls(nodes, tuple(roots))

    # ---- Lookups ----

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, chapter_id) -> bool:
        return chapter_id in self._nodes

    @property
    def roots(self) -> tuple[int, ...]:
        return self._roots

    def _node(self, chapter_id: int) -> TreeNode:
        try:
            return self._nodes[chapter_id]
        except KeyError:
            raise NotFoundError("Chapter", chapter_id) from None

    def get(self, chapter_id: int) -> Chapter:
        return self._node(chapter_id).chapter

    def children_of(self, chapter_id: Optional[int]) -> tuple[int, ...]:
        """Ordered child ids; None gives the root ids."""
        if chapter_id is None:
            return self._roots
        return self._node(chapter_id).children

    def depth_of(self, chapter_id: int) -> int:
        return self._node(chapter_id).depth

    def ancestors_of(self, chapter_id: int) -> list[int]:
        """Ancestor ids ordered from the root down to the direct parent."""
        ancestors = []
        parent_id = self._node(chapter_id).chapter.parent_id
        while parent_id is not None:
            ancestors.append(parent_id)
            parent_id = self._node(parent_id).chapter.parent_id
        ancestors.reverse()
        return ancestors

    def subtree_ids(self, chapter_id: int) -> list[int]:
        """``chapter_id`` and its descendants in display order."""
        result = []
        pending = [chapter_id]
        while pending:
            current = pending.pop()
            result.append(current)
            pending.extend(reversed(self._node(current).children))
        return result

    def would_create_cycle(self, moving_id: int, new_parent_id: Optional[int]) -> bool:
        """True if placing ``moving_id`` under ``new_parent_id`` makes a loop."""
        current = new_parent_id
        while current is not None:
            if current == moving_id:
                return True
            node = self._nodes.get(current)
            current = node.chapter.parent_id if node else None
        return False

    def flatten(self) -> list[tuple[Chapter, int]]:
        """(chapter, depth) pairs in display order, for rendering."""
        result = []
        pending = list(reversed(self._roots))
        while pending:
            node = self._nodes[pending.pop()]
            result.append((node.chapter, node.depth))
            pending.extend(reversed(node.children))
        return result
