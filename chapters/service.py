"""Chapter operations spanning the tree, the store and the revision chains.

ChapterService is the entry point for collaborators. Each mutation runs
under the novel's write lock and inside a single database transaction, so a
failure leaves neither half-rewritten sort keys nor content that disagrees
with its revision chain.
"""

import logging
from typing import Iterable, Optional

from chapters.callbacks import NovelWordCountAggregator, WordCountCallback
from chapters.locks import locks_for_database
from chapters.store import ChapterStore
from chapters.tree import ChapterTree
from chapters.versions import RevisionComparison, VersionChain, VersionPatterns
from config.exceptions import (
    ConstraintViolationError,
    CycleDetectedError,
    KeySpaceExhausted,
    QuillStoreError,
)
from config.settings import Settings, get_settings
from models.chapter import Chapter, Revision, RevisionInfo
from models.database import Database
from models.enums import ChapterKind
from tools.path_codec import PathCodec
from tools.text_utils import count_words

logger = logging.getLogger(__name__)


class ChapterService:
    """Create, edit, move and delete chapters of a novel."""

    def __init__(
        self,
        db: Database,
        settings: Optional[Settings] = None,
        callbacks: Optional[Iterable[WordCountCallback]] = None,
    ):
        settings = settings or get_settings()
        self.db = db
        self.codec = PathCodec(settings.max_segment_length)
        self.store = ChapterStore(db, self.codec)
        self.versions = VersionChain(db, settings)
        self.locks = locks_for_database(db.db_path)
        self.callbacks = list(callbacks) if callbacks is not None else [NovelWordCountAggregator(db)]

    # ---- Structure ----

    def create(
        self,
        novel_id: int,
        title: str,
        parent_id: Optional[int] = None,
        kind: ChapterKind = ChapterKind.CHAPTER,
    ) -> Chapter:
        """Append an empty chapter after the last child of ``parent_id``."""
        with self.locks.write(novel_id), self.db.transaction():
            self.db.require_novel(novel_id)
            if parent_id is not None and self.store.get(parent_id).novel_id != novel_id:
                raise ConstraintViolationError(
                    "Parent chapter belongs to a different novel",
                    {"parent_id": parent_id, "novel_id": novel_id},
                )
            key = self._position_key(novel_id, parent_id, append=True)
            chapter = self.store.insert(Chapter(
                novel_id=novel_id, parent_id=parent_id, title=title,
                content="", sort_path=key, word_count=0, kind=kind,
            ))
            self.versions.append(chapter.id, "", "Chapter created", False)
        logger.info("Created %s %d '%s' in novel %d", kind.value, chapter.id, title, novel_id)
        return chapter

    def move(
        self,
        chapter_id: int,
        new_parent_id: Optional[int],
        after_sibling_id: Optional[int] = None,
    ) -> ChapterTree:
        """Reparent and/or reorder a chapter with its subtree.

        The chapter is placed right after ``after_sibling_id``, or first among
        the new siblings when it is None. Returns the rebuilt tree.
        """
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            with self.db.transaction():
                if new_parent_id is not None:
                    parent = self.store.get(new_parent_id)
                    if parent.novel_id != novel_id:
                        raise ConstraintViolationError(
                            "Parent chapter belongs to a different novel",
                            {"parent_id": new_parent_id, "novel_id": novel_id},
                        )
                    tree = ChapterTree.build(self.store.list_by_novel(novel_id, include_archived=True))
                    if tree.would_create_cycle(chapter_id, new_parent_id):
                        logger.warning(
                            "Move rejected: chapter %d cannot go under %d", chapter_id, new_parent_id
                        )
                        raise CycleDetectedError(chapter_id, new_parent_id)
                if after_sibling_id == chapter_id:
                    raise ConstraintViolationError(
                        "A chapter cannot be placed after itself", {"chapter_id": chapter_id}
                    )
                key = self._position_key(novel_id, new_parent_id, after_sibling_id, exclude_id=chapter_id)
                self.store.update_position(chapter_id, new_parent_id, key)
            return self.tree(novel_id)

    def delete(self, chapter_id: int) -> list[int]:
        """Hard-delete a chapter, its descendants and all their revisions."""
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            deleted = self.store.delete_subtree(chapter_id)
        self._notify(novel_id)
        return deleted

    def archive(self, chapter_id: int) -> list[int]:
        return self._set_archived(chapter_id, True)

    def unarchive(self, chapter_id: int) -> list[int]:
        return self._set_archived(chapter_id, False)

    def _set_archived(self, chapter_id: int, archived: bool) -> list[int]:
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            ids = self.store.set_archived(chapter_id, archived)
        self._notify(novel_id)
        return ids

    def rename(self, chapter_id: int, title: str) -> Chapter:
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            self.store.update_title(chapter_id, title)
            return self.store.get(chapter_id)

    def set_kind(self, chapter_id: int, kind: ChapterKind) -> Chapter:
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            self.store.update_kind(chapter_id, kind)
            return self.store.get(chapter_id)

    def renormalize(self, novel_id: int) -> int:
        """Compact every sort key of a novel; order and nesting are unchanged."""
        with self.locks.write(novel_id):
            return self.store.renormalize(novel_id)

    def _position_key(
        self,
        novel_id: int,
        parent_id: Optional[int],
        after_id: Optional[int] = None,
        exclude_id: Optional[int] = None,
        append: bool = False,
    ) -> str:
        """Key for a new position among the children of ``parent_id``.

        Renumbers the sibling group once if the gap is too narrow.
        """
        for attempt in range(2):
            parent_key = self.store.get(parent_id).sort_path if parent_id is not None else None
            siblings = [c for c in self.store.children(novel_id, parent_id) if c.id != exclude_id]
            if append:
                index = len(siblings)
            elif after_id is None:
                index = 0
            else:
                ids = [c.id for c in siblings]
                if after_id not in ids:
                    raise ConstraintViolationError(
                        "Sibling to insert after is not a child of the target parent",
                        {"after_sibling_id": after_id, "parent_id": parent_id},
                    )
                index = ids.index(after_id) + 1
            after = siblings[index - 1].sort_path if index > 0 else None
            before = siblings[index].sort_path if index < len(siblings) else None
            try:
                return self.codec.next_sibling_key(parent_key, after, before)
            except KeySpaceExhausted:
                if attempt:
                    raise
                logger.info("Sort key space exhausted under parent=%s; renumbering siblings", parent_id)
                self.store.rebalance_children(novel_id, parent_id)

    # ---- Content ----

    def edit(
        self,
        chapter_id: int,
        new_content: str,
        message: str = "",
        is_auto_save: bool = False,
        title: Optional[str] = None,
    ) -> Revision:
        """Store new chapter text and record it as the chain head.

        Every call appends a revision, auto-saves of unchanged text included.
        """
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            with self.db.transaction():
                chapter = self.store.get(chapter_id)
                if title is not None and title != chapter.title:
                    self.store.update_title(chapter_id, title)
                revision = self.versions.append(chapter_id, new_content, message, is_auto_save)
                self.store.update_content(chapter_id, new_content, count_words(new_content))
        logger.info(
            "Chapter %d saved as revision %d (%s, %d words)",
            chapter_id, revision.id, revision.version_type.value, revision.word_count,
        )
        self._notify(novel_id)
        return revision

    def restore(self, chapter_id: int, revision_id: int, message: str = "") -> Revision:
        """Make an older revision's text current again by appending it."""
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.write(novel_id):
            with self.db.transaction():
                revision = self.versions.restore(chapter_id, revision_id, message)
                text = self.versions.reconstruct(revision.id)
                self.store.update_content(chapter_id, text, revision.word_count)
        self._notify(novel_id)
        return revision

    # ---- Reads ----

    def get(self, chapter_id: int) -> Chapter:
        return self.store.get(chapter_id)

    def tree(self, novel_id: int, include_archived: bool = False) -> ChapterTree:
        with self.locks.read(novel_id):
            return ChapterTree.build(self.store.list_by_novel(novel_id, include_archived))

    def history(self, chapter_id: int) -> list[RevisionInfo]:
        novel_id = self.store.get(chapter_id).novel_id
        with self.locks.read(novel_id):
            return self.versions.history(chapter_id)

    def reconstruct(self, revision_id: int) -> str:
        return self.versions.reconstruct(revision_id)

    def compare_revisions(self, older_id: int, newer_id: int) -> RevisionComparison:
        return self.versions.compare(older_id, newer_id)

    def version_patterns(self, chapter_id: int) -> VersionPatterns:
        self.store.get(chapter_id)
        return self.versions.analyze_patterns(chapter_id)

    def linked_inspirations(self, chapter_id: int) -> list[int]:
        self.store.get(chapter_id)
        return self.store.linked_inspiration_ids(chapter_id)

    def _notify(self, novel_id: int):
        # Runs after commit: a failing callback leaves the change in place
        # and the novel total stale until the next successful notification.
        for callback in self.callbacks:
            try:
                callback.on_word_count_changed(novel_id)
            except QuillStoreError as e:
                logger.error(
                    "Word count callback %s failed for novel %d; novel total is stale: %s",
                    type(callback).__name__, novel_id, e,
                )
