"""Durable chapter records ordered by path-enumeration sort keys."""

import logging
from typing import Optional

from config.exceptions import (
    ConstraintViolationError,
    CycleDetectedError,
    NotFoundError,
)
from models.chapter import Chapter
from models.database import Database, now, parse_timestamp
from models.enums import ChapterKind
from tools.path_codec import PathCodec

logger = logging.getLogger(__name__)

_CHAPTER_COLUMNS = (
    "id, novel_id, parent_id, title, content, sort_path, word_count, "
    "kind, archived, created_at, updated_at"
)


def row_to_chapter(row) -> Chapter:
    return Chapter(
        id=row["id"], novel_id=row["novel_id"], parent_id=row["parent_id"],
        title=row["title"], content=row["content"], sort_path=row["sort_path"],
        word_count=row["word_count"], kind=ChapterKind(row["kind"]),
        archived=bool(row["archived"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class ChapterStore:
    """SQLite-backed chapter table.

    Every method runs in a transaction of its own, or joins the caller's
    transaction when one is open on the current thread.
    """

    def __init__(self, db: Database, codec: Optional[PathCodec] = None):
        self.db = db
        self.codec = codec or PathCodec()

    # ---- Reads ----

    def get(self, chapter_id: int) -> Chapter:
        with self.db.transaction(write=False) as conn:
            row = conn.execute(
                f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE id = ?", (chapter_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("Chapter", chapter_id)
        return row_to_chapter(row)

    def list_by_novel(self, novel_id: int, include_archived: bool = False) -> list[Chapter]:
        """All chapters of a novel in sort-key order (pre-order of the tree)."""
        sql = f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE novel_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(sql + " ORDER BY sort_path", (novel_id,)).fetchall()
        return [row_to_chapter(r) for r in rows]

    def children(self, novel_id: int, parent_id: Optional[int], include_archived: bool = True) -> list[Chapter]:
        """Direct children of ``parent_id`` (roots for None), in sibling order.

        Archived siblings still own their keys, so key generation must see them.
        """
        sql = f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE novel_id = ? AND parent_id IS ?"
        if not include_archived:
            sql += " AND archived = 0"
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(sql + " ORDER BY sort_path", (novel_id, parent_id)).fetchall()
        return [row_to_chapter(r) for r in rows]

    def subtree(self, chapter_id: int) -> list[Chapter]:
        """``chapter_id`` followed by all its descendants, in sort-key order."""
        root = self.get(chapter_id)
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(
                f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE novel_id = ? "
                "AND (id = ? OR substr(sort_path, 1, ?) = ?) ORDER BY sort_path",
                (root.novel_id, root.id, len(root.sort_path) + 1, root.sort_path + "."),
            ).fetchall()
        return [row_to_chapter(r) for r in rows]

    def linked_inspiration_ids(self, chapter_id: int) -> list[int]:
        """Inspirations linked to a chapter; the link table is owned elsewhere."""
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(
                "SELECT inspiration_id FROM inspiration_chapter_links "
                "WHERE chapter_id = ? ORDER BY inspiration_id",
                (chapter_id,),
            ).fetchall()
        return [r["inspiration_id"] for r in rows]

    # ---- Writes ----

    def insert(self, chapter: Chapter) -> Chapter:
        """Persist a new chapter and return it with its id and timestamps set."""
        if not chapter.title.strip():
            raise ConstraintViolationError("Chapter title must not be empty")
        self.codec.validate(chapter.sort_path)

        with self.db.transaction() as conn:
            novel = conn.execute("SELECT id FROM novels WHERE id = ?", (chapter.novel_id,)).fetchone()
            if not novel:
                raise NotFoundError("Novel", chapter.novel_id)

            parent_key = None
            if chapter.parent_id is not None:
                parent = self.get(chapter.parent_id)
                if parent.novel_id != chapter.novel_id:
                    raise ConstraintViolationError(
                        "Parent chapter belongs to a different novel",
                        {"parent_id": parent.id, "novel_id": chapter.novel_id},
                    )
                if parent.archived and not chapter.archived:
                    raise ConstraintViolationError(
                        "Cannot add a chapter under an archived parent", {"parent_id": parent.id}
                    )
                parent_key = parent.sort_path
            if not self.codec.is_child(chapter.sort_path, parent_key):
                raise ConstraintViolationError(
                    "Sort key does not extend the parent key",
                    {"sort_path": chapter.sort_path, "parent_key": parent_key},
                )
            self._ensure_key_free(conn, chapter.novel_id, chapter.sort_path)

            stamp = now()
            cursor = conn.execute(
                "INSERT INTO chapters (novel_id, parent_id, title, content, sort_path, "
                "word_count, kind, archived, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (chapter.novel_id, chapter.parent_id, chapter.title, chapter.content,
                 chapter.sort_path, chapter.word_count, chapter.kind.value,
                 chapter.archived, stamp.isoformat(), stamp.isoformat()),
            )
            chapter.id = cursor.lastrowid
            chapter.created_at = chapter.updated_at = stamp
        logger.debug("Inserted chapter %d at %s", chapter.id, chapter.sort_path)
        return chapter

    def update_position(self, chapter_id: int, new_parent_id: Optional[int], new_key: str):
        """Give ``chapter_id`` a new parent and key, rebasing its whole subtree."""
        self.codec.validate(new_key)
        with self.db.transaction() as conn:
            chapter = self.get(chapter_id)
            parent_key = None
            if new_parent_id is not None:
                if new_parent_id == chapter_id:
                    raise CycleDetectedError(chapter_id, new_parent_id)
                parent = self.get(new_parent_id)
                if parent.novel_id != chapter.novel_id:
                    raise ConstraintViolationError(
                        "Parent chapter belongs to a different novel",
                        {"parent_id": parent.id, "novel_id": chapter.novel_id},
                    )
                if self.codec.is_descendant(parent.sort_path, chapter.sort_path):
                    raise CycleDetectedError(chapter_id, new_parent_id)
                if parent.archived and not chapter.archived:
                    raise ConstraintViolationError(
                        "Cannot move a chapter under an archived parent", {"parent_id": parent.id}
                    )
                parent_key = parent.sort_path
            if not self.codec.is_child(new_key, parent_key):
                raise ConstraintViolationError(
                    "Sort key does not extend the parent key",
                    {"sort_path": new_key, "parent_key": parent_key},
                )
            old_key = chapter.sort_path
            if new_key != old_key:
                self._ensure_key_free(conn, chapter.novel_id, new_key)

            stamp = now().isoformat()
            conn.execute(
                "UPDATE chapters SET parent_id = ?, sort_path = ?, updated_at = ? WHERE id = ?",
                (new_parent_id, new_key, stamp, chapter_id),
            )
            moved = self._rebase_descendants(conn, chapter.novel_id, old_key, new_key)
        logger.info(
            "Moved chapter %d: %s -> %s (parent=%s, %d descendants rebased)",
            chapter_id, old_key, new_key, new_parent_id, moved,
        )

    @staticmethod
    def _ensure_key_free(conn, novel_id: int, key: str):
        taken = conn.execute(
            "SELECT id FROM chapters WHERE novel_id = ? AND sort_path = ?", (novel_id, key)
        ).fetchone()
        if taken:
            raise ConstraintViolationError(
                "Sort key already in use", {"sort_path": key, "chapter_id": taken["id"]}
            )

    def _rebase_descendants(self, conn, novel_id: int, old_key: str, new_key: str) -> int:
        if old_key == new_key:
            return 0
        prefix = old_key + "."
        rows = conn.execute(
            "SELECT id, sort_path FROM chapters WHERE novel_id = ? AND substr(sort_path, 1, ?) = ?",
            (novel_id, len(prefix), prefix),
        ).fetchall()
        for row in rows:
            conn.execute(
                "UPDATE chapters SET sort_path = ? WHERE id = ?",
                (self.codec.rebase(row["sort_path"], old_key, new_key), row["id"]),
            )
        return len(rows)

    def update_content(self, chapter_id: int, content: str, word_count: int):
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE chapters SET content = ?, word_count = ?, updated_at = ? WHERE id = ?",
                (content, word_count, now().isoformat(), chapter_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Chapter", chapter_id)

    def update_title(self, chapter_id: int, title: str):
        if not title.strip():
            raise ConstraintViolationError("Chapter title must not be empty")
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE chapters SET title = ?, updated_at = ? WHERE id = ?",
                (title, now().isoformat(), chapter_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Chapter", chapter_id)

    def update_kind(self, chapter_id: int, kind: ChapterKind):
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE chapters SET kind = ?, updated_at = ? WHERE id = ?",
                (kind.value, now().isoformat(), chapter_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Chapter", chapter_id)

    def set_archived(self, chapter_id: int, archived: bool) -> list[int]:
        """Archive or restore a chapter together with its subtree."""
        with self.db.transaction() as conn:
            chapter = self.get(chapter_id)
            if not archived and chapter.parent_id is not None and self.get(chapter.parent_id).archived:
                raise ConstraintViolationError(
                    "Cannot unarchive a chapter whose parent is archived",
                    {"chapter_id": chapter_id, "parent_id": chapter.parent_id},
                )
            ids = [c.id for c in self.subtree(chapter_id)]
            conn.executemany(
                "UPDATE chapters SET archived = ?, updated_at = ? WHERE id = ?",
                [(archived, now().isoformat(), cid) for cid in ids],
            )
        logger.info("Chapter %d subtree (%d chapters) archived=%s", chapter_id, len(ids), archived)
        return ids

    def delete_subtree(self, chapter_id: int) -> list[int]:
        """Remove a chapter, its descendants and their revision chains."""
        with self.db.transaction() as conn:
            chapter = self.get(chapter_id)
            ids = [c.id for c in self.subtree(chapter_id)]
            prefix = chapter.sort_path + "."
            # Revisions and child rows go with the chapters via ON DELETE CASCADE
            conn.execute(
                "DELETE FROM chapters WHERE novel_id = ? AND (id = ? OR substr(sort_path, 1, ?) = ?)",
                (chapter.novel_id, chapter_id, len(prefix), prefix),
            )
        logger.info("Deleted chapter %d and %d descendants", chapter_id, len(ids) - 1)
        return ids

    # ---- Key maintenance ----

    def rebalance_children(self, novel_id: int, parent_id: Optional[int]) -> int:
        """Renumber a sibling group with evenly spaced keys; returns its size."""
        with self.db.transaction() as conn:
            parent_key = self.get(parent_id).sort_path if parent_id is not None else None
            siblings = self.children(novel_id, parent_id)
            new_keys = self.codec.rebalance(parent_key, len(siblings))
            self._rewrite_keys(conn, novel_id, siblings, new_keys)
        logger.info(
            "Rebalanced %d siblings under parent=%s in novel %d", len(siblings), parent_id, novel_id
        )
        return len(siblings)

    def renormalize(self, novel_id: int) -> int:
        """Rewrite every key of a novel with compact, evenly spaced segments.

        Sibling groups are processed top-down, so each group's parent key is
        already final when the group is renumbered.
        """
        count = 0
        with self.db.transaction() as conn:
            pending = [None]
            while pending:
                parent_id = pending.pop()
                siblings = self.children(novel_id, parent_id)
                parent_key = self.get(parent_id).sort_path if parent_id is not None else None
                self._rewrite_keys(conn, novel_id, siblings, self.codec.rebalance(parent_key, len(siblings)))
                pending.extend(c.id for c in siblings)
                count += len(siblings)
        logger.info("Renormalized %d sort keys in novel %d", count, novel_id)
        return count

    def _rewrite_keys(self, conn, novel_id: int, siblings: list[Chapter], new_keys: list[str]):
        # Park every subtree under a temporary prefix first so that old and
        # new keys of different siblings never coexist under one name.
        parked = []
        for i, chapter in enumerate(siblings):
            temp = f"{chapter.sort_path}~{i}"
            conn.execute("UPDATE chapters SET sort_path = ? WHERE id = ?", (temp, chapter.id))
            self._rebase_descendants(conn, novel_id, chapter.sort_path, temp)
            parked.append(temp)
        for chapter, temp, key in zip(siblings, parked, new_keys):
            conn.execute("UPDATE chapters SET sort_path = ? WHERE id = ?", (key, chapter.id))
            self._rebase_descendants(conn, novel_id, temp, key)
