"""SQLite database initialization, transactions and novel records."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from config.exceptions import ConstraintViolationError, NotFoundError, StorageFailureError
from models.enums import NovelStatus
from models.novel import Novel

logger = logging.getLogger(__name__)

# SQL for creating all tables
_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS novels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT DEFAULT '',
    description TEXT DEFAULT '',
    word_count INTEGER DEFAULT 0,
    status TEXT DEFAULT 'draft'
        CHECK(status IN ('draft', 'writing', 'completed', 'abandoned')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    novel_id INTEGER NOT NULL REFERENCES novels(id) ON DELETE CASCADE,
    parent_id INTEGER REFERENCES chapters(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    sort_path TEXT NOT NULL,
    word_count INTEGER DEFAULT 0,
    kind TEXT DEFAULT 'chapter' CHECK(kind IN ('volume', 'chapter', 'scene')),
    archived BOOLEAN DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapter_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chapter_id INTEGER NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    parent_version_id INTEGER REFERENCES chapter_versions(id) ON DELETE CASCADE,
    version_type TEXT NOT NULL CHECK(version_type IN ('snapshot', 'diff')),
    content_or_delta TEXT NOT NULL,
    word_count INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    commit_message TEXT DEFAULT '',
    is_auto_save BOOLEAN DEFAULT 0
);

CREATE TABLE IF NOT EXISTS inspirations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    novel_id INTEGER NOT NULL REFERENCES novels(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS inspiration_chapter_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    inspiration_id INTEGER NOT NULL REFERENCES inspirations(id) ON DELETE CASCADE,
    chapter_id INTEGER NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    UNIQUE(inspiration_id, chapter_id)
);
"""

# Indexes added via migration (idempotent)
_MIGRATION_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chapters_novel_path ON chapters(novel_id, sort_path)",
    "CREATE INDEX IF NOT EXISTS idx_chapters_parent ON chapters(parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_chapter_versions_chapter ON chapter_versions(chapter_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_chapter_versions_parent ON chapter_versions(parent_version_id)",
    "CREATE INDEX IF NOT EXISTS idx_links_chapter ON inspiration_chapter_links(chapter_id)",
]


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class Database:
    """SQLite database manager for the chapter store.

    Connections are opened per transaction. A transaction opened while
    another one is active on the same thread joins it, so a service call can
    wrap several store calls into one atomic unit.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._local = threading.local()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _init_db(self):
        try:
            conn = self._get_conn()
            try:
                conn.executescript(_CREATE_TABLES_SQL)
                for sql in _MIGRATION_SQL:
                    conn.execute(sql)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageFailureError(f"Database initialization failed: {e}", {"path": str(self.db_path)}) from e

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction.

        Commits on success and rolls back on any exception. ``sqlite3`` errors
        are re-raised as StorageFailureError. Write transactions take the
        database write lock up front (``BEGIN IMMEDIATE``).
        """
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageFailureError(f"Cannot open database: {e}", {"path": str(self.db_path)}) from e

        self._local.conn = conn
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            logger.error("SQLite error, transaction rolled back: %s", e)
            raise StorageFailureError(f"SQLite error: {e}") from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            self._local.conn = None
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection):
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning("Rollback failed: %s", e)

    def backup(self, target_path: str | Path) -> Path:
        """Write a consistent copy of the database to ``target_path``.

        Uses SQLite's online backup, so pages still held in the WAL file are
        included and other connections may keep writing meanwhile.
        """
        target = Path(target_path)
        if target.resolve() == self.db_path.resolve():
            raise ConstraintViolationError("Backup target is the live database", {"target": str(target)})
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            source = self._get_conn()
            try:
                dest = sqlite3.connect(str(target))
                try:
                    source.backup(dest)
                finally:
                    dest.close()
            finally:
                source.close()
        except sqlite3.Error as e:
            raise StorageFailureError(f"Backup failed: {e}", {"target": str(target)}) from e
        logger.info("Database backed up to %s", target)
        return target

    # ---- Novel CRUD ----

    def create_novel(self, novel: Novel) -> int:
        stamp = now().isoformat()
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO novels (title, author, description, word_count, status, "
                "created_at, updated_at) VALUES (?, ?, ?, 0, ?, ?, ?)",
                (novel.title, novel.author, novel.description, novel.status.value, stamp, stamp),
            )
            return cursor.lastrowid

    def get_novel(self, novel_id: int) -> Optional[Novel]:
        with self.transaction(write=False) as conn:
            row = conn.execute("SELECT * FROM novels WHERE id = ?", (novel_id,)).fetchone()
            if not row:
                return None
            return self._row_to_novel(row)

    def require_novel(self, novel_id: int) -> Novel:
        novel = self.get_novel(novel_id)
        if novel is None:
            raise NotFoundError("Novel", novel_id)
        return novel

    def list_novels(self) -> list[Novel]:
        with self.transaction(write=False) as conn:
            rows = conn.execute("SELECT * FROM novels ORDER BY id").fetchall()
            return [self._row_to_novel(r) for r in rows]

    def delete_novel(self, novel_id: int):
        """Delete a novel; chapters and their revisions go with it (FK cascade)."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM novels WHERE id = ?", (novel_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("Novel", novel_id)
        logger.info("Novel %d and all associated data deleted", novel_id)

    def recompute_novel_word_count(self, novel_id: int) -> int:
        """Set the novel's word count to the sum over its non-archived chapters."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(word_count), 0) AS total FROM chapters "
                "WHERE novel_id = ? AND archived = 0",
                (novel_id,),
            ).fetchone()
            total = row["total"]
            conn.execute(
                "UPDATE novels SET word_count = ?, updated_at = ? WHERE id = ?",
                (total, now().isoformat(), novel_id),
            )
        return total

    def _row_to_novel(self, row) -> Novel:
        return Novel(
            id=row["id"], title=row["title"], author=row["author"],
            description=row["description"], word_count=row["word_count"],
            status=NovelStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
