"""Per-novel reader-writer locks."""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class ReadWriteLock:
    """Writer-preferring reader-writer lock.

    The thread holding the write lock may re-enter it and may also take the
    read lock, so a mutation can rebuild its tree through the read path.
    Read locks themselves are not reentrant while a writer is waiting.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = None
        self._writer_depth = 0
        self._waiting_writers = 0

    def acquire_read(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            while self._writer is not None or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._release_write_level()
                return
            if self._readers <= 0:
                raise RuntimeError("release_read without a matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return
            self._waiting_writers += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = me
            self._writer_depth = 1

    def release_write(self):
        with self._cond:
            if self._writer != threading.get_ident():
                raise RuntimeError("release_write by a thread that does not hold the lock")
            self._release_write_level()

    def _release_write_level(self):
        self._writer_depth -= 1
        if self._writer_depth == 0:
            self._writer = None
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class NovelLocks:
    """Lazily created ReadWriteLock per novel id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, ReadWriteLock] = {}

    def for_novel(self, novel_id: int) -> ReadWriteLock:
        with self._guard:
            lock = self._locks.get(novel_id)
            if lock is None:
                lock = self._locks[novel_id] = ReadWriteLock()
            return lock

    def read(self, novel_id: int):
        return self.for_novel(novel_id).read()

    def write(self, novel_id: int):
        return self.for_novel(novel_id).write()


_registry_guard = threading.Lock()
_registry: dict[str, NovelLocks] = {}


def locks_for_database(db_path: str | Path) -> NovelLocks:
    """Return the NovelLocks shared by every service on one database file.

    The locks only order threads of this process; other processes are kept
    apart by SQLite's write lock (``BEGIN IMMEDIATE``). A registry holds one
    lock per novel id ever touched and is not pruned.
    """
    key = str(Path(db_path).resolve())
    with _registry_guard:
        locks = _registry.get(key)
        if locks is None:
            locks = _registry[key] = NovelLocks()
        return locks
