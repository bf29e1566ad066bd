"""Shared pytest fixtures for the quillstore test suite."""

import pytest


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite database path."""
    return tmp_path / "test_novels.db"


@pytest.fixture
def db(tmp_db_path):
    """Return an initialized Database instance backed by a temp file."""
    from models.database import Database
    return Database(tmp_db_path)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """Return a Settings instance with all paths pointing to tmp_path."""
    from config.settings import Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "novels.db",
        log_dir=tmp_path / "logs",
        snapshot_interval=4,
        snapshot_max_delta_chars=20000,
        max_segment_length=8,
    )


# ---------------------------------------------------------------------------
# Core component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store(db):
    from chapters.store import ChapterStore
    return ChapterStore(db)


@pytest.fixture
def chain(db, settings):
    from chapters.versions import VersionChain
    return VersionChain(db, settings)


@pytest.fixture
def service(db, settings):
    from chapters.service import ChapterService
    return ChapterService(db, settings)


# ---------------------------------------------------------------------------
# Sample data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_novel(db):
    """Insert and return a sample Novel record."""
    from models.novel import Novel
    from models.enums import NovelStatus
    novel = Novel(
        title="测试小说",
        author="佚名",
        description="这是一本测试小说的简介",
        status=NovelStatus.WRITING,
    )
    novel.id = db.create_novel(novel)
    return novel


@pytest.fixture
def other_novel(db):
    from models.novel import Novel
    novel = Novel(title="另一本书")
    novel.id = db.create_novel(novel)
    return novel


@pytest.fixture
def long_text():
    """Multi-line chapter text long enough that edits are stored as diffs."""
    return "".join(f"第{i}段：少年站在山巅，看着远方的云海翻涌。\n" for i in range(1, 41))


# ---------------------------------------------------------------------------
# Logging fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def restore_logging():
    """Undo setup_logging() changes to the root and revision-chain loggers."""
    import logging
    root = logging.getLogger()
    versions = logging.getLogger("chapters.versions")
    saved = (list(root.handlers), root.level, list(versions.handlers), versions.level)
    yield
    for logger, handlers in ((root, saved[0]), (versions, saved[2])):
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers[:] = handlers
    root.setLevel(saved[1])
    versions.setLevel(saved[3])
