"""Models package: database, dataclass models, and enums."""

from models.database import Database
from models.novel import Novel
from models.chapter import Chapter, Revision, RevisionInfo
from models.enums import NovelStatus, ChapterKind, RevisionKind

__all__ = [
    "Database",
    "Novel",
    "Chapter",
    "Revision",
    "RevisionInfo",
    "NovelStatus",
    "ChapterKind",
    "RevisionKind",
]
