"""Enumerations for novels, chapters and revisions."""

from enum import Enum


class NovelStatus(str, Enum):
    DRAFT = "draft"
    WRITING = "writing"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ChapterKind(str, Enum):
    """Free tag on a tree node; any kind may sit at any depth."""
    VOLUME = "volume"
    CHAPTER = "chapter"
    SCENE = "scene"


class RevisionKind(str, Enum):
    SNAPSHOT = "snapshot"
    DIFF = "diff"
