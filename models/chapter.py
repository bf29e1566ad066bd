"""Chapter and revision data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models.enums import ChapterKind, RevisionKind


@dataclass
class Chapter:
    """Represents a node of a novel's chapter tree."""
    id: Optional[int] = None
    novel_id: int = 0
    parent_id: Optional[int] = None
    title: str = ""
    content: str = ""
    sort_path: str = ""
    word_count: int = 0
    kind: ChapterKind = ChapterKind.CHAPTER
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Revision:
    """A stored revision: full text for snapshots, an encoded delta for diffs."""
    id: Optional[int] = None
    chapter_id: int = 0
    parent_version_id: Optional[int] = None
    version_type: RevisionKind = RevisionKind.SNAPSHOT
    content_or_delta: str = ""
    word_count: int = 0
    created_at: Optional[datetime] = None
    commit_message: str = ""
    is_auto_save: bool = False


@dataclass
class RevisionInfo:
    """Revision metadata without the payload, for history listings."""
    id: int
    chapter_id: int
    parent_version_id: Optional[int]
    version_type: RevisionKind
    word_count: int
    created_at: datetime
    commit_message: str = ""
    is_auto_save: bool = False
