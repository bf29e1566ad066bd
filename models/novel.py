"""Novel data model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models.enums import NovelStatus


@dataclass
class Novel:
    """Represents a novel; ``word_count`` aggregates its live chapters."""
    id: Optional[int] = None
    title: str = ""
    author: str = ""
    description: str = ""
    word_count: int = 0
    status: NovelStatus = NovelStatus.DRAFT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
