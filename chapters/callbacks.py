"""Word-count aggregation hooks for the owning novel."""

import logging
from typing import Protocol, runtime_checkable

from models.database import Database

logger = logging.getLogger(__name__)


@runtime_checkable
class WordCountCallback(Protocol):
    """Protocol for collaborators that track novel-level word counts.

    Called after a change that can alter a novel's total word count (edit,
    restore, delete, archive, unarchive) has been committed. A
    QuillStoreError raised here is logged by the service and does not undo
    or fail the committed change.
    """

    def on_word_count_changed(self, novel_id: int) -> None:
        ...


class NovelWordCountAggregator:
    """Recomputes ``novels.word_count`` right away from the chapter table."""

    def __init__(self, db: Database):
        self.db = db

    def on_word_count_changed(self, novel_id: int) -> None:
        total = self.db.recompute_novel_word_count(novel_id)
        logger.debug("Novel %d word count is now %d", novel_id, total)
