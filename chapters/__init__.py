"""Chapters package: store, tree, revision chains, and the service facade."""

from chapters.callbacks import NovelWordCountAggregator, WordCountCallback
from chapters.locks import NovelLocks, ReadWriteLock, locks_for_database
from chapters.service import ChapterService
from chapters.store import ChapterStore
from chapters.tree import ChapterTree, TreeNode
from chapters.versions import RevisionComparison, VersionChain, VersionPatterns

__all__ = [
    "ChapterService",
    "ChapterStore",
    "ChapterTree",
    "TreeNode",
    "VersionChain",
    "RevisionComparison",
    "VersionPatterns",
    "NovelLocks",
    "locks_for_database",
    "ReadWriteLock",
    "WordCountCallback",
    "NovelWordCountAggregator",
]
