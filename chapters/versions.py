"""Append-only revision chains with snapshot/diff reconstruction.

Each chapter owns a singly linked list of revisions, newest (the head) first.
The root of every chain is a full snapshot; later revisions are either
snapshots or line deltas against their parent's text. Reconstruction walks
back to the nearest snapshot and replays the deltas forward.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.exceptions import BrokenChainError, DeltaError, NotFoundError
from config.settings import Settings
from models.chapter import Revision, RevisionInfo
from models.database import Database, now, parse_timestamp
from models.enums import RevisionKind
from tools import diff_codec
from tools.diff_codec import ChangeStats, Delta, SimilarChunk
from tools.text_utils import count_words

logger = logging.getLogger(__name__)

_INFO_COLUMNS = (
    "id, chapter_id, parent_version_id, version_type, word_count, "
    "created_at, commit_message, is_auto_save"
)


@dataclass
class RevisionComparison:
    older: RevisionInfo
    newer: RevisionInfo
    patch: str
    statistics: ChangeStats
    similar_chunks: list[SimilarChunk] = field(default_factory=list)


@dataclass
class VersionPatterns:
    total_versions: int = 0
    auto_save_count: int = 0
    manual_save_count: int = 0
    average_seconds_between_saves: float = 0.0
    first_version_date: Optional[datetime] = None
    last_version_date: Optional[datetime] = None


def _row_to_revision(row) -> Revision:
    return Revision(
        id=row["id"], chapter_id=row["chapter_id"],
        parent_version_id=row["parent_version_id"],
        version_type=RevisionKind(row["version_type"]),
        content_or_delta=row["content_or_delta"],
        word_count=row["word_count"],
        created_at=parse_timestamp(row["created_at"]),
        commit_message=row["commit_message"] or "",
        is_auto_save=bool(row["is_auto_save"]),
    )


def _row_to_info(row) -> RevisionInfo:
    return RevisionInfo(
        id=row["id"], chapter_id=row["chapter_id"],
        parent_version_id=row["parent_version_id"],
        version_type=RevisionKind(row["version_type"]),
        word_count=row["word_count"],
        created_at=parse_timestamp(row["created_at"]),
        commit_message=row["commit_message"] or "",
        is_auto_save=bool(row["is_auto_save"]),
    )


class VersionChain:
    """Revision history of chapters, stored in ``chapter_versions``."""

    def __init__(self, db: Database, settings: Optional[Settings] = None):
        self.db = db
        self.snapshot_interval = settings.snapshot_interval if settings else 10
        self.snapshot_max_delta_chars = settings.snapshot_max_delta_chars if settings else 20000

    # ---- Reads ----

    def get(self, revision_id: int) -> Revision:
        with self.db.transaction(write=False) as conn:
            row = conn.execute("SELECT * FROM chapter_versions WHERE id = ?", (revision_id,)).fetchone()
        if not row:
            raise NotFoundError("Revision", revision_id)
        return _row_to_revision(row)

    def head(self, chapter_id: int) -> Optional[Revision]:
        """The chain head (newest revision), or None for an empty chain."""
        with self.db.transaction(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM chapter_versions WHERE chapter_id = ? ORDER BY id DESC LIMIT 1",
                (chapter_id,),
            ).fetchone()
        return _row_to_revision(row) if row else None

    def history(self, chapter_id: int) -> list[RevisionInfo]:
        """Revision metadata, newest first, without payloads."""
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(
                f"SELECT {_INFO_COLUMNS} FROM chapter_versions WHERE chapter_id = ? ORDER BY id DESC",
                (chapter_id,),
            ).fetchall()
        return [_row_to_info(r) for r in rows]

    def _segment(self, revision_id: int) -> list[Revision]:
        """Revisions from the nearest snapshot up to ``revision_id``, oldest first."""
        segment = []
        seen = set()
        current: Optional[int] = revision_id
        with self.db.transaction(write=False) as conn:
            while True:
                if current in seen:
                    self._broken(revision_id, f"cycle at revision {current}")
                seen.add(current)
                row = conn.execute("SELECT * FROM chapter_versions WHERE id = ?", (current,)).fetchone()
                if not row:
                    if current == revision_id:
                        raise NotFoundError("Revision", revision_id)
                    self._broken(revision_id, f"missing parent revision {current}")
                revision = _row_to_revision(row)
                segment.append(revision)
                if revision.version_type == RevisionKind.SNAPSHOT:
                    break
                if revision.parent_version_id is None:
                    self._broken(revision_id, f"diff revision {revision.id} has no parent")
                current = revision.parent_version_id
        segment.reverse()
        return segment

    def reconstruct(self, revision_id: int) -> str:
        """Return the full text of a revision."""
        return self._replay(revision_id, self._segment(revision_id))

    def _replay(self, revision_id: int, segment: list[Revision]) -> str:
        text = segment[0].content_or_delta
        for revision in segment[1:]:
            try:
                text = diff_codec.apply(text, Delta.decode(revision.content_or_delta))
            except DeltaError as e:
                self._broken(revision_id, f"delta of revision {revision.id} does not apply: {e}")
        return text

    @staticmethod
    def _broken(revision_id: int, reason: str):
        logger.error("Revision chain corrupt at %d: %s", revision_id, reason)
        raise BrokenChainError(revision_id, reason)

    # ---- Writes ----

    def append(
        self,
        chapter_id: int,
        new_content: str,
        message: str = "",
        is_auto_save: bool = False,
    ) -> Revision:
        """Record ``new_content`` as the chapter's new head revision."""
        with self.db.transaction() as conn:
            if not conn.execute("SELECT 1 FROM chapters WHERE id = ?", (chapter_id,)).fetchone():
                raise NotFoundError("Chapter", chapter_id)
            head = self.head(chapter_id)
            version_type = RevisionKind.SNAPSHOT
            payload = new_content
            if head is not None:
                segment = self._segment(head.id)
                head_text = self._replay(head.id, segment)
                delta = diff_codec.diff(head_text, new_content)
                stacked = sum(len(r.content_or_delta) for r in segment[1:])
                encoded = delta.encode()
                if (
                    len(segment) < self.snapshot_interval
                    and stacked + len(encoded) <= self.snapshot_max_delta_chars
                    and len(encoded) < len(new_content)
                ):
                    version_type = RevisionKind.DIFF
                    payload = encoded

            revision = Revision(
                chapter_id=chapter_id,
                parent_version_id=head.id if head else None,
                version_type=version_type,
                content_or_delta=payload,
                word_count=count_words(new_content),
                created_at=now(),
                commit_message=message or "",
                is_auto_save=is_auto_save,
            )
            cursor = conn.execute(
                "INSERT INTO chapter_versions (chapter_id, parent_version_id, version_type, "
                "content_or_delta, word_count, created_at, commit_message, is_auto_save) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (revision.chapter_id, revision.parent_version_id, revision.version_type.value,
                 revision.content_or_delta, revision.word_count,
                 revision.created_at.isoformat(), revision.commit_message, revision.is_auto_save),
            )
            revision.id = cursor.lastrowid
        logger.debug(
            "Appended %s revision %d to chapter %d (parent=%s, auto=%s)",
            revision.version_type.value, revision.id, chapter_id,
            revision.parent_version_id, is_auto_save,
        )
        return revision

    def restore(self, chapter_id: int, revision_id: int, message: str = "") -> Revision:
        """Append the text of an older revision as a new head."""
        with self.db.transaction():
            target = self.get(revision_id)
            if target.chapter_id != chapter_id:
                raise NotFoundError("Revision", revision_id)
            text = self.reconstruct(revision_id)
            revision = self.append(
                chapter_id, text, message or f"Restored from revision {revision_id}", False,
            )
        logger.info("Chapter %d restored to revision %d as %d", chapter_id, revision_id, revision.id)
        return revision

    # ---- Analysis ----

    def compare(self, older_id: int, newer_id: int) -> RevisionComparison:
        older, newer = self.get(older_id), self.get(newer_id)
        old_text, new_text = self.reconstruct(older_id), self.reconstruct(newer_id)
        return RevisionComparison(
            older=self._info(older),
            newer=self._info(newer),
            patch=diff_codec.unified_patch(old_text, new_text),
            statistics=diff_codec.change_statistics(old_text, new_text),
            similar_chunks=diff_codec.similar_chunks(old_text, new_text),
        )

    def analyze_patterns(self, chapter_id: int) -> VersionPatterns:
        timeline = self.history(chapter_id)
        if not timeline:
            return VersionPatterns()
        auto = sum(1 for r in timeline if r.is_auto_save)
        gaps = [
            (timeline[i - 1].created_at - timeline[i].created_at).total_seconds()
            for i in range(1, len(timeline))
        ]
        return VersionPatterns(
            total_versions=len(timeline),
            auto_save_count=auto,
            manual_save_count=len(timeline) - auto,
            average_seconds_between_saves=sum(gaps) / len(gaps) if gaps else 0.0,
            first_version_date=timeline[-1].created_at,
            last_version_date=timeline[0].created_at,
        )

    @staticmethod
    def _info(revision: Revision) -> RevisionInfo:
        return RevisionInfo(
            id=revision.id, chapter_id=revision.chapter_id,
            parent_version_id=revision.parent_version_id,
            version_type=revision.version_type, word_count=revision.word_count,
            created_at=revision.created_at, commit_message=revision.commit_message,
            is_auto_save=revision.is_auto_save,
        )
