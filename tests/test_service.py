"""Tests for ChapterService: structure, content and aggregation."""

import logging
import random

import pytest

from chapters.callbacks import WordCountCallback
from chapters.service import ChapterService
from chapters.tree import ChapterTree
from config.exceptions import (
    BrokenChainError,
    ConstraintViolationError,
    CycleDetectedError,
    NotFoundError,
    StorageFailureError,
)
from models.database import now
from models.enums import ChapterKind, RevisionKind


class RecordingCallback:
    def __init__(self):
        self.calls = []

    def on_word_count_changed(self, novel_id):
        self.calls.append(novel_id)


class FailingCallback:
    def on_word_count_changed(self, novel_id):
        raise StorageFailureError("database is locked")


def _titles(tree):
    return [(chapter.title, depth) for chapter, depth in tree.flatten()]


class TestScenarios:
    def test_move_scene_to_root_after_chapter(self, service, sample_novel):
        ch1 = service.create(sample_novel.id, "Ch1")
        scene = service.create(sample_novel.id, "Scene1", parent_id=ch1.id, kind=ChapterKind.SCENE)
        assert _titles(service.tree(sample_novel.id)) == [("Ch1", 0), ("Scene1", 1)]

        tree = service.move(scene.id, None, after_sibling_id=ch1.id)
        assert _titles(tree) == [("Ch1", 0), ("Scene1", 0)]

    def test_edit_counts_words_and_appends_revision(self, service, sample_novel):
        ch1 = service.create(sample_novel.id, "Ch1")
        before = len(service.history(ch1.id))

        revision = service.edit(ch1.id, "Hello world")

        assert service.get(ch1.id).word_count == 2
        assert revision.version_type in (RevisionKind.SNAPSHOT, RevisionKind.DIFF)
        assert len(service.history(ch1.id)) == before + 1

    def test_delete_removes_subtree_and_revisions(self, service, sample_novel):
        ch1 = service.create(sample_novel.id, "Ch1")
        scene = service.create(sample_novel.id, "Scene1", parent_id=ch1.id)
        revisions = [r.id for cid in (ch1.id, scene.id) for r in service.history(cid)]

        deleted = service.delete(ch1.id)

        assert sorted(deleted) == sorted([ch1.id, scene.id])
        with pytest.raises(NotFoundError):
            service.get(ch1.id)
        with pytest.raises(NotFoundError):
            service.get(scene.id)
        for revision_id in revisions:
            with pytest.raises(NotFoundError):
                service.reconstruct(revision_id)


class TestCreate:
    def test_chain_starts_with_empty_snapshot(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        history = service.history(chapter.id)
        assert len(history) == 1
        assert history[0].version_type == RevisionKind.SNAPSHOT
        assert service.reconstruct(history[0].id) == ""
        assert chapter.content == ""

    def test_appends_after_last_sibling(self, service, sample_novel):
        ids = [service.create(sample_novel.id, f"第{i}章").id for i in range(5)]
        assert list(service.tree(sample_novel.id).roots) == ids

    def test_unknown_novel(self, service):
        with pytest.raises(NotFoundError):
            service.create(9999, "x")

    def test_cross_novel_parent(self, service, sample_novel, other_novel):
        foreign = service.create(other_novel.id, "别人的卷")
        with pytest.raises(ConstraintViolationError):
            service.create(sample_novel.id, "x", parent_id=foreign.id)

    def test_empty_title(self, service, sample_novel):
        with pytest.raises(ConstraintViolationError):
            service.create(sample_novel.id, "   ")
        assert len(service.tree(sample_novel.id)) == 0

    def test_kind_is_free_tag(self, service, sample_novel):
        scene = service.create(sample_novel.id, "场景", kind=ChapterKind.SCENE)
        volume = service.create(sample_novel.id, "卷", parent_id=scene.id, kind=ChapterKind.VOLUME)
        assert service.get(volume.id).kind == ChapterKind.VOLUME


class TestMove:
    def test_after_none_places_first(self, service, sample_novel):
        a = service.create(sample_novel.id, "A")
        b = service.create(sample_novel.id, "B")
        c = service.create(sample_novel.id, "C")
        tree = service.move(c.id, None)
        assert list(tree.roots) == [c.id, a.id, b.id]

    def test_reorder_between_siblings(self, service, sample_novel):
        a = service.create(sample_novel.id, "A")
        b = service.create(sample_novel.id, "B")
        c = service.create(sample_novel.id, "C")
        tree = service.move(a.id, None, after_sibling_id=b.id)
        assert list(tree.roots) == [b.id, a.id, c.id]

    def test_reparent_carries_subtree(self, service, sample_novel):
        vol1 = service.create(sample_novel.id, "卷一", kind=ChapterKind.VOLUME)
        vol2 = service.create(sample_novel.id, "卷二", kind=ChapterKind.VOLUME)
        ch = service.create(sample_novel.id, "第一章", parent_id=vol1.id)
        scene = service.create(sample_novel.id, "场景", parent_id=ch.id)

        tree = service.move(ch.id, vol2.id)

        assert tree.children_of(vol2.id) == (ch.id,)
        assert tree.children_of(vol1.id) == ()
        assert tree.depth_of(scene.id) == 2
        assert tree.ancestors_of(scene.id) == [vol2.id, ch.id]

    def test_cycle_rejected(self, service, sample_novel):
        vol = service.create(sample_novel.id, "卷一")
        ch = service.create(sample_novel.id, "第一章", parent_id=vol.id)
        with pytest.raises(CycleDetectedError):
            service.move(vol.id, ch.id)
        with pytest.raises(CycleDetectedError):
            service.move(vol.id, vol.id)
        assert _titles(service.tree(sample_novel.id)) == [("卷一", 0), ("第一章", 1)]

    def test_after_self_rejected(self, service, sample_novel):
        a = service.create(sample_novel.id, "A")
        with pytest.raises(ConstraintViolationError):
            service.move(a.id, None, after_sibling_id=a.id)

    def test_after_non_sibling_rejected(self, service, sample_novel):
        vol = service.create(sample_novel.id, "卷一")
        ch = service.create(sample_novel.id, "第一章", parent_id=vol.id)
        loose = service.create(sample_novel.id, "散章")
        with pytest.raises(ConstraintViolationError):
            service.move(loose.id, None, after_sibling_id=ch.id)

    def test_cross_novel_parent_rejected(self, service, sample_novel, other_novel):
        mine = service.create(sample_novel.id, "甲")
        theirs = service.create(other_novel.id, "乙")
        with pytest.raises(ConstraintViolationError):
            service.move(mine.id, theirs.id)

    def test_under_archived_parent_rejected(self, service, sample_novel):
        vol = service.create(sample_novel.id, "卷一")
        ch = service.create(sample_novel.id, "第一章")
        service.archive(vol.id)
        with pytest.raises(ConstraintViolationError):
            service.move(ch.id, vol.id)

    def test_exhausted_key_space_renumbers_siblings(self, db, settings, sample_novel):
        service = ChapterService(db, settings.model_copy(update={"max_segment_length": 2}))
        order = [service.create(sample_novel.id, f"第{i}章").id for i in range(4)]
        for _ in range(20):
            service.move(order[-1], None)
            order = [order[-1]] + order[:-1]
        tree = service.tree(sample_novel.id)
        assert list(tree.roots) == order
        assert all(len(tree.get(cid).sort_path) <= 2 for cid in order)

    def test_random_moves_keep_tree_consistent(self, service, sample_novel):
        rng = random.Random(20240601)
        ids = [service.create(sample_novel.id, "根").id]
        for i in range(9):
            parent = rng.choice([None] + ids)
            ids.append(service.create(sample_novel.id, f"节点{i}", parent_id=parent).id)

        for _ in range(40):
            tree = service.tree(sample_novel.id)
            moving = rng.choice(ids)
            new_parent = rng.choice([None] + ids)
            if tree.would_create_cycle(moving, new_parent):
                with pytest.raises(CycleDetectedError):
                    service.move(moving, new_parent)
                continue
            siblings = [cid for cid in tree.children_of(new_parent) if cid != moving]
            after = rng.choice([None] + siblings)
            tree = service.move(moving, new_parent, after_sibling_id=after)

            assert tree.get(moving).parent_id == new_parent
            expected = 0 if after is None else siblings.index(after) + 1
            assert tree.children_of(new_parent).index(moving) == expected
            assert len(tree) == len(ids)
            for chapter, depth in tree.flatten():
                parent_depth = tree.depth_of(chapter.parent_id) if chapter.parent_id else -1
                assert depth == parent_depth + 1
                assert chapter.id not in tree.ancestors_of(chapter.id)

    def test_renormalize_keeps_structure(self, service, sample_novel):
        vol = service.create(sample_novel.id, "卷一")
        for i in range(6):
            service.create(sample_novel.id, f"第{i}章", parent_id=vol.id)
            service.move(service.tree(sample_novel.id).children_of(vol.id)[-1], vol.id)
        before = _titles(service.tree(sample_novel.id))
        assert service.renormalize(sample_novel.id) == 7
        assert _titles(service.tree(sample_novel.id)) == before


class TestEdit:
    def test_head_matches_content_after_every_edit(self, service, sample_novel, long_text):
        chapter = service.create(sample_novel.id, "第一章")
        text = long_text
        for i in range(12):
            lines = text.splitlines(keepends=True)
            lines[i * 3 % len(lines)] = f"第{i}稿\n"
            text = "".join(lines)
            service.edit(chapter.id, text, message=f"draft {i}")
            head = service.history(chapter.id)[0]
            assert service.reconstruct(head.id) == service.get(chapter.id).content == text

    def test_auto_save_without_change_appends_revision(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        first = service.edit(chapter.id, "Hello world")
        before = len(service.history(chapter.id))

        again = service.edit(chapter.id, "Hello world", is_auto_save=True)

        history = service.history(chapter.id)
        assert len(history) == before + 1
        assert again.id != first.id
        assert again.parent_version_id == first.id
        assert history[0].id == again.id
        assert history[0].is_auto_save
        assert service.reconstruct(again.id) == service.get(chapter.id).content == "Hello world"

    def test_manual_save_without_change_is_recorded(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        service.edit(chapter.id, "正文")
        service.edit(chapter.id, "正文", message="checkpoint")
        assert len(service.history(chapter.id)) == 3

    def test_edit_can_rename(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "旧标题")
        service.edit(chapter.id, "正文", title="新标题")
        assert service.get(chapter.id).title == "新标题"

    def test_unknown_chapter(self, service):
        with pytest.raises(NotFoundError):
            service.edit(9999, "x")

    def test_broken_chain_leaves_content_untouched(self, db, service, sample_novel, long_text):
        chapter = service.create(sample_novel.id, "第一章")
        service.edit(chapter.id, long_text)
        head = service.edit(chapter.id, long_text + "尾声\n")
        with db.transaction() as conn:
            conn.execute(
                "UPDATE chapter_versions SET content_or_delta = 'garbage' WHERE id = ?", (head.id,)
            )
        with pytest.raises(BrokenChainError):
            service.edit(chapter.id, "全新内容", title="不应生效")
        current = service.get(chapter.id)
        assert current.content == long_text + "尾声\n"
        assert current.title == "第一章"
        assert service.history(chapter.id)[0].id == head.id


class TestRestore:
    def test_restore_updates_content(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        first = service.edit(chapter.id, "Hello world")
        service.edit(chapter.id, "Goodbye")

        restored = service.restore(chapter.id, first.id)

        assert service.get(chapter.id).content == "Hello world"
        assert service.get(chapter.id).word_count == 2
        assert service.history(chapter.id)[0].id == restored.id

    def test_restore_twice(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        first = service.edit(chapter.id, "v1")
        service.edit(chapter.id, "v2")
        a = service.restore(chapter.id, first.id)
        b = service.restore(chapter.id, first.id)
        assert service.reconstruct(a.id) == service.reconstruct(b.id) == "v1"
        assert len(service.history(chapter.id)) == 5

    def test_compare_and_patterns(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        a = service.edit(chapter.id, "one\n")
        b = service.edit(chapter.id, "one\ntwo\n", is_auto_save=True)
        comparison = service.compare_revisions(a.id, b.id)
        assert comparison.statistics.insertions == len("two\n")
        patterns = service.version_patterns(chapter.id)
        assert patterns.total_versions == 3
        assert patterns.auto_save_count == 1


class TestArchiveAndAggregation:
    def test_novel_word_count_follows_changes(self, db, service, sample_novel):
        a = service.create(sample_novel.id, "甲")
        b = service.create(sample_novel.id, "乙")
        service.edit(a.id, "Hello world")
        service.edit(b.id, "你好世界")
        assert db.require_novel(sample_novel.id).word_count == 6

        service.archive(b.id)
        assert db.require_novel(sample_novel.id).word_count == 2
        service.unarchive(b.id)
        assert db.require_novel(sample_novel.id).word_count == 6

        service.delete(a.id)
        assert db.require_novel(sample_novel.id).word_count == 4

    def test_archived_chapters_hidden_from_tree(self, service, sample_novel):
        vol = service.create(sample_novel.id, "卷一")
        service.create(sample_novel.id, "第一章", parent_id=vol.id)
        keep = service.create(sample_novel.id, "卷二")
        assert len(service.archive(vol.id)) == 2

        assert list(service.tree(sample_novel.id).roots) == [keep.id]
        assert len(service.tree(sample_novel.id, include_archived=True)) == 3

    def test_custom_callbacks(self, db, settings, sample_novel):
        recorder = RecordingCallback()
        assert isinstance(recorder, WordCountCallback)
        service = ChapterService(db, settings, callbacks=[recorder])
        chapter = service.create(sample_novel.id, "第一章")
        service.edit(chapter.id, "Hello")
        service.archive(chapter.id)
        assert recorder.calls == [sample_novel.id, sample_novel.id]
        assert db.require_novel(sample_novel.id).word_count == 0

    def test_failing_callback_keeps_committed_edit(self, db, settings, sample_novel, caplog):
        recorder = RecordingCallback()
        service = ChapterService(db, settings, callbacks=[FailingCallback(), recorder])
        chapter = service.create(sample_novel.id, "第一章")

        with caplog.at_level(logging.ERROR, logger="chapters.service"):
            revision = service.edit(chapter.id, "Hello world")

        assert service.get(chapter.id).content == "Hello world"
        assert service.history(chapter.id)[0].id == revision.id
        assert recorder.calls == [sample_novel.id]
        assert "stale" in caplog.text


class TestMisc:
    def test_rename_and_set_kind(self, service, sample_novel):
        chapter = service.create(sample_novel.id, "旧")
        assert service.rename(chapter.id, "新").title == "新"
        assert service.set_kind(chapter.id, ChapterKind.VOLUME).kind == ChapterKind.VOLUME

    def test_linked_inspirations(self, db, service, sample_novel):
        chapter = service.create(sample_novel.id, "第一章")
        stamp = now().isoformat()
        with db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO inspirations (novel_id, title, content, created_at, updated_at) "
                "VALUES (?, '灵感', '', ?, ?)",
                (sample_novel.id, stamp, stamp),
            )
            conn.execute(
                "INSERT INTO inspiration_chapter_links (inspiration_id, chapter_id) VALUES (?, ?)",
                (cursor.lastrowid, chapter.id),
            )
        assert service.linked_inspirations(chapter.id) == [cursor.lastrowid]

    def test_tree_is_a_chapter_tree(self, service, sample_novel):
        assert isinstance(service.tree(sample_novel.id), ChapterTree)
