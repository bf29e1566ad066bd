"""Tests for building and querying the in-memory chapter tree."""

import pytest

from chapters.tree import ChapterTree
from config.exceptions import ConstraintViolationError, NotFoundError
from models.chapter import Chapter


def _ch(cid, key, parent_id=None, title=None):
    return Chapter(id=cid, novel_id=1, parent_id=parent_id, title=title or f"c{cid}", sort_path=key)


@pytest.fixture
def chapters():
    # 1 卷一
    #   3 第一章
    #     5 场景
    #   4 第二章
    # 2 卷二
    return [
        _ch(1, "i"),
        _ch(3, "i.i", 1),
        _ch(5, "i.i.i", 3),
        _ch(4, "i.r", 1),
        _ch(2, "r"),
    ]


class TestBuild:
    def test_structure(self, chapters):
        tree = ChapterTree.build(chapters)
        assert len(tree) == 5
        assert tree.roots == (1, 2)
        assert tree.children_of(None) == (1, 2)
        assert tree.children_of(1) == (3, 4)
        assert tree.children_of(3) == (5,)
        assert tree.children_of(2) == ()

    def test_depths(self, chapters):
        tree = ChapterTree.build(chapters)
        assert [tree.depth_of(cid) for cid in (1, 3, 5, 4, 2)] == [0, 1, 2, 1, 0]

    def test_empty(self):
        tree = ChapterTree.build([])
        assert len(tree) == 0
        assert tree.flatten() == []

    def test_unordered_input_rejected(self, chapters):
        with pytest.raises(ConstraintViolationError):
            ChapterTree.build(list(reversed(chapters)))

    def test_duplicate_key_rejected(self):
        with pytest.raises(ConstraintViolationError):
            ChapterTree.build([_ch(1, "i"), _ch(2, "i")])

    def test_parent_id_disagreeing_with_key_rejected(self):
        with pytest.raises(ConstraintViolationError):
            ChapterTree.build([_ch(1, "i"), _ch(2, "r"), _ch(3, "r.i", parent_id=1)])

    def test_missing_parent_rejected(self):
        # archived parent filtered out, child still present
        with pytest.raises(ConstraintViolationError):
            ChapterTree.build([_ch(2, "r"), _ch(3, "r.i.i", parent_id=9)])

    def test_skipped_level_rejected(self):
        with pytest.raises(ConstraintViolationError):
            ChapterTree.build([_ch(1, "i"), _ch(3, "i.i.i", parent_id=1)])


class TestQueries:
    def test_flatten_is_preorder(self, chapters):
        tree = ChapterTree.build(chapters)
        assert [(c.id, d) for c, d in tree.flatten()] == [(1, 0), (3, 1), (5, 2), (4, 1), (2, 0)]

    def test_ancestors_root_first(self, chapters):
        tree = ChapterTree.build(chapters)
        assert tree.ancestors_of(5) == [1, 3]
        assert tree.ancestors_of(1) == []

    def test_subtree_ids(self, chapters):
        tree = ChapterTree.build(chapters)
        assert tree.subtree_ids(1) == [1, 3, 5, 4]
        assert tree.subtree_ids(2) == [2]

    def test_would_create_cycle(self, chapters):
        tree = ChapterTree.build(chapters)
        assert tree.would_create_cycle(1, 5)
        assert tree.would_create_cycle(3, 3)
        assert not tree.would_create_cycle(3, 2)
        assert not tree.would_create_cycle(5, None)

    def test_contains_and_get(self, chapters):
        tree = ChapterTree.build(chapters)
        assert 5 in tree
        assert 99 not in tree
        assert tree.get(4).sort_path == "i.r"

    def test_unknown_id_raises(self, chapters):
        tree = ChapterTree.build(chapters)
        with pytest.raises(NotFoundError):
            tree.children_of(99)
        with pytest.raises(NotFoundError):
            tree.depth_of(99)
