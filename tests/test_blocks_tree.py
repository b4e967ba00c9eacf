"""Tests for blocks_tree.py - Tree operations for block hierarchy.

Tests:
- Move operations through the repository
- Move validation (cycles, non-containers, depth)
- Drop target resolution
- Tree assembly and cycle detection
- Integrity checks
"""

from __future__ import annotations

import logging

import pytest

from promptblocks.blocks import blocks_tree
from promptblocks.blocks.blocks_models import Block, BlockKind, DropHint
from promptblocks.blocks.blocks_store import BlockRepository
from promptblocks.errors import InvalidMoveError, StructuralCorruptionError


def _block(
    block_id: str,
    *,
    kind: BlockKind = BlockKind.CONTAINER,
    parent_id: str | None = None,
    order: int = 0,
    depth: int = 0,
) -> Block:
    return Block(
        id=block_id,
        kind=kind,
        tag_name=block_id if kind == BlockKind.CONTAINER else None,
        content="" if kind == BlockKind.CONTAINER else block_id,
        parent_id=parent_id,
        order=order,
        depth=depth,
    )


def _order_of(repo: BlockRepository, parent_id: str | None) -> list[str]:
    return [b.content or b.tag_name for b in repo.get_children(parent_id)]


@pytest.fixture
def xyz(repo: BlockRepository) -> dict[str, str]:
    """Three root text blocks x, y, z."""
    return {name: repo.create(kind="text", content=name).id for name in "xyz"}


# =============================================================================
# Move
# =============================================================================


class TestMove:
    """Test moving blocks between slots and parents."""

    def test_drop_before_sibling(self, repo: BlockRepository) -> None:
        """Dropping Y before X swaps their orders."""
        x = repo.create(kind="text", content="one")
        y = repo.create(kind="text", content="two")

        repo.move_relative(y.id, x.id, "before")

        assert repo.get_by_id(y.id).order == 0
        assert repo.get_by_id(x.id).order == 1
        assert _order_of(repo, None) == ["two", "one"]

    def test_order_is_final_index(self, repo: BlockRepository, xyz: dict[str, str]) -> None:
        repo.move(xyz["x"], None, 2)
        assert _order_of(repo, None) == ["y", "z", "x"]

    def test_order_is_clamped(self, repo: BlockRepository, xyz: dict[str, str]) -> None:
        repo.move(xyz["y"], None, 99)
        assert _order_of(repo, None) == ["x", "z", "y"]

        repo.move(xyz["y"], None, -3)
        assert _order_of(repo, None) == ["y", "x", "z"]

    def test_drop_after_last(self, repo: BlockRepository, xyz: dict[str, str]) -> None:
        repo.move_relative(xyz["x"], xyz["z"], DropHint.AFTER)
        assert _order_of(repo, None) == ["y", "z", "x"]

    def test_drop_after_earlier_sibling(self, repo: BlockRepository, xyz: dict[str, str]) -> None:
        repo.move_relative(xyz["z"], xyz["x"], "after")
        assert _order_of(repo, None) == ["x", "z", "y"]

    def test_drop_inside_becomes_first_child(self, repo: BlockRepository) -> None:
        parent = repo.create(kind="container", tag_name="examples")
        existing = repo.create(kind="text", content="old", parent_id=parent.id)
        moved = repo.create(kind="text", content="new")

        result = repo.move_relative(moved.id, parent.id, "inside")

        assert result.parent_id == parent.id
        assert (result.order, result.depth) == (0, 1)
        assert repo.get_by_id(existing.id).order == 1

    def test_move_across_parents_closes_gap(self, repo: BlockRepository) -> None:
        parent = repo.create(kind="container", tag_name="p")
        a = repo.create(kind="text", content="a", parent_id=parent.id)
        b = repo.create(kind="text", content="b", parent_id=parent.id)
        c = repo.create(kind="text", content="c", parent_id=parent.id)

        repo.move(b.id, None, 0)

        assert [blk.id for blk in repo.get_children(parent.id)] == [a.id, c.id]
        assert [blk.order for blk in repo.get_children(parent.id)] == [0, 1]
        assert _order_of(repo, None) == ["b", "p"]

    def test_subtree_depths_follow_move(self, repo: BlockRepository) -> None:
        """Moving a container re-derives depth for its whole subtree."""
        a = repo.create(kind="container", tag_name="a")
        b = repo.create(kind="container", tag_name="b", parent_id=a.id)
        c = repo.create(kind="text", content="c", parent_id=b.id)

        repo.move(b.id, None, 0)

        assert repo.get_by_id(b.id).depth == 0
        assert repo.get_by_id(c.id).depth == 1

    def test_missing_block_returns_none(self, repo: BlockRepository) -> None:
        assert repo.move("missing", None, 0) is None
        assert repo.move_relative("missing", "other", "before") is None


# =============================================================================
# Invalid Moves
# =============================================================================


class TestInvalidMove:
    """Rejected moves raise and leave the repository unchanged."""

    @pytest.fixture
    def nested(self, repo: BlockRepository) -> dict[str, str]:
        a = repo.create(kind="container", tag_name="a")
        b = repo.create(kind="container", tag_name="b", parent_id=a.id)
        t = repo.create(kind="text", content="t")
        return {"a": a.id, "b": b.id, "t": t.id}

    def _assert_rejected(self, repo: BlockRepository, reason: str, *args) -> None:
        before = [blk.to_dict() for blk in repo.get_all()]

        with pytest.raises(InvalidMoveError) as exc_info:
            repo.move(*args)

        assert exc_info.value.reason == reason
        assert [blk.to_dict() for blk in repo.get_all()] == before

    def test_into_own_child(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        self._assert_rejected(repo, "cycle", nested["a"], nested["b"], 0)

    def test_into_itself(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        self._assert_rejected(repo, "self", nested["a"], nested["a"], 0)

    def test_into_non_container(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        self._assert_rejected(repo, "not_container", nested["b"], nested["t"], 0)

    def test_into_missing_parent(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        self._assert_rejected(repo, "missing_parent", nested["t"], "gone", 0)

    def test_too_deep(self, store) -> None:
        repo = BlockRepository(store, max_depth=2)
        a = repo.create(kind="container", tag_name="a")
        b = repo.create(kind="container", tag_name="b", parent_id=a.id)
        repo.create(kind="text", content="c", parent_id=b.id)
        r = repo.create(kind="container", tag_name="r")
        s = repo.create(kind="container", tag_name="s", parent_id=r.id)

        self._assert_rejected(repo, "depth", b.id, s.id, 0)

    def test_drop_inside_text(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        with pytest.raises(InvalidMoveError) as exc_info:
            repo.move_relative(nested["b"], nested["t"], "inside")
        assert exc_info.value.reason == "not_container"

    def test_unknown_hint(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        with pytest.raises(InvalidMoveError):
            repo.move_relative(nested["t"], nested["a"], "beside")

    def test_missing_drop_target(self, repo: BlockRepository, nested: dict[str, str]) -> None:
        with pytest.raises(InvalidMoveError):
            repo.move_relative(nested["t"], "gone", "before")


# =============================================================================
# Drop Target Resolution
# =============================================================================


class TestResolveDropTarget:
    """Test (parent, order) resolution from a drop hint."""

    @pytest.fixture
    def blocks(self) -> dict[str, Block]:
        return {
            "p": _block("p"),
            "a": _block("a", kind=BlockKind.TEXT, parent_id="p", order=0, depth=1),
            "b": _block("b", kind=BlockKind.TEXT, parent_id="p", order=1, depth=1),
            "q": _block("q", order=1),
        }

    def test_inside(self, blocks: dict[str, Block]) -> None:
        assert blocks_tree.resolve_drop_target(blocks, "a", "q", "inside") == ("q", 0)

    def test_before_from_other_group(self, blocks: dict[str, Block]) -> None:
        assert blocks_tree.resolve_drop_target(blocks, "q", "b", "before") == ("p", 1)

    def test_after_from_other_group(self, blocks: dict[str, Block]) -> None:
        assert blocks_tree.resolve_drop_target(blocks, "q", "b", "after") == ("p", 2)

    def test_after_from_same_group_earlier(self, blocks: dict[str, Block]) -> None:
        """The block's own slot is discounted when it sits earlier."""
        assert blocks_tree.resolve_drop_target(blocks, "a", "b", "after") == ("p", 1)

    def test_before_from_same_group_later(self, blocks: dict[str, Block]) -> None:
        assert blocks_tree.resolve_drop_target(blocks, "b", "a", "before") == ("p", 0)


# =============================================================================
# Tree Assembly
# =============================================================================


class TestBuildTree:
    """Test nested tree views."""

    def test_nests_and_orders_children(self) -> None:
        blocks = {
            "root": _block("root"),
            "second": _block("second", kind=BlockKind.TEXT, parent_id="root", order=1, depth=1),
            "first": _block("first", kind=BlockKind.TEXT, parent_id="root", order=0, depth=1),
        }

        tree = blocks_tree.build_tree(blocks)

        assert [b.id for b in tree] == ["root"]
        assert [c.id for c in tree[0].children] == ["first", "second"]

    def test_restamps_depth(self) -> None:
        """Depth comes from position, not the stored value."""
        blocks = {
            "root": _block("root"),
            "child": _block("child", kind=BlockKind.TEXT, parent_id="root", depth=7),
        }

        tree = blocks_tree.build_tree(blocks)

        assert tree[0].children[0].depth == 1
        assert blocks["child"].depth == 7

    def test_subtree(self) -> None:
        blocks = {
            "root": _block("root"),
            "inner": _block("inner", parent_id="root", depth=1),
            "leaf": _block("leaf", kind=BlockKind.TEXT, parent_id="inner", depth=2),
        }

        subtree = blocks_tree.build_tree(blocks, "inner")

        assert [b.id for b in subtree] == ["leaf"]
        assert subtree[0].depth == 2

    def test_cycle_raises(self) -> None:
        """Corrupted parent pointers fail closed instead of looping."""
        blocks = {
            "a": _block("a", parent_id="b", depth=1),
            "b": _block("b", parent_id="a", depth=1),
        }

        with pytest.raises(StructuralCorruptionError):
            blocks_tree.build_tree(blocks, "a")
        with pytest.raises(StructuralCorruptionError):
            blocks_tree.get_ancestors(blocks, "a")
        with pytest.raises(StructuralCorruptionError):
            blocks_tree.get_descendants(blocks, "a")

    def test_cycle_away_from_roots_raises(self) -> None:
        """A loop no root reaches still fails the full tree view."""
        blocks = {
            "r": _block("r"),
            "a": _block("a", parent_id="b", depth=1),
            "b": _block("b", parent_id="a", depth=1),
        }

        with pytest.raises(StructuralCorruptionError):
            blocks_tree.build_tree(blocks)

    def test_block_under_missing_parent_is_left_out(self, caplog: pytest.LogCaptureFixture) -> None:
        blocks = {
            "r": _block("r"),
            "lost": _block("lost", kind=BlockKind.TEXT, parent_id="gone", depth=1),
        }

        with caplog.at_level(logging.WARNING):
            tree = blocks_tree.build_tree(blocks)

        assert [b.id for b in tree] == ["r"]
        assert "lost" in caplog.text

    def test_flatten_is_depth_first(self) -> None:
        blocks = {
            "a": _block("a"),
            "a1": _block("a1", kind=BlockKind.TEXT, parent_id="a", depth=1),
            "b": _block("b", order=1),
        }

        flat = blocks_tree.flatten_tree(blocks_tree.build_tree(blocks))

        assert [b.id for b in flat] == ["a", "a1", "b"]


# =============================================================================
# Integrity
# =============================================================================


class TestIntegrityProblems:
    """Test invariant checks used on import."""

    def test_sound_map(self) -> None:
        blocks = {
            "a": _block("a"),
            "b": _block("b", kind=BlockKind.TEXT, parent_id="a", depth=1),
        }
        assert blocks_tree.find_integrity_problems(blocks, max_depth=10) == []

    def test_order_gap(self) -> None:
        blocks = {"a": _block("a"), "b": _block("b", order=2)}
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=10)
        assert any("orders" in p for p in problems)

    def test_depth_mismatch(self) -> None:
        blocks = {"a": _block("a"), "b": _block("b", kind=BlockKind.TEXT, parent_id="a", depth=3)}
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=10)
        assert any("expected 1" in p for p in problems)

    def test_dangling_parent(self) -> None:
        blocks = {"b": _block("b", kind=BlockKind.TEXT, parent_id="gone", depth=1)}
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=10)
        assert any("missing parent" in p for p in problems)

    def test_non_container_parent(self) -> None:
        blocks = {
            "t": _block("t", kind=BlockKind.TEXT),
            "c": _block("c", kind=BlockKind.TEXT, parent_id="t", depth=1),
        }
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=10)
        assert any("non-container" in p for p in problems)

    def test_cycle(self) -> None:
        blocks = {
            "a": _block("a", parent_id="b", depth=1),
            "b": _block("b", parent_id="a", depth=1),
        }
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=10)
        assert any("own ancestor" in p for p in problems)

    def test_too_deep(self) -> None:
        blocks = {
            "a": _block("a"),
            "b": _block("b", parent_id="a", depth=1),
            "c": _block("c", kind=BlockKind.TEXT, parent_id="b", depth=2),
        }
        problems = blocks_tree.find_integrity_problems(blocks, max_depth=1)
        assert any("levels deep" in p for p in problems)
