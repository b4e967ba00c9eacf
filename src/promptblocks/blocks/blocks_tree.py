"""Tree operations for block hierarchy.

This module provides operations over a flat {id: Block} map:
- Getting ancestors, descendants and children
- Assembling the nested tree view
- Validating and placing moves between parents
- Restoring the order/depth invariants after any structural change

Every function here is pure with respect to storage: callers hand in a
working copy of the block collection and persist it themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import InvalidMoveError, StructuralCorruptionError
from .blocks_models import Block, DropHint

logger = logging.getLogger(__name__)

BlockMap = dict[str, Block]


def _sibling_key(block: Block) -> tuple[int, str, str]:
    # Ties only happen on corrupted data; fall back to creation then id
    return (block.order, block.created_at, block.id)


# =============================================================================
# Ancestor/Descendant Operations
# =============================================================================


def get_children(blocks: BlockMap, parent_id: str | None) -> list[Block]:
    """Get the direct children of a parent (None for roots), ordered."""
    children = [b for b in blocks.values() if b.parent_id == parent_id]
    return sorted(children, key=_sibling_key)


def get_ancestors(blocks: BlockMap, block_id: str) -> list[Block]:
    """Get all ancestors of a block, from immediate parent to root.

    Raises:
        StructuralCorruptionError: If the parent chain loops back on itself.
    """
    ancestors = []
    seen = {block_id}
    block = blocks.get(block_id)

    while block is not None and block.parent_id is not None:
        if block.parent_id in seen:
            raise StructuralCorruptionError(
                f"Block {block.parent_id} is its own ancestor",
                block_id=block.parent_id,
            )
        parent = blocks.get(block.parent_id)
        if parent is None:
            break
        seen.add(parent.id)
        ancestors.append(parent)
        block = parent

    return ancestors


def is_descendant(blocks: BlockMap, block_id: str, ancestor_id: str) -> bool:
    """Check whether block_id sits somewhere below ancestor_id."""
    return any(a.id == ancestor_id for a in get_ancestors(blocks, block_id))


def get_descendants(blocks: BlockMap, block_id: str) -> list[Block]:
    """Get all descendants of a block (depth-first, children in order)."""
    descendants: list[Block] = []
    _collect_descendants(blocks, block_id, descendants, {block_id})
    return descendants


def _collect_descendants(blocks: BlockMap, parent_id: str, result: list[Block], path: set[str]) -> None:
    """Recursively collect descendants."""
    for child in get_children(blocks, parent_id):
        if child.id in path:
            raise StructuralCorruptionError(f"Block {child.id} is its own ancestor", block_id=child.id)
        result.append(child)
        _collect_descendants(blocks, child.id, result, path | {child.id})


def subtree_height(blocks: BlockMap, block_id: str) -> int:
    """Number of levels below a block (0 for a leaf)."""
    height = 0
    base = {block_id: 0}
    for desc in get_descendants(blocks, block_id):
        level = base[desc.parent_id] + 1
        base[desc.id] = level
        height = max(height, level)
    return height


# =============================================================================
# Invariant Maintenance
# =============================================================================


def renumber_and_redepth(blocks: BlockMap, parent_ids: Iterable[str | None], now: str) -> None:
    """Restore the order and depth invariants for the given sibling groups.

    Orders become 0..n-1 in current sibling order; each child's depth (and
    its whole subtree) is re-derived from its parent. Every structural
    mutation funnels through here.
    """
    for parent_id in dict.fromkeys(parent_ids):
        if parent_id is None:
            base_depth = 0
        elif parent_id in blocks:
            base_depth = blocks[parent_id].depth + 1
        else:
            # Group was deleted along with its parent
            continue

        for index, child in enumerate(get_children(blocks, parent_id)):
            if child.order != index:
                child.order = index
                child.updated_at = now
            _redepth(blocks, child, base_depth, now, {child.id})


def _redepth(blocks: BlockMap, block: Block, depth: int, now: str, path: set[str]) -> None:
    if block.depth != depth:
        block.depth = depth
        block.updated_at = now
    for child in get_children(blocks, block.id):
        if child.id in path:
            raise StructuralCorruptionError(f"Block {child.id} is its own ancestor", block_id=child.id)
        _redepth(blocks, child, depth + 1, now, path | {child.id})


# =============================================================================
# Move Operations
# =============================================================================


def validate_move(
    blocks: BlockMap,
    block_id: str,
    new_parent_id: str | None,
    *,
    max_depth: int,
) -> None:
    """Check that a block may be re-parented under new_parent_id.

    Raises:
        InvalidMoveError: On a cycle, a non-container or missing target, or
            when the moved subtree would exceed max_depth.
    """
    block = blocks[block_id]

    if new_parent_id is None:
        new_depth = 0
    else:
        if new_parent_id == block_id:
            raise InvalidMoveError(
                "Cannot move block into itself",
                block_id=block_id,
                target_id=new_parent_id,
                reason="self",
            )

        parent = blocks.get(new_parent_id)
        if parent is None:
            raise InvalidMoveError(
                f"Target parent not found: {new_parent_id}",
                block_id=block_id,
                target_id=new_parent_id,
                reason="missing_parent",
            )

        if is_descendant(blocks, new_parent_id, block_id):
            raise InvalidMoveError(
                "Cannot move block into its own descendant",
                block_id=block_id,
                target_id=new_parent_id,
                reason="cycle",
            )

        if not parent.is_container():
            raise InvalidMoveError(
                f"Parent block kind '{parent.kind.value}' does not support children",
                block_id=block_id,
                target_id=new_parent_id,
                reason="not_container",
            )

        new_depth = parent.depth + 1

    deepest = new_depth + subtree_height(blocks, block.id)
    if deepest > max_depth:
        raise InvalidMoveError(
            f"Move would nest blocks {deepest} levels deep (max {max_depth})",
            block_id=block_id,
            target_id=new_parent_id,
            reason="depth",
        )


def place_block(
    blocks: BlockMap,
    block_id: str,
    new_parent_id: str | None,
    new_order: int,
    now: str,
) -> Block:
    """Move a block to index new_order under new_parent_id.

    Siblings at or after new_order in the target group shift down by one;
    the gap left in the old group closes. new_order is clamped to the
    target group's bounds. Call validate_move first.
    """
    block = blocks[block_id]
    old_parent_id = block.parent_id

    siblings = [b for b in get_children(blocks, new_parent_id) if b.id != block_id]
    index = max(0, min(new_order, len(siblings)))
    siblings.insert(index, block)

    block.parent_id = new_parent_id
    block.updated_at = now
    for position, sibling in enumerate(siblings):
        if sibling.order != position:
            sibling.order = position
            sibling.updated_at = now

    renumber_and_redepth(blocks, [old_parent_id, new_parent_id], now)
    return block


def resolve_drop_target(
    blocks: BlockMap,
    block_id: str,
    target_id: str,
    hint: DropHint | str,
) -> tuple[str | None, int]:
    """Turn a drop on target_id with a directional hint into (parent_id, order).

    - inside: first child of the target (target must be a container)
    - before: the target's slot in its sibling group
    - after: the slot following the target

    The returned order is a final index, so when the dragged block already
    sits earlier in the same group the slot is shifted back by one.

    Raises:
        InvalidMoveError: If the target is missing, the hint is unknown, or
            'inside' names a non-container.
    """
    target = blocks.get(target_id)
    if target is None:
        raise InvalidMoveError(
            f"Drop target not found: {target_id}",
            block_id=block_id,
            target_id=target_id,
            reason="missing_target",
        )

    try:
        hint = DropHint(hint)
    except ValueError as exc:
        raise InvalidMoveError(
            f"Unknown drop hint: {hint!r}",
            block_id=block_id,
            target_id=target_id,
            reason="hint",
        ) from exc

    if hint == DropHint.INSIDE:
        if not target.is_container():
            raise InvalidMoveError(
                f"Cannot drop inside a '{target.kind.value}' block",
                block_id=block_id,
                target_id=target_id,
                reason="not_container",
            )
        return target.id, 0

    parent_id = target.parent_id
    order = target.order if hint == DropHint.BEFORE else target.order + 1

    block = blocks.get(block_id)
    if block is not None and block.parent_id == parent_id and block.order < order:
        order -= 1

    return parent_id, order


# =============================================================================
# Tree Assembly
# =============================================================================


def build_tree(blocks: BlockMap, root_parent_id: str | None = None) -> list[Block]:
    """Build a nested tree view from a flat block map.

    Returns detached copies: each node's children are ordered by order and
    its depth is re-stamped from its position in the recursion, whatever
    the stored value says.

    Args:
        blocks: Flat block map.
        root_parent_id: Build only the subtree under this block (None for
            the whole document).

    Raises:
        StructuralCorruptionError: If a block turns out to be its own ancestor.
    """
    by_parent: dict[str | None, list[Block]] = {}
    for block in blocks.values():
        by_parent.setdefault(block.parent_id, []).append(block)
    for group in by_parent.values():
        group.sort(key=_sibling_key)

    if root_parent_id is None:
        start_depth = 0
        path: frozenset[str] = frozenset()
    else:
        start_depth = len(get_ancestors(blocks, root_parent_id)) + 1
        path = frozenset({root_parent_id})

    tree = _assemble(by_parent, root_parent_id, start_depth, path)

    if root_parent_id is None:
        reached = {node.id for node in flatten_tree(tree)}
        if len(reached) < len(blocks):
            _check_unreached(blocks, reached)

    return tree


def _check_unreached(blocks: BlockMap, reached: set[str]) -> None:
    """Raise for loops cut off from every root; log blocks under missing parents."""
    for block in blocks.values():
        if block.id in reached:
            continue
        try:
            get_ancestors(blocks, block.id)
        except StructuralCorruptionError:
            logger.error("Cycle detected at block %s, unreachable from any root", block.id)
            raise
        logger.warning("Block %s is not under any root (parent %s) and is not shown", block.id, block.parent_id)


def _assemble(
    by_parent: dict[str | None, list[Block]],
    parent_id: str | None,
    depth: int,
    path: frozenset[str],
) -> list[Block]:
    nodes = []
    for block in by_parent.get(parent_id, []):
        if block.id in path:
            logger.error("Cycle detected at block %s while building tree", block.id)
            raise StructuralCorruptionError(f"Block {block.id} is its own ancestor", block_id=block.id)
        node = block.copy()
        node.depth = depth
        node.children = _assemble(by_parent, block.id, depth + 1, path | {block.id})
        nodes.append(node)
    return nodes


def flatten_tree(root_blocks: list[Block]) -> list[Block]:
    """Flatten a tree of blocks to a depth-first list."""
    result: list[Block] = []
    for block in root_blocks:
        _flatten_recursive(block, result)
    return result


def _flatten_recursive(block: Block, result: list[Block]) -> None:
    result.append(block)
    for child in block.children:
        _flatten_recursive(child, result)


# =============================================================================
# Integrity
# =============================================================================


def find_integrity_problems(blocks: BlockMap, *, max_depth: int) -> list[str]:
    """List every way a block map breaks the tree invariants.

    Checks dangling parents, non-container parents, cycles, order gaps or
    duplicates, depth disagreement and depth overflow. Empty list means sound.
    """
    problems: list[str] = []

    for block in blocks.values():
        if block.parent_id is None:
            continue
        parent = blocks.get(block.parent_id)
        if parent is None:
            problems.append(f"Block {block.id} references missing parent {block.parent_id}")
        elif not parent.is_container():
            problems.append(f"Block {block.id} is a child of non-container {parent.id}")

    for block in blocks.values():
        try:
            ancestors = get_ancestors(blocks, block.id)
        except StructuralCorruptionError as e:
            problems.append(e.message)
            continue
        if block.depth != len(ancestors):
            problems.append(f"Block {block.id} has depth {block.depth}, expected {len(ancestors)}")
        if len(ancestors) > max_depth:
            problems.append(f"Block {block.id} is nested {len(ancestors)} levels deep (max {max_depth})")

    groups: dict[str | None, list[int]] = {}
    for block in blocks.values():
        groups.setdefault(block.parent_id, []).append(block.order)
    for parent_id, orders in groups.items():
        if sorted(orders) != list(range(len(orders))):
            scope = parent_id or "root"
            problems.append(f"Children of {scope} have orders {sorted(orders)}, expected 0..{len(orders) - 1}")

    return problems
