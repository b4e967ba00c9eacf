"""Repository operations for prompt blocks.

This module provides CRUD and move operations for the block collection.
A BlockRepository is constructed once per session around a Store and
handed to every consumer; there is no module-level instance.

Each mutation works on a copy of the cached collection, writes it back
with a single save, and only then replaces the cache. A rejected write
therefore leaves the repository exactly as it was.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

from ..errors import ValidationError
from ..settings import settings
from ..storage import PROMPT_BLOCKS, Store, _now_iso
from . import blocks_tree
from .blocks_models import EDITABLE_FIELDS, STRUCTURAL_FIELDS, Block, BlockKind, DropHint
from .blocks_tree import BlockMap

logger = logging.getLogger(__name__)


def _new_id() -> str:
    """Generate a new unique block ID."""
    return str(uuid4())


class BlockRepository:
    """Keyed storage of blocks that keeps the tree invariants.

    Args:
        store: Persistence collaborator holding the block collection.
        max_depth: Deepest allowed nesting level (roots are depth 0).
    """

    def __init__(self, store: Store, *, max_depth: int | None = None) -> None:
        self.store = store
        self.max_depth = settings.max_depth if max_depth is None else max_depth
        self._blocks: BlockMap | None = None

    # =========================================================================
    # Loading and committing
    # =========================================================================

    def _load(self) -> BlockMap:
        if self._blocks is None:
            self._blocks = self._read_collection()
        return self._blocks

    def _read_collection(self) -> BlockMap:
        records = self.store.load(PROMPT_BLOCKS)
        blocks: BlockMap = {}
        try:
            for record in records.values():
                block = Block.from_dict(record)
                blocks[block.id] = block
        except (ValueError, TypeError) as e:
            logger.warning("Block collection is unreadable, treating as empty: %s", e)
            return {}
        return blocks

    @contextmanager
    def _mutation(self) -> Iterator[BlockMap]:
        """Yield a working copy of the collection; persist it on clean exit."""
        working = {block_id: block.copy() for block_id, block in self._load().items()}
        yield working
        self.store.save(PROMPT_BLOCKS, {block_id: b.to_dict() for block_id, b in working.items()})
        self._blocks = working

    def reload(self) -> None:
        """Forget the cached collection and re-read it from the store."""
        self._blocks = None

    # =========================================================================
    # Reads
    # =========================================================================

    def get_all(self) -> list[Block]:
        """Get every block, grouped by parent and ordered among siblings."""
        blocks = self._load()
        return [b.copy() for b in sorted(blocks.values(), key=lambda b: (b.depth, b.parent_id or "", b.order))]

    def get_by_id(self, block_id: str) -> Block | None:
        """Get a block by ID, or None if absent."""
        block = self._load().get(block_id)
        return block.copy() if block else None

    def get_children(self, parent_id: str | None) -> list[Block]:
        """Get the children of a parent (None for root blocks), ordered."""
        return [b.copy() for b in blocks_tree.get_children(self._load(), parent_id)]

    def count(self) -> int:
        """Number of stored blocks."""
        return len(self._load())

    def __len__(self) -> int:
        return self.count()

    def build_tree(self, root_parent_id: str | None = None) -> list[Block]:
        """Assemble the nested tree view (see blocks_tree.build_tree)."""
        return blocks_tree.build_tree(self._load(), root_parent_id)

    def broken_fragment_refs(self, lookup: Callable[[str], str | None]) -> list[Block]:
        """Fragment references whose fragment no longer resolves."""
        return [
            b.copy()
            for b in self._load().values()
            if b.kind == BlockKind.FRAGMENT_REF and (not b.fragment_id or lookup(b.fragment_id) is None)
        ]

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(
        self,
        *,
        kind: BlockKind | str,
        content: str = "",
        fragment_id: str | None = None,
        tag_name: str | None = None,
        attributes: dict[str, str] | None = None,
        parent_id: str | None = None,
        collapsed: bool = False,
    ) -> Block:
        """Create a new block as the last child of parent_id.

        Args:
            kind: Block kind ('text', 'fragmentRef' or 'container').
            content: Inline text for text blocks.
            fragment_id: Catalog fragment for fragmentRef blocks.
            tag_name: Markup tag (required for containers).
            attributes: Tag attributes.
            parent_id: Parent container ID, or None for a root block.
            collapsed: Initial display state.

        Returns:
            The created Block with its ID, order and depth.

        Raises:
            ValidationError: If the input is malformed or too deeply nested.
        """
        kind = _coerce_kind(kind)
        attributes = _check_attributes(attributes)
        content = _check_text("content", content) or ""
        tag_name = _check_text("tag_name", tag_name)
        tag_name = tag_name.strip() if tag_name else None
        fragment_id = _check_text("fragment_id", fragment_id)
        collapsed = _check_flag("collapsed", collapsed)
        _check_content(kind, tag_name, fragment_id)

        now = _now_iso()

        with self._mutation() as blocks:
            depth = 0
            if parent_id is not None:
                parent = blocks.get(parent_id)
                if parent is None:
                    raise ValidationError(f"Parent block not found: {parent_id}", field="parent_id", value=parent_id)
                if not parent.is_container():
                    raise ValidationError(
                        f"Parent block kind '{parent.kind.value}' does not support children",
                        field="parent_id",
                        value=parent_id,
                    )
                depth = parent.depth + 1

            if depth > self.max_depth:
                raise ValidationError(
                    f"Block would be nested {depth} levels deep",
                    field="depth",
                    value=depth,
                    constraint=f"max={self.max_depth}",
                )

            block = Block(
                id=_new_id(),
                kind=kind,
                content=content,
                fragment_id=fragment_id,
                tag_name=tag_name,
                attributes=attributes,
                parent_id=parent_id,
                order=len(blocks_tree.get_children(blocks, parent_id)),
                depth=depth,
                collapsed=collapsed,
                created_at=now,
                updated_at=now,
            )
            blocks[block.id] = block

        logger.debug("Created %s block %s under %s", kind.value, block.id, parent_id)
        return block.copy()

    def update(self, block_id: str, changes: dict[str, Any] | None = None, **fields: Any) -> Block | None:
        """Merge field changes into a block.

        Accepts the editable fields (kind, content, fragment_id, tag_name,
        attributes, collapsed). 'id' is ignored; parent_id, order and depth
        are ignored too since structure only changes through move().

        Returns:
            Updated Block, or None if block_id is absent.

        Raises:
            ValidationError: On unknown fields or an invalid resulting block.
        """
        changes = {**(changes or {}), **fields}
        changes.pop("id", None)

        ignored = sorted(STRUCTURAL_FIELDS.intersection(changes))
        if ignored:
            logger.warning("Ignoring structural fields %s in update of %s; use move()", ignored, block_id)
            for name in ignored:
                changes.pop(name)

        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown block fields: {', '.join(unknown)}", field=unknown[0])

        if block_id not in self._load():
            return None

        with self._mutation() as blocks:
            block = blocks[block_id]

            kind = _coerce_kind(changes.get("kind", block.kind))
            tag_name = _check_text("tag_name", changes.get("tag_name", block.tag_name))
            tag_name = tag_name.strip() if tag_name else None
            fragment_id = _check_text("fragment_id", changes.get("fragment_id", block.fragment_id))
            _check_content(kind, tag_name, fragment_id)

            if kind != BlockKind.CONTAINER and blocks_tree.get_children(blocks, block_id):
                raise ValidationError(
                    "Blocks with children must stay containers",
                    field="kind",
                    value=kind.value,
                )

            block.kind = kind
            block.tag_name = tag_name
            block.fragment_id = fragment_id
            if "content" in changes:
                block.content = _check_text("content", changes["content"]) or ""
            if "attributes" in changes:
                block.attributes = _check_attributes(changes["attributes"])
            if "collapsed" in changes:
                block.collapsed = _check_flag("collapsed", changes["collapsed"])
            block.updated_at = _now_iso()

        logger.debug("Updated block %s: %s", block_id, sorted(changes))
        return block.copy()

    def toggle_collapse(self, block_id: str) -> Block | None:
        """Flip a block's collapsed flag."""
        block = self._load().get(block_id)
        if block is None:
            return None
        return self.update(block_id, collapsed=not block.collapsed)

    def delete(self, block_id: str) -> bool:
        """Delete a block and its whole subtree.

        Returns:
            True if deleted, False if not found.

        Raises:
            StructuralCorruptionError: If the subtree's parent pointers loop.
        """
        if block_id not in self._load():
            return False

        with self._mutation() as blocks:
            parent_id = blocks[block_id].parent_id
            descendants = blocks_tree.get_descendants(blocks, block_id)
            # Deepest first, so no child outlives its parent
            for desc in reversed(descendants):
                del blocks[desc.id]
            del blocks[block_id]
            blocks_tree.renumber_and_redepth(blocks, [parent_id], _now_iso())

        logger.debug("Deleted block %s and %d descendants", block_id, len(descendants))
        return True

    def move(self, block_id: str, new_parent_id: str | None, new_order: int) -> Block | None:
        """Move a block to a new parent and/or position.

        Args:
            block_id: The block to move.
            new_parent_id: New parent container ID (None for root level).
            new_order: Final index among the new siblings (clamped).

        Returns:
            Updated block, or None if block_id is absent.

        Raises:
            InvalidMoveError: If the move would create a cycle, target a
                non-container, or nest the subtree too deeply.
        """
        if block_id not in self._load():
            return None

        with self._mutation() as blocks:
            blocks_tree.validate_move(blocks, block_id, new_parent_id, max_depth=self.max_depth)
            block = blocks_tree.place_block(blocks, block_id, new_parent_id, new_order, _now_iso())

        logger.debug("Moved block %s to %s at %d", block_id, new_parent_id, block.order)
        return block.copy()

    def move_relative(self, block_id: str, target_id: str, hint: DropHint | str) -> Block | None:
        """Move a block relative to a drop target ('inside', 'before', 'after')."""
        blocks = self._load()
        if block_id not in blocks:
            return None
        new_parent_id, new_order = blocks_tree.resolve_drop_target(blocks, block_id, target_id, hint)
        return self.move(block_id, new_parent_id, new_order)


# =============================================================================
# Validation helpers
# =============================================================================


def _coerce_kind(kind: BlockKind | str) -> BlockKind:
    try:
        return BlockKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown block kind: {kind}", field="kind", value=kind) from exc


def _check_content(kind: BlockKind, tag_name: str | None, fragment_id: str | None) -> None:
    if kind == BlockKind.CONTAINER and not tag_name:
        raise ValidationError("Container blocks need a tag name", field="tag_name", constraint="non-empty")
    if kind == BlockKind.FRAGMENT_REF and not fragment_id:
        raise ValidationError("Fragment blocks need a fragment id", field="fragment_id", constraint="non-empty")


def _check_text(name: str, value: Any) -> str | None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", field=name, value=value)
    return value


def _check_flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false", field=name, value=value)
    return value


def _check_attributes(attributes: dict[str, str] | None) -> dict[str, str]:
    if not attributes:
        return {}
    if not isinstance(attributes, dict):
        raise ValidationError("Attributes must be a mapping", field="attributes")
    for key, value in attributes.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("Attribute names must be non-empty strings", field="attributes", value=key)
        if not isinstance(value, str):
            raise ValidationError(f"Attribute {key} must be a string", field="attributes", value=value)
    return dict(attributes)
