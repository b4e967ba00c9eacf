"""Data models for the block-based prompt document.

This module defines the core data structures for prompt blocks.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BlockKind(str, Enum):
    """Supported block kinds."""

    # Inline text typed into the document
    TEXT = "text"

    # Reference to a reusable fragment from the catalog
    FRAGMENT_REF = "fragmentRef"

    # Tag pair that holds ordered children
    CONTAINER = "container"


class DropHint(str, Enum):
    """Where a dragged block lands relative to the drop target."""

    INSIDE = "inside"
    BEFORE = "before"
    AFTER = "after"


# Fields callers may change through update(); structure only moves via move()
EDITABLE_FIELDS = frozenset({"kind", "content", "fragment_id", "tag_name", "attributes", "collapsed"})
STRUCTURAL_FIELDS = frozenset({"parent_id", "order", "depth"})


@dataclass
class Block:
    """A node in the prompt document tree.

    Blocks are stored flat, linked by parent_id and ordered among siblings
    by order. The children list is only populated on tree views and is never
    persisted.
    """

    id: str
    kind: BlockKind

    # Content
    content: str = ""
    fragment_id: str | None = None
    tag_name: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    # Hierarchy
    parent_id: str | None = None
    order: int = 0
    depth: int = 0

    # Display only
    collapsed: bool = False

    # Timestamps
    created_at: str = ""
    updated_at: str = ""

    # Children (tree views only)
    children: list[Block] = field(default_factory=list)

    def to_dict(self, include_children: bool = False) -> dict[str, Any]:
        """Convert to a persisted record."""
        result = {
            "id": self.id,
            "kind": self.kind.value if isinstance(self.kind, BlockKind) else self.kind,
            "content": self.content,
            "fragmentId": self.fragment_id,
            "tagName": self.tag_name,
            "attributes": dict(self.attributes),
            "parentId": self.parent_id,
            "order": self.order,
            "depth": self.depth,
            "collapsed": self.collapsed,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if include_children:
            result["children"] = [child.to_dict(include_children=True) for child in self.children]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Block:
        """Create from a persisted record.

        Raises:
            ValueError: If the record is missing fields or holds bad values.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Block record must be a mapping, got {type(data).__name__}")

        block_id = data.get("id")
        if not isinstance(block_id, str) or not block_id:
            raise ValueError("Block record has no id")

        kind = BlockKind(data.get("kind"))

        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in attributes.items()
        ):
            raise ValueError(f"Block {block_id} has non-string attributes")

        order = data.get("order", 0)
        depth = data.get("depth", 0)
        for name, value in (("order", order), ("depth", depth)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"Block {block_id} has invalid {name}: {value!r}")

        # Every text field is a string or null; null reads as the default
        text = {}
        for key in ("content", "fragmentId", "tagName", "parentId", "createdAt", "updatedAt"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"Block {block_id} has non-string {key}: {value!r}")
            text[key] = value

        collapsed = data.get("collapsed", False)
        if not isinstance(collapsed, bool):
            raise ValueError(f"Block {block_id} has non-boolean collapsed: {collapsed!r}")

        return cls(
            id=block_id,
            kind=kind,
            content=text["content"] or "",
            fragment_id=text["fragmentId"],
            tag_name=text["tagName"],
            attributes=dict(attributes),
            parent_id=text["parentId"],
            order=order,
            depth=depth,
            collapsed=collapsed,
            created_at=text["createdAt"] or "",
            updated_at=text["updatedAt"] or "",
            children=[Block.from_dict(child) for child in data.get("children", [])],
        )

    def copy(self) -> Block:
        """Detached copy without children."""
        clone = copy.copy(self)
        clone.attributes = dict(self.attributes)
        clone.children = []
        return clone

    def is_container(self) -> bool:
        """Check if this block may hold children."""
        return self.kind == BlockKind.CONTAINER

    def has_children(self) -> bool:
        """Check if this block has any children loaded."""
        return len(self.children) > 0
