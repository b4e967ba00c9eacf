"""Block-based prompt document.

Key components:
- blocks_models: Block, BlockKind, DropHint dataclasses
- blocks_tree: Tree operations (ancestors, moves, assembly, integrity)
- blocks_store: BlockRepository with CRUD and move operations
- xml_renderer: Blocks -> XML-like prompt text
"""

from .blocks_models import Block, BlockKind, DropHint
from .blocks_store import BlockRepository
from .blocks_tree import (
    build_tree,
    find_integrity_problems,
    flatten_tree,
    get_ancestors,
    get_children,
    get_descendants,
    resolve_drop_target,
)
from .xml_renderer import RenderedLine, RenderOptions, line_index, render, render_lines

__all__ = [
    "Block",
    "BlockKind",
    "DropHint",
    "BlockRepository",
    "build_tree",
    "find_integrity_problems",
    "flatten_tree",
    "get_ancestors",
    "get_children",
    "get_descendants",
    "resolve_drop_target",
    "RenderedLine",
    "RenderOptions",
    "line_index",
    "render",
    "render_lines",
]
