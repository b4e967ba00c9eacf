"""Prompt Blocks - compose structured LLM prompts from a tree of blocks.

A prompt is a tree of text, fragment-reference and container blocks that
renders to XML-like markup. Blocks, reusable fragments, settings and
metadata persist as keyed collections in a local store.
"""

from .blocks import Block, BlockKind, BlockRepository, DropHint, RenderOptions, render
from .errors import (
    DataImportError,
    InvalidMoveError,
    NotFoundError,
    PromptBlocksError,
    StorageError,
    StructuralCorruptionError,
    ValidationError,
)
from .fragments import Fragment, FragmentCatalog
from .storage import MemoryStore, SqliteStore, Store

__version__ = "0.1.0"

__all__ = [
    "Block",
    "BlockKind",
    "BlockRepository",
    "DropHint",
    "RenderOptions",
    "render",
    "DataImportError",
    "InvalidMoveError",
    "NotFoundError",
    "PromptBlocksError",
    "StorageError",
    "StructuralCorruptionError",
    "ValidationError",
    "Fragment",
    "FragmentCatalog",
    "MemoryStore",
    "SqliteStore",
    "Store",
]
