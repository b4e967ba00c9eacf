"""Export and import of the whole data set as one JSON document.

The aggregate document holds every collection plus the settings and
metadata records:

    {
      "snippets": {...}, "categories": {...}, "tags": {...},
      "promptBlocks": {...}, "settings": {...}, "metadata": {...}
    }

Import replaces each collection present in the document and leaves absent
ones alone. The document is validated in full before anything is written,
and all collections are then written in a single store write.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .blocks.blocks_models import Block, BlockKind
from .blocks.blocks_tree import find_integrity_problems
from .errors import DataImportError, ValidationError
from .fragments import Fragment
from .preferences import AppSettings, get_metadata, get_settings
from .settings import settings
from .storage import (
    CATEGORIES,
    COLLECTION_KEYS,
    METADATA,
    PROMPT_BLOCKS,
    SETTINGS,
    SNIPPETS,
    TAGS,
    Store,
    _now_iso,
)

logger = logging.getLogger(__name__)

# Collections an import may replace (metadata always stays local)
IMPORTABLE_KEYS = (SNIPPETS, CATEGORIES, TAGS, PROMPT_BLOCKS, SETTINGS)


def export_all(store: Store, *, now: str | None = None) -> str:
    """Serialise every collection to a JSON document.

    Stamps metadata.lastBackupAt with the export time.
    """
    metadata = get_metadata(store)
    metadata.last_backup_at = now or _now_iso()
    store.save_many({METADATA: metadata.to_dict()}, touch=False)

    data = {
        SNIPPETS: store.load(SNIPPETS),
        CATEGORIES: store.load(CATEGORIES),
        TAGS: store.load(TAGS),
        PROMPT_BLOCKS: store.load(PROMPT_BLOCKS),
        SETTINGS: get_settings(store).to_dict(),
        METADATA: metadata.to_dict(),
    }

    logger.info(
        "Exported %d blocks and %d fragments",
        len(data[PROMPT_BLOCKS]),
        len(data[SNIPPETS]),
    )
    return json.dumps(data, indent=2)


def import_all(store: Store, text: str, *, max_depth: int | None = None) -> list[str]:
    """Replace collections from an exported JSON document.

    Any BlockRepository built on the same store must be reload()-ed after.

    Returns:
        Keys of the collections that were replaced.

    Raises:
        DataImportError: If the document is malformed. Nothing is written.
        StorageError: If the store rejects the write.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise DataImportError("Invalid data format", reason=f"not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DataImportError("Invalid data format", reason="document is not an object")

    collections: dict[str, dict[str, Any]] = {}
    for key in IMPORTABLE_KEYS:
        if data.get(key) is None:
            continue
        if not isinstance(data[key], dict):
            raise DataImportError("Invalid data format", reason=f"{key} is not an object")
        collections[key] = data[key]

    if PROMPT_BLOCKS in collections:
        _check_blocks(collections[PROMPT_BLOCKS], settings.max_depth if max_depth is None else max_depth)
    if SNIPPETS in collections:
        _check_fragments(collections[SNIPPETS])
    if SETTINGS in collections:
        try:
            collections[SETTINGS] = AppSettings.from_dict(collections[SETTINGS]).to_dict()
        except (TypeError, ValidationError) as e:
            raise DataImportError("Invalid data format", reason=f"settings: {e}") from e
    for key in (CATEGORIES, TAGS):
        if key in collections:
            _check_records(key, collections[key])

    store.save_many(collections)
    logger.info("Imported collections: %s", ", ".join(collections) or "none")
    return list(collections)


def clear_all(store: Store) -> None:
    """Remove every collection and start fresh metadata."""
    for key in COLLECTION_KEYS:
        store.delete(key)
    get_metadata(store)
    logger.info("Cleared all stored data")


def _check_records(key: str, records: dict[str, Any]) -> None:
    for record_id, record in records.items():
        if not isinstance(record, dict):
            raise DataImportError("Invalid data format", reason=f"{key}.{record_id} is not an object")
        if record.get("id", record_id) != record_id:
            raise DataImportError("Invalid data format", reason=f"{key}.{record_id} has mismatched id")


def _check_blocks(records: dict[str, Any], max_depth: int) -> None:
    _check_records(PROMPT_BLOCKS, records)
    blocks = {}
    for record_id, record in records.items():
        try:
            blocks[record_id] = Block.from_dict(record)
        except (ValueError, TypeError) as e:
            raise DataImportError("Invalid data format", reason=f"block {record_id}: {e}") from e

    for block in blocks.values():
        if block.kind == BlockKind.CONTAINER and not block.tag_name:
            raise DataImportError("Invalid data format", reason=f"container {block.id} has no tag name")
        if block.kind == BlockKind.FRAGMENT_REF and not block.fragment_id:
            raise DataImportError("Invalid data format", reason=f"fragment block {block.id} has no fragment id")

    problems = find_integrity_problems(blocks, max_depth=max_depth)
    if problems:
        raise DataImportError("Invalid data format", reason=problems[0])


def _check_fragments(records: dict[str, Any]) -> None:
    _check_records(SNIPPETS, records)
    for record_id, record in records.items():
        try:
            Fragment.from_dict(record)
        except (KeyError, TypeError, ValueError) as e:
            raise DataImportError("Invalid data format", reason=f"fragment {record_id}: {e}") from e
