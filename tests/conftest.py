from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from promptblocks.blocks.blocks_store import BlockRepository
from promptblocks.errors import StorageError
from promptblocks.fragments import FragmentCatalog
from promptblocks.storage import MemoryStore, SqliteStore


class FailingStore(MemoryStore):
    """MemoryStore whose writes can be switched to fail, like a full disk."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def _write_many(self, payload: dict[str, str]) -> None:
        if self.fail_writes:
            raise StorageError("Quota exceeded", operation="write", key=",".join(sorted(payload)))
        super()._write_many(payload)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[SqliteStore]:
    """SQLite store in a temp directory, closed after the test."""
    store = SqliteStore(tmp_path / "promptblocks-test.db")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def repo(store: MemoryStore) -> BlockRepository:
    return BlockRepository(store, max_depth=10)


@pytest.fixture
def catalog(store: MemoryStore) -> FragmentCatalog:
    return FragmentCatalog(store)


@pytest.fixture
def temp_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point PROMPTBLOCKS_DATA_DIR at an isolated directory."""
    data_dir = tmp_path / "promptblocks-data"
    data_dir.mkdir()
    monkeypatch.setenv("PROMPTBLOCKS_DATA_DIR", str(data_dir))
    return data_dir
