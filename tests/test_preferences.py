"""Tests for preferences.py - persisted settings and metadata records."""

from __future__ import annotations

import logging

import pytest

from promptblocks.errors import ValidationError
from promptblocks.preferences import (
    AppSettings,
    get_metadata,
    get_settings,
    update_settings,
)
from promptblocks.storage import METADATA, SETTINGS, TAGS, MemoryStore


class TestAppSettings:
    """Test the settings record."""

    def test_defaults_when_missing(self, store: MemoryStore) -> None:
        current = get_settings(store)

        assert current.indent_size == 2
        assert current.show_line_numbers is True
        assert "role" in current.default_tags

    def test_update_persists(self, store: MemoryStore) -> None:
        update_settings(store, indent_size=4, auto_save=False)

        record = store.load(SETTINGS)
        assert record["indentSize"] == 4
        assert record["autoSave"] is False
        assert get_settings(store).indent_size == 4

    def test_indent_size_must_be_two_or_four(self, store: MemoryStore) -> None:
        with pytest.raises(ValidationError) as exc_info:
            update_settings(store, indent_size=3)

        assert exc_info.value.field == "indent_size"
        assert store.load(SETTINGS) == {}

    def test_unknown_setting(self, store: MemoryStore) -> None:
        with pytest.raises(ValidationError):
            update_settings(store, theme="dark")

    def test_invalid_record_falls_back(self, store: MemoryStore, caplog: pytest.LogCaptureFixture) -> None:
        store.save(SETTINGS, {"indentSize": 7})

        with caplog.at_level(logging.WARNING):
            assert get_settings(store) == AppSettings()

        assert "using defaults" in caplog.text

    @pytest.mark.parametrize(
        "changes",
        [
            {"indent_size": 2.0},
            {"indent_size": True},
            {"show_line_numbers": "yes"},
            {"auto_save": 0},
        ],
    )
    def test_wrongly_typed_values_rejected(self, store: MemoryStore, changes: dict) -> None:
        with pytest.raises(ValidationError) as exc_info:
            update_settings(store, **changes)

        assert exc_info.value.field in changes
        assert store.load(SETTINGS) == {}

    def test_wrongly_typed_record_falls_back(self, store: MemoryStore) -> None:
        store.save(SETTINGS, {"indentSize": 4.0, "showLineNumbers": "no"})

        assert get_settings(store) == AppSettings()

    def test_render_options(self) -> None:
        options = AppSettings(indent_size=4, show_line_numbers=False).render_options()

        assert options.indent_size == 4
        assert options.line_numbers is False


class TestMetadata:
    """Test the metadata record."""

    def test_initialised_on_first_read(self, store: MemoryStore) -> None:
        metadata = get_metadata(store)

        assert metadata.last_backup_at is None
        assert metadata.installed_at == metadata.last_modified_at
        assert store.load(METADATA)["installedAt"] == metadata.installed_at

    def test_stable_across_reads(self, store: MemoryStore) -> None:
        assert get_metadata(store).installed_at == get_metadata(store).installed_at

    def test_saves_refresh_last_modified(self, store: MemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
        installed = get_metadata(store).installed_at
        monkeypatch.setattr("promptblocks.storage._now_iso", lambda: "2999-01-01T00:00:00+00:00")

        store.save(TAGS, {})

        metadata = get_metadata(store)
        assert metadata.installed_at == installed
        assert metadata.last_modified_at == "2999-01-01T00:00:00+00:00"
