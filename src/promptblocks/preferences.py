"""Persisted user settings and storage metadata records.

These sit next to the data collections in the store (keys 'settings' and
'metadata') and travel with exports. Process-level configuration lives in
settings.py instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any

from .blocks.xml_renderer import RenderOptions
from .errors import ValidationError
from .storage import METADATA, SCHEMA_VERSION, SETTINGS, Store, initial_metadata

logger = logging.getLogger(__name__)

ALLOWED_INDENT_SIZES = (2, 4)

# Record key -> dataclass field
_SETTINGS_KEYS = {
    "defaultTags": "default_tags",
    "autoSave": "auto_save",
    "showLineNumbers": "show_line_numbers",
    "indentSize": "indent_size",
    "version": "version",
}


def _default_tags() -> list[str]:
    return ["system", "role", "constraints", "examples", "output"]


@dataclass
class AppSettings:
    """User-facing settings for the builder and preview."""

    default_tags: list[str] = field(default_factory=_default_tags)
    auto_save: bool = True
    show_line_numbers: bool = True
    indent_size: int = 2
    version: str = "1.0.0"

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in _SETTINGS_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppSettings:
        values = {attr: data[key] for key, attr in _SETTINGS_KEYS.items() if key in data}
        result = cls(**values)
        result.validate()
        return result

    def validate(self) -> None:
        """Raises ValidationError if a value is out of range."""
        # bool is an int subclass and 2.0 == 2, so check the type first
        if (
            not isinstance(self.indent_size, int)
            or isinstance(self.indent_size, bool)
            or self.indent_size not in ALLOWED_INDENT_SIZES
        ):
            raise ValidationError(
                f"Indent size must be one of {ALLOWED_INDENT_SIZES}",
                field="indent_size",
                value=self.indent_size,
            )
        if not isinstance(self.default_tags, list) or not all(isinstance(t, str) for t in self.default_tags):
            raise ValidationError("Default tags must be a list of strings", field="default_tags")
        for name in ("auto_save", "show_line_numbers"):
            if not isinstance(getattr(self, name), bool):
                raise ValidationError(f"{name} must be true or false", field=name, value=getattr(self, name))
        if not isinstance(self.version, str):
            raise ValidationError("Version must be a string", field="version", value=self.version)

    def render_options(self) -> RenderOptions:
        """Serializer options matching these settings."""
        return RenderOptions(indent_size=self.indent_size, line_numbers=self.show_line_numbers)


def get_settings(store: Store) -> AppSettings:
    """Read the settings record, falling back to defaults if missing or bad."""
    data = store.load(SETTINGS)
    if not data:
        return AppSettings()
    try:
        return AppSettings.from_dict(data)
    except (TypeError, ValidationError) as e:
        logger.warning("Settings record is invalid, using defaults: %s", e)
        return AppSettings()


def update_settings(store: Store, **changes: Any) -> AppSettings:
    """Merge changes into the settings record and save it.

    Raises:
        ValidationError: On unknown fields or out-of-range values.
    """
    known = {f.name for f in fields(AppSettings)}
    unknown = sorted(set(changes) - known)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(unknown)}", field=unknown[0])

    current = get_settings(store)
    for name, value in changes.items():
        setattr(current, name, value)
    current.validate()

    store.save(SETTINGS, current.to_dict())
    return current


@dataclass
class StorageMetadata:
    """Bookkeeping about the stored data."""

    schema_version: int
    last_backup_at: str | None
    installed_at: str
    last_modified_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "lastBackupAt": self.last_backup_at,
            "installedAt": self.installed_at,
            "lastModifiedAt": self.last_modified_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageMetadata:
        return cls(
            schema_version=int(data.get("schemaVersion", SCHEMA_VERSION)),
            last_backup_at=data.get("lastBackupAt"),
            installed_at=data["installedAt"],
            last_modified_at=data.get("lastModifiedAt", data["installedAt"]),
        )


def get_metadata(store: Store) -> StorageMetadata:
    """Read the metadata record, initialising it on first use."""
    data = store.load(METADATA)
    if data:
        try:
            return StorageMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Metadata record is invalid, reinitialising: %s", e)

    data = initial_metadata()
    store.save_many({METADATA: data}, touch=False)
    return StorageMetadata.from_dict(data)
