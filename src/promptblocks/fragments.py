"""Reusable text fragments referenced by fragmentRef blocks.

Fragments live in their own collection and are managed independently of
the document: deleting one that is still referenced is allowed, and the
renderer simply skips the dangling reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .errors import ValidationError
from .storage import SNIPPETS, Store, _now_iso

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


@dataclass
class Fragment:
    """A reusable snippet of prompt text."""

    id: str
    title: str
    content: str
    category_id: str | None = None
    tag_ids: list[str] = field(default_factory=list)
    is_favorite: bool = False
    usage_count: int = 0
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a persisted record."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "categoryId": self.category_id,
            "tagIds": list(self.tag_ids),
            "isFavorite": self.is_favorite,
            "usageCount": self.usage_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fragment:
        """Create from a persisted record."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            category_id=data.get("categoryId"),
            tag_ids=list(data.get("tagIds", [])),
            is_favorite=bool(data.get("isFavorite", False)),
            usage_count=int(data.get("usageCount", 0)),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


_UPDATABLE = frozenset({"title", "content", "category_id", "tag_ids", "is_favorite"})


class FragmentCatalog:
    """CRUD over the fragment collection."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def _records(self) -> dict[str, Any]:
        return self.store.load(SNIPPETS)

    def list_all(self) -> list[Fragment]:
        """All fragments, newest first."""
        fragments = []
        for record in self._records().values():
            try:
                fragments.append(Fragment.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable fragment record: %s", e)
        return sorted(fragments, key=lambda f: f.created_at, reverse=True)

    def by_category(self, category_id: str | None) -> list[Fragment]:
        """Fragments filed under a category (None for uncategorised)."""
        return [f for f in self.list_all() if f.category_id == category_id]

    def by_tag(self, tag_id: str) -> list[Fragment]:
        return [f for f in self.list_all() if tag_id in f.tag_ids]

    def favorites(self) -> list[Fragment]:
        return [f for f in self.list_all() if f.is_favorite]

    def get(self, fragment_id: str) -> Fragment | None:
        record = self._records().get(fragment_id)
        return Fragment.from_dict(record) if record else None

    def lookup(self, fragment_id: str) -> str | None:
        """Fragment content by ID, or None. Used as the renderer's lookup."""
        record = self._records().get(fragment_id)
        if not record:
            return None
        return record.get("content", "")

    def create(
        self,
        *,
        title: str,
        content: str,
        category_id: str | None = None,
        tag_ids: list[str] | None = None,
        is_favorite: bool = False,
    ) -> Fragment:
        """Create a new fragment.

        Raises:
            ValidationError: If the title is empty or too long.
        """
        _check_title(title)
        now = _now_iso()
        fragment = Fragment(
            id=str(uuid4()),
            title=title.strip(),
            content=content,
            category_id=category_id,
            tag_ids=list(tag_ids or []),
            is_favorite=is_favorite,
            created_at=now,
            updated_at=now,
        )

        records = self._records()
        records[fragment.id] = fragment.to_dict()
        self.store.save(SNIPPETS, records)

        logger.debug("Created fragment %s", fragment.id)
        return fragment

    def update(self, fragment_id: str, **changes: Any) -> Fragment | None:
        """Merge changes into a fragment; the ID never changes.

        Returns:
            Updated Fragment or None if not found.
        """
        changes.pop("id", None)
        unknown = sorted(set(changes) - _UPDATABLE)
        if unknown:
            raise ValidationError(f"Unknown fragment fields: {', '.join(unknown)}", field=unknown[0])
        if "title" in changes:
            _check_title(changes["title"])

        records = self._records()
        if fragment_id not in records:
            return None

        fragment = Fragment.from_dict(records[fragment_id])
        for name, value in changes.items():
            setattr(fragment, name, value)
        fragment.updated_at = _now_iso()

        records[fragment_id] = fragment.to_dict()
        self.store.save(SNIPPETS, records)
        return fragment

    def delete(self, fragment_id: str) -> bool:
        """Delete a fragment. Blocks referencing it render nothing afterwards."""
        records = self._records()
        if fragment_id not in records:
            return False
        del records[fragment_id]
        self.store.save(SNIPPETS, records)
        logger.debug("Deleted fragment %s", fragment_id)
        return True

    def toggle_favorite(self, fragment_id: str) -> Fragment | None:
        fragment = self.get(fragment_id)
        if fragment is None:
            return None
        return self.update(fragment_id, is_favorite=not fragment.is_favorite)

    def record_usage(self, fragment_id: str) -> None:
        """Bump a fragment's usage counter (no-op if missing)."""
        records = self._records()
        record = records.get(fragment_id)
        if not record:
            return
        record["usageCount"] = int(record.get("usageCount", 0)) + 1
        self.store.save(SNIPPETS, records)

    def search(self, query: str) -> list[Fragment]:
        """Case-insensitive match on title or content; blank returns all."""
        needle = query.strip().lower()
        fragments = self.list_all()
        if not needle:
            return fragments
        return [f for f in fragments if needle in f.title.lower() or needle in f.content.lower()]


def _check_title(title: Any) -> None:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required", field="title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            "Title is too long",
            field="title",
            constraint=f"max_length={MAX_TITLE_LENGTH}",
        )
