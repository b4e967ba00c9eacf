"""Prompt Blocks Error Hierarchy.

Every failure the document model can surface derives from PromptBlocksError:
- ValidationError: Malformed input to create/update/settings
- NotFoundError: Operation targets a nonexistent id (front ends only)
- InvalidMoveError: Cycle or illegal container target for a move
- StorageError: Persistence write rejected
- StructuralCorruptionError: Cycle detected while walking the tree
- DataImportError: Malformed aggregate document on import

Each class carries a stable numeric code and a snake_case kind so front
ends can report errors without matching on message text.

Usage:
    from promptblocks.errors import ValidationError

    if kind is BlockKind.CONTAINER and not tag_name:
        raise ValidationError("Container blocks need a tag name", field="tag_name")
"""

from __future__ import annotations

from typing import Any

# Fallback code for anything outside the hierarchy
INTERNAL_ERROR_CODE = -32603


class PromptBlocksError(Exception):
    """Base exception for all prompt builder errors.

    Attributes:
        message: Human-readable description, safe to show to users
        recoverable: True if repeating the operation later may succeed
        context: Identifiers involved in the failure (None values dropped)
    """

    code = INTERNAL_ERROR_CODE
    kind = "error"
    recoverable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        """Structured form for front ends."""
        return {
            "type": self.kind,
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            **self.context,
        }


class ValidationError(PromptBlocksError):
    """Input validation failed.

    Example:
        raise ValidationError("Depth exceeds maximum", field="depth", constraint="max=10")
    """

    code = -32000
    kind = "validation"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
    ) -> None:
        shown = None if value is None else _truncate(str(value), 100)
        super().__init__(message, field=field, constraint=constraint, value=shown)
        self.field = field
        self.constraint = constraint


class NotFoundError(PromptBlocksError):
    """Resource not found.

    The repository itself signals absence with None/False; this is raised by
    callers that need to turn that sentinel into a reportable failure.
    """

    code = -32003
    kind = "not_found"

    def __init__(self, message: str, *, resource_type: str | None = None, resource_id: str | None = None) -> None:
        super().__init__(message, resource_type=resource_type, resource_id=resource_id)


class InvalidMoveError(PromptBlocksError):
    """A move request would break the tree (cycle or non-container target)."""

    code = -32004
    kind = "invalid_move"

    def __init__(
        self,
        message: str,
        *,
        block_id: str | None = None,
        target_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, block_id=block_id, target_id=target_id, reason=reason)
        self.reason = reason


class StorageError(PromptBlocksError):
    """A collection write was rejected (disk full, locked database...)."""

    code = -32020
    kind = "storage"
    # Space can be freed or the lock released
    recoverable = True

    def __init__(self, message: str, *, operation: str | None = None, key: str | None = None) -> None:
        super().__init__(message, operation=operation, key=key)


class StructuralCorruptionError(PromptBlocksError):
    """Stored parent pointers form a cycle."""

    code = -32021
    kind = "structural_corruption"

    def __init__(self, message: str, *, block_id: str | None = None) -> None:
        super().__init__(message, block_id=block_id)
        self.block_id = block_id


class DataImportError(PromptBlocksError):
    """An aggregate document could not be imported."""

    code = -32022
    kind = "import"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message, reason=reason)


def _truncate(value: str, max_len: int) -> str:
    """Shorten long values before they land in logs or reports."""
    return value if len(value) <= max_len else value[:max_len] + "..."


ERROR_CODES: dict[type[PromptBlocksError], int] = {
    error_type: error_type.code
    for error_type in (
        ValidationError,
        NotFoundError,
        InvalidMoveError,
        StorageError,
        StructuralCorruptionError,
        DataImportError,
    )
}


def get_error_code(exc: BaseException) -> int:
    """Numeric code for an exception; subclasses inherit their parent's."""
    if isinstance(exc, PromptBlocksError):
        return exc.code
    return INTERNAL_ERROR_CODE
