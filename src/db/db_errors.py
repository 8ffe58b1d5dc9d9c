"""Helpers for classifying store errors from their message text."""

from __future__ import annotations

_IDENTIFIER_FORMAT_MARKERS = ("uuid", "invalid input syntax")
_MISSING_REFERENCE_MARKERS = ("foreign key constraint", "violates foreign key")
_DUPLICATE_KEY_MARKERS = ("unique constraint", "duplicate key")


def _message(exc: BaseException | str) -> str:
    if isinstance(exc, str):
        return exc.lower()
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc).lower()


def is_identifier_format_error(exc: BaseException | str) -> bool:
    """Return ``True`` if the store rejected an identifier because of its format (e.g. a non-UUID game id)."""
    message = _message(exc)
    return any(marker in message for marker in _IDENTIFIER_FORMAT_MARKERS)


def is_missing_reference_error(exc: BaseException | str) -> bool:
    """Return ``True`` if a write referenced a game or player that does not exist."""
    message = _message(exc)
    return any(marker in message for marker in _MISSING_REFERENCE_MARKERS)


def is_duplicate_key_error(exc: BaseException | str) -> bool:
    message = _message(exc)
    return any(marker in message for marker in _DUPLICATE_KEY_MARKERS)
