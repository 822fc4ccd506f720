from __future__ import annotations

from typing import Any

from .errors import ValidationError


def clean_text(value: Any, field: str, default: str | None = None) -> str:
    """
    Strip a free-text JSON field.

    None (or a missing key) falls back to default, then to "". Anything that
    is not a string is a 400, never a crash further down.
    """
    if value is None:
        value = default if default is not None else ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()


def clean_optional_text(value: Any, field: str) -> str | None:
    """Like clean_text, but empty input becomes None."""
    return clean_text(value, field) or None


def clean_id(value: Any, field: str, required: bool = True) -> int | None:
    """
    Coerce a JSON id to int.

    Accepts ints and plain digit strings; rejects bools, floats and anything
    else so a bad id is a 400 rather than a driver error.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer id")
