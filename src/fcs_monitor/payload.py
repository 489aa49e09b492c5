"""Helpers for reading loosely-typed JSON payloads from the flow API.

Responses are never trusted to have a given shape: absent or mistyped
fields read as None / empty / default instead of raising.
"""

from typing import Any


def dig(doc: Any, *keys: str) -> Any:
    """Walk nested dicts by key, returning None as soon as a level is missing."""
    for key in keys:
        if not isinstance(doc, dict):
            return None
        doc = doc.get(key)
    return doc


def entries(doc: Any, field_name: str) -> list[dict]:
    """Return the dict items of a list field, or [] if the field is absent."""
    items = dig(doc, field_name)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def text(value: Any, default: str) -> str:
    """Coerce an id/name field to a non-empty string."""
    if value is None or isinstance(value, (dict, list)):
        return default
    value = str(value)
    return value if value else default


def as_number(value: Any, default: float) -> float:
    """Parse a numeric field; the API sometimes sends "1,234" strings."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return default


def as_int(value: Any, default: int) -> int:
    """Like as_number, truncated to int. Non-finite values give the default."""
    number = as_number(value, default)
    try:
        return int(number)
    except (OverflowError, ValueError):
        return default
