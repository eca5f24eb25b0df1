"""
Field Values
============
Normalizes Jira custom-field values, which arrive in several shapes depending
on the field type:

    plain string   "1234"
    number         1234
    ADF document   {"type": "doc", "content": [...]}
    option object  {"value": "..."} / {"id": "..."} / {"name": "..."}
    option list    [{"value": "..."}, ...]

Each shape has one extraction function. ``field_to_text`` dispatches on the
shape and returns a stripped string, or None when nothing usable is present.
"""
from typing import Any, Optional

from .adf import text_from_adf


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def from_string(value: str) -> Optional[str]:
    return _clean(value)


def from_number(value) -> Optional[str]:
    # 1234.0 from a number field is a run id, not "1234.0"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return _clean(value)


def from_document(value: dict) -> Optional[str]:
    return _clean(text_from_adf(value))


def from_option(value: dict) -> Optional[str]:
    for attr in ("value", "id", "name"):
        text = _clean(value.get(attr))
        if text:
            return text
    return None


def from_option_list(value: list) -> Optional[str]:
    if not value:
        return None
    return field_to_text(value[0])


def field_to_text(value: Any) -> Optional[str]:
    """Normalize any supported custom-field value to text."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return from_string(value)
    if isinstance(value, (int, float)):
        return from_number(value)
    if isinstance(value, list):
        return from_option_list(value)
    if isinstance(value, dict):
        if value.get("type") == "doc":
            return from_document(value)
        return from_option(value)
    return None
