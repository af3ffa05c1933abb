"""Helpers for reading Simpro payloads whose field names and shapes drift.

Each field is read through an ordered tuple of dotted paths ("extraction
attempts"); the first path that resolves to a non-empty value wins.
"""

from __future__ import annotations

from typing import Any, Iterable

from src.schemas.simpro import CustomField

Path = str


def dig(payload: Any, path: Path) -> Any:
    """Follow a dotted path through nested dicts, returning None on any miss."""
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, dict)) and not value:
        return True
    return False


def first_present(payload: Any, paths: Iterable[Path]) -> Any:
    for path in paths:
        value = dig(payload, path)
        if not _is_empty(value):
            return value
    return None


def first_text(payload: Any, paths: Iterable[Path]) -> str:
    value = first_present(payload, paths)
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def as_id(value: Any) -> str | None:
    """Render an external identifier (int or str) as a string, or None."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def normalize_list(raw: Any) -> list:
    """Unwrap the list envelopes Simpro returns (bare list, Items, items, ...)."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in ("Items", "items", "Tags", "tags", "CustomFields", "customFields"):
            if isinstance(raw.get(key), list):
                return raw[key]
        return [raw]
    return []


CUSTOM_FIELD_ID_PATHS = ("ID", "Id", "id", "CustomField.ID", "CustomField.Id", "CustomField.id")
CUSTOM_FIELD_NAME_PATHS = (
    "Name", "name", "FieldName", "fieldName", "CustomField.Name", "CustomField.name",
)
CUSTOM_FIELD_VALUE_PATHS = (
    "Value", "value", "Answer", "answer", "Text", "text", "SelectedValue", "selectedValue",
)


def normalize_custom_fields(raw: Any) -> list[CustomField]:
    """Normalize the observed custom-field shapes.

    Handles ``{ID, Name, Value}``, ``{CustomField: {ID, Name}, Value}`` and
    lists wrapped in an envelope. Entries without an id or a name are dropped.
    """
    fields: list[CustomField] = []
    for item in normalize_list(raw):
        if not isinstance(item, dict):
            continue
        field = CustomField(
            id=as_id(first_present(item, CUSTOM_FIELD_ID_PATHS)) or "",
            name=first_text(item, CUSTOM_FIELD_NAME_PATHS),
            value=first_text(item, CUSTOM_FIELD_VALUE_PATHS),
        )
        if field.id or field.name:
            fields.append(field)
    return fields


def tag_ids(raw: Any) -> set[int]:
    """Collect tag ids from ``Tags`` given as objects, bare ints or numeric strings."""
    ids: set[int] = set()
    for item in normalize_list(raw) if raw is not None else []:
        if isinstance(item, dict):
            value = as_int(first_present(item, ("ID", "Id", "id")))
        else:
            value = as_int(item)
        if value is not None:
            ids.add(value)
    return ids
