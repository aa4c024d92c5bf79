from __future__ import annotations

import json
import re
from typing import Any

from .models import Field, fields_from_list

INDEX_SEGMENT_PATTERN = re.compile(r"^\d+$")


def field_value_to_string(value: Any) -> str:
    """Render a field value the way templates and settings files spell it.

    >>> field_value_to_string(True)
    'true'
    >>> field_value_to_string(8080.0)
    '8080'
    >>> field_value_to_string(["a", "b"])
    '["a","b"]'
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def is_field_value_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def parse_json_array(value: Any) -> list[Any] | None:
    if isinstance(value, list):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text.startswith("["):
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def flatten_nested_fields(raw_fields: list[dict[str, Any]]) -> list[Field]:
    """Turn nested template field objects into flat dot-path fields."""
    return fields_from_list(raw_fields)


def generate_parent_paths(field_names: list[str]) -> list[str]:
    paths: set[str] = set()
    for name in field_names:
        parts = name.split(".")
        for index in range(1, len(parts) + 1):
            paths.add(".".join(parts[:index]))
    return sorted(paths)


def is_child_of(name: str, parent: str) -> bool:
    return name.startswith(f"{parent}.")


def flatten_object(payload: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested settings into dotted keys.

    Lists of objects get 1-based index segments (``Servers.1.Host``); lists of
    scalars are kept whole because they are field values in their own right.
    """
    flattened: dict[str, Any] = {}
    for key, value in payload.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flattened.update(flatten_object(value, path))
        elif isinstance(value, list) and any(isinstance(item, (dict, list)) for item in value):
            for index, item in enumerate(value, start=1):
                item_path = f"{path}.{index}"
                if isinstance(item, dict):
                    flattened.update(flatten_object(item, item_path))
                else:
                    flattened[item_path] = item
        else:
            flattened[path] = value
    return flattened


def fields_to_nested_object(fields: list[Field]) -> dict[str, Any]:
    """Build a nested settings object from the checked fields only."""
    result: dict[str, Any] = {}
    for item in fields:
        if not item.checked:
            continue
        keys = item.name.split(".")
        current: Any = result
        for key, next_key in zip(keys, keys[1:]):
            current = _child_container(current, key, next_key)
        _assign(current, keys[-1], item.value)
    return result


def _child_container(current: Any, key: str, next_key: str) -> Any:
    empty: Any = [] if INDEX_SEGMENT_PATTERN.match(next_key) else {}
    if isinstance(current, list):
        index = int(key) - 1
        while len(current) <= index:
            current.append(None)
        if current[index] is None:
            current[index] = empty
        return current[index]
    return current.setdefault(key, empty)


def _assign(current: Any, key: str, value: Any) -> None:
    if isinstance(current, list):
        index = int(key) - 1
        while len(current) <= index:
            current.append(None)
        current[index] = value
    else:
        current[key] = value


def parse_key_value_format(content: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or line.startswith("//"):
            continue
        key, separator, value = line.partition("=")
        key = key.strip()
        if not separator or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        result[key] = value
    return result


def to_field_values(payload: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None or isinstance(value, (str, int, float, bool, list)):
            values[key] = value
        elif isinstance(value, dict):
            values[key] = json.dumps(value, separators=(",", ":"))
        else:
            values[key] = str(value)
    return values


def merge_settings_into_fields(template_fields: list[Field], settings: dict[str, Any]) -> list[Field]:
    """Overlay settings values onto copies of the template fields.

    Fields named in the settings become checked; template fields absent from
    the settings keep their template ``checked`` default. Unknown settings keys
    are appended as extra checked fields.
    """
    merged: dict[str, Field] = {item.name: item.copy() for item in template_fields}
    for name, value in settings.items():
        existing = merged.get(name)
        if existing is None:
            merged[name] = Field(name=name, value=value, checked=True)
            continue
        existing.value = value
        existing.checked = True
    return list(merged.values())
