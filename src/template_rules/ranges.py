from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import urlparse

from .fields import field_value_to_string, parse_json_array

BOUNDED_SCALAR_PATTERN = re.compile(r"^(string|integer|number)\((\d*)\.\.(\d*)\)$")
BOUNDED_ARRAY_PATTERN = re.compile(r"^(string|integer)\[(\d*)\.\.?(\d*)\]$")
ENUM_ARRAY_PATTERN = re.compile(r"^\(([^)]+)\)\[(?:(\d*)\.\.?(\d*))?\]$")
INTEGER_TEXT_PATTERN = re.compile(r"^[+-]?\d+$")
ENUM_SEPARATOR = "||"
LEGACY_ENUM_SEPARATOR = " / "
MAX_LISTED_OPTIONS = 5


@dataclass(slots=True, frozen=True)
class Unconstrained:
    pass


@dataclass(slots=True, frozen=True)
class BooleanRange:
    pass


@dataclass(slots=True, frozen=True)
class UrlRange:
    pass


@dataclass(slots=True, frozen=True)
class IntegerRange:
    minimum: int | None = None
    maximum: int | None = None


@dataclass(slots=True, frozen=True)
class StringLengthRange:
    minimum: int | None = None
    maximum: int | None = None


@dataclass(slots=True, frozen=True)
class EnumRange:
    options: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class ArrayRange:
    item_type: str = "string"
    min_size: int | None = None
    max_size: int | None = None


@dataclass(slots=True, frozen=True)
class EnumArrayRange:
    options: tuple[str, ...]
    min_size: int | None = None
    max_size: int | None = None


ParsedRange = Union[
    Unconstrained, BooleanRange, UrlRange, IntegerRange, StringLengthRange, EnumRange, ArrayRange, EnumArrayRange
]


def _bound(raw: str | None) -> int | None:
    return int(raw) if raw else None


def parse_range(range_spec: str | None) -> ParsedRange:
    """Parse a range DSL string. Parsing is total: unknown shapes are unconstrained."""
    spec = (range_spec or "").strip()
    if spec in {"", "string"}:
        return Unconstrained()
    if spec == "boolean":
        return BooleanRange()
    if spec == "integer":
        return IntegerRange()
    if spec == "url":
        return UrlRange()
    if spec in {"string[]", "integer[]"}:
        return ArrayRange(item_type=spec[:-2])

    if match := BOUNDED_SCALAR_PATTERN.fullmatch(spec):
        kind, low, high = match.groups()
        if kind == "string":
            return StringLengthRange(minimum=_bound(low), maximum=_bound(high))
        return IntegerRange(minimum=_bound(low), maximum=_bound(high))

    if match := BOUNDED_ARRAY_PATTERN.fullmatch(spec):
        kind, low, high = match.groups()
        return ArrayRange(item_type=kind, min_size=_bound(low), max_size=_bound(high))

    if match := ENUM_ARRAY_PATTERN.fullmatch(spec):
        body, low, high = match.groups()
        separator = ENUM_SEPARATOR if ENUM_SEPARATOR in body else LEGACY_ENUM_SEPARATOR
        options = tuple(option.strip() for option in body.split(separator) if option.strip())
        return EnumArrayRange(options=options, min_size=_bound(low), max_size=_bound(high))

    if ENUM_SEPARATOR in spec:
        return EnumRange(options=tuple(spec.split(ENUM_SEPARATOR)))

    return Unconstrained()


def validate_value(value: Any, range_spec: str | ParsedRange | None) -> bool:
    parsed = range_spec if not isinstance(range_spec, (str, type(None))) else parse_range(range_spec)

    if isinstance(parsed, Unconstrained):
        return True
    if isinstance(parsed, BooleanRange):
        return isinstance(value, bool) or field_value_to_string(value) in {"true", "false"}
    if isinstance(parsed, IntegerRange):
        number = _as_integer(value)
        if number is None:
            return False
        if parsed.minimum is not None and number < parsed.minimum:
            return False
        if parsed.maximum is not None and number > parsed.maximum:
            return False
        return True
    if isinstance(parsed, UrlRange):
        candidate = urlparse(field_value_to_string(value))
        return bool(candidate.scheme and (candidate.netloc or candidate.path))
    if isinstance(parsed, StringLengthRange):
        if isinstance(value, (list, dict)):
            return False
        length = len(field_value_to_string(value))
        if parsed.minimum is not None and length < parsed.minimum:
            return False
        if parsed.maximum is not None and length > parsed.maximum:
            return False
        return True
    if isinstance(parsed, EnumRange):
        return field_value_to_string(value) in parsed.options
    if isinstance(parsed, ArrayRange):
        items = parse_json_array(value)
        if items is None:
            return False
        if parsed.min_size is not None and len(items) < parsed.min_size:
            return False
        if parsed.max_size is not None and len(items) > parsed.max_size:
            return False
        if parsed.item_type == "integer":
            return all(isinstance(item, int) and not isinstance(item, bool) for item in items)
        return all(isinstance(item, str) for item in items)
    if isinstance(parsed, EnumArrayRange):
        items = parse_json_array(value)
        if items is None or not _size_within(len(items), parsed.min_size, parsed.max_size):
            return False
        return all(field_value_to_string(item) in parsed.options for item in items)

    raise TypeError(f"unsupported range type: {type(parsed).__name__}")


def _as_integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and INTEGER_TEXT_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    return None


def to_human_readable(range_spec: str | None) -> str:
    if not (range_spec or "").strip():
        return "Any value"
    parsed = parse_range(range_spec)

    if isinstance(parsed, Unconstrained):
        return "Any text"
    if isinstance(parsed, BooleanRange):
        return "Yes or No (true/false)"
    if isinstance(parsed, UrlRange):
        return "A valid web address (URL)"
    if isinstance(parsed, IntegerRange):
        return _describe_bounds(parsed.minimum, parsed.maximum)
    if isinstance(parsed, StringLengthRange):
        return _describe_length(parsed.minimum, parsed.maximum)
    if isinstance(parsed, EnumRange):
        return _describe_options(parsed.options)
    if isinstance(parsed, ArrayRange):
        return _describe_array(parsed)
    if isinstance(parsed, EnumArrayRange):
        return _describe_enum_array(parsed)

    raise TypeError(f"unsupported range type: {type(parsed).__name__}")


def _describe_bounds(minimum: int | None, maximum: int | None) -> str:
    if minimum is not None and maximum is not None:
        return f"A whole number between {minimum} and {maximum}"
    if minimum is not None:
        return f"A whole number of {minimum} or more"
    if maximum is not None:
        return f"A whole number up to {maximum}"
    return "A whole number"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _describe_length(minimum: int | None, maximum: int | None) -> str:
    if minimum is not None and maximum is not None:
        if minimum == maximum:
            return f"Text with exactly {_plural(minimum, 'character')}"
        return f"Text between {minimum} and {maximum} characters"
    if minimum is not None:
        return f"Text with at least {_plural(minimum, 'character')}"
    if maximum is not None:
        return f"Text with up to {_plural(maximum, 'character')}"
    return "Any text"


def _describe_options(options: tuple[str, ...]) -> str:
    if len(options) == 1:
        return f"Must be: {options[0]}"
    if len(options) <= MAX_LISTED_OPTIONS:
        return f"One of: {', '.join(options)}"
    shown = ", ".join(options[:3])
    return f"One of: {shown}, ... ({len(options)} options)"


def _describe_array(parsed: ArrayRange) -> str:
    items = "text values" if parsed.item_type == "string" else "whole numbers"
    low, high = parsed.min_size, parsed.max_size
    if low is not None and high is not None:
        if low == high:
            return f"A list of exactly {low} {items}"
        return f"A list of {low} to {high} {items}"
    if low is not None:
        return f"A list of at least {low} {items}"
    if high is not None:
        return f"A list of up to {high} {items}"
    return f"A list of {items}"


def _size_within(size: int, minimum: int | None, maximum: int | None) -> bool:
    return (minimum is None or size >= minimum) and (maximum is None or size <= maximum)


def _describe_enum_array(parsed: EnumArrayRange) -> str:
    options = parsed.options
    if not options:
        listed = "any values"
    elif len(options) <= MAX_LISTED_OPTIONS:
        listed = ", ".join(options)
    else:
        listed = f"{', '.join(options[:3])}, ... ({len(options)} options)"

    low, high = parsed.min_size, parsed.max_size
    if low is not None and high is not None:
        size = f" (exactly {low})" if low == high else f" ({low} to {high} items)"
    elif low is not None:
        size = f" (at least {low})"
    elif high is not None:
        size = f" (up to {high})"
    else:
        size = ""
    return f"Multiple of: {listed}{size}"
