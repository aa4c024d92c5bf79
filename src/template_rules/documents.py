from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .fields import flatten_object, parse_key_value_format, to_field_values
from .models import Template, TemplateFormatError, is_template, normalize_template_fields, template_from_dict

JSON_SUFFIXES = {".json"}
YAML_SUFFIXES = {".yaml", ".yml"}
KEY_VALUE_SUFFIXES = {".properties", ".env", ".txt"}

logger = logging.getLogger(__name__)


class TemplateLoadError(ValueError):
    """Raised when a template or settings file cannot be read or decoded."""


class UnsupportedSettingsFormatError(ValueError):
    pass


def _read_text(path: Path, kind: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise TemplateLoadError(f"{kind} file not found: {path}") from exc
    except OSError as exc:
        raise TemplateLoadError(f"could not read {kind} file {path}: {exc}") from exc


def load_template(path: str | Path) -> Template:
    template_path = Path(path)
    content = _read_text(template_path, "template")
    try:
        raw = json.loads(content)
    except ValueError as exc:
        raise TemplateLoadError(f"template file {template_path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise TemplateLoadError(f"template file {template_path} must contain a JSON object")
    if not is_template(raw):
        logger.warning("template_shape_incomplete", extra={"path": str(template_path)})

    try:
        template = template_from_dict(normalize_template_fields(raw))
    except TemplateFormatError as exc:
        raise TemplateLoadError(f"template file {template_path} is malformed: {exc}") from exc

    if not template.file_name:
        template.file_name = template_path.name
    logger.debug(
        "template_loaded",
        extra={"path": str(template_path), "field_count": len(template.fields), "ruleset_count": len(template.rule_sets)},
    )
    return template


def parse_settings(content: str, file_format: str) -> dict[str, Any]:
    """Parse settings text into a flattened ``{dotted.key: value}`` mapping.

    ``file_format`` is a file suffix such as ``.yaml`` (the dot is optional).
    """
    suffix = file_format.lower() if file_format.startswith(".") else f".{file_format.lower()}"
    if suffix in JSON_SUFFIXES:
        payload = json.loads(content) if content.strip() else {}
    elif suffix in YAML_SUFFIXES:
        payload = yaml.safe_load(content) or {}
    elif suffix in KEY_VALUE_SUFFIXES:
        return parse_key_value_format(content)
    else:
        supported = sorted(JSON_SUFFIXES | YAML_SUFFIXES | KEY_VALUE_SUFFIXES)
        raise UnsupportedSettingsFormatError(
            f"unsupported settings format '{file_format}'; expected one of: {', '.join(supported)}"
        )

    if not isinstance(payload, dict):
        raise TemplateLoadError("settings document must be a mapping at the top level")
    return to_field_values(flatten_object(payload))


def load_settings(path: str | Path) -> dict[str, Any]:
    settings_path = Path(path)
    content = _read_text(settings_path, "settings")
    try:
        settings = parse_settings(content, settings_path.suffix or settings_path.name)
    except (ValueError, yaml.YAMLError) as exc:
        if isinstance(exc, (TemplateLoadError, UnsupportedSettingsFormatError)):
            raise
        raise TemplateLoadError(f"settings file {settings_path} could not be parsed: {exc}") from exc
    logger.debug("settings_loaded", extra={"path": str(settings_path), "key_count": len(settings)})
    return settings
