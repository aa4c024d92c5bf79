from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .fields import field_value_to_string, is_child_of, merge_settings_into_fields
from .models import Field, Template
from .ranges import to_human_readable, validate_value
from .rules_engine import DEFAULT_MAX_PASSES, apply_rules
from .rulesets import resolve_ruleset_rules, select_ruleset

MISSING = "missing"
INVALID = "invalid"
WARNING = "warning"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ValidationIssue:
    field: str
    type: str
    message: str
    expected: str | None = None
    actual: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"field": self.field, "type": self.type, "message": self.message}
        if self.expected is not None:
            payload["expected"] = self.expected
        if self.actual is not None:
            payload["actual"] = self.actual
        return payload


@dataclass(slots=True)
class SettingsValidationResult:
    is_valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == WARNING]

    def passes(self, strict: bool = False) -> bool:
        return self.is_valid and not (strict and self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "summary": dict(self.summary),
        }


def validate_settings(
    template: Template,
    settings: dict[str, Any],
    ruleset: str | None = None,
    tag: str | None = None,
    max_passes: int = DEFAULT_MAX_PASSES,
) -> SettingsValidationResult:
    """Validate a flattened settings mapping against a template.

    Required fields are computed by running the selected rule-set (with
    inheritance) over the merged field state, so a field only becomes
    ``missing`` when the values actually present make it required.
    """
    selected = select_ruleset(template, name=ruleset, tag=tag)
    rules = resolve_ruleset_rules(template, selected.name) if selected is not None else []

    merged = merge_settings_into_fields(template.fields, settings)
    result = apply_rules(merged, rules, max_passes=max_passes)
    updated: dict[str, Field] = {item.name: item for item in result.updated_fields}
    forced_values = {change.field_name: change for change in result.changes if change.property == "value"}

    issues: list[ValidationIssue] = []
    for template_field in template.fields:
        name = template_field.name
        current = updated[name]
        if name not in settings:
            if current.checked:
                reason = result.reasons.get(name)
                message = f"Required field '{name}' is missing"
                if reason:
                    message = f"{message} ({reason})"
                issues.append(
                    ValidationIssue(
                        field=name,
                        type=MISSING,
                        message=message,
                        expected=to_human_readable(template_field.range) if template_field.range else "any value",
                    )
                )
            continue

        value = settings[name]
        actual = field_value_to_string(value)
        if template_field.range and template_field.range != "string" and not validate_value(value, template_field.range):
            issues.append(
                ValidationIssue(
                    field=name,
                    type=INVALID,
                    message=f"Invalid value for '{name}'",
                    expected=to_human_readable(template_field.range),
                    actual=actual,
                )
            )
            continue

        change = forced_values.get(name)
        if change is not None and field_value_to_string(current.value) != actual:
            issues.append(
                ValidationIssue(
                    field=name,
                    type=INVALID,
                    message=f"Value for '{name}' conflicts with rule: {change.reason}",
                    expected=field_value_to_string(current.value),
                    actual=actual,
                )
            )

    known = {item.name for item in template.fields}
    for name in settings:
        if name in known or any(is_child_of(name, parent) for parent in known):
            continue
        issues.append(
            ValidationIssue(
                field=name,
                type=WARNING,
                message=f"Unknown field '{name}' is not defined in the template",
                actual=field_value_to_string(settings[name]),
            )
        )

    missing = sum(1 for issue in issues if issue.type == MISSING)
    invalid = sum(1 for issue in issues if issue.type == INVALID)
    warnings = sum(1 for issue in issues if issue.type == WARNING)
    summary = {
        "totalFields": len(template.fields),
        "validFields": len(template.fields) - missing - invalid,
        "missingRequired": missing,
        "invalidValues": invalid,
        "warnings": warnings,
    }
    is_valid = missing == 0 and invalid == 0
    logger.info(
        "settings_validated",
        extra={
            "template": template.name,
            "ruleset": selected.name if selected is not None else None,
            "is_valid": is_valid,
            **{f"summary_{key}": count for key, count in summary.items()},
        },
    )
    return SettingsValidationResult(is_valid=is_valid, issues=issues, summary=summary)
