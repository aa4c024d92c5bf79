from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .fields import field_value_to_string, is_child_of, parse_json_array
from .models import Change, Field, Predicate, Rule, RuleState
from .translation import translate_rule

DEFAULT_MAX_PASSES = 100
WHITESPACE_PATTERN = re.compile(r"\s+")

logger = logging.getLogger(__name__)


class FixedPointNotReachedError(RuntimeError):
    """Raised when rule application keeps changing fields past the pass ceiling."""

    def __init__(self, max_passes: int, last_changes: list[Change]) -> None:
        fields = sorted({change.field_name for change in last_changes})
        super().__init__(
            f"rules did not reach a fixed point after {max_passes} passes; still changing: {', '.join(fields)}"
        )
        self.max_passes = max_passes
        self.last_changes = last_changes


@dataclass(slots=True)
class ApplyResult:
    updated_fields: list[Field]
    changes: list[Change]
    reasons: dict[str, str]
    passes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "updatedFields": [item.to_dict() for item in self.updated_fields],
            "changes": [change.to_dict() for change in self.changes],
            "reasons": dict(self.reasons),
            "passes": self.passes,
        }


@dataclass(slots=True)
class ComplianceIssue:
    field: str
    property: str
    expected: Any
    actual: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "property": self.property,
            "expected": self.expected,
            "actual": self.actual,
            "reason": self.reason,
        }


def _has_value(value: Any) -> bool:
    return value is not None and value != "" and value != []


def check_condition(item: Field, condition: Predicate) -> bool:
    """Evaluate the positive form of ``condition`` against one field."""
    if not item.checked:
        return False
    if condition.state is RuleState.SET:
        return _has_value(item.value)
    if condition.state is RuleState.SET_TO_VALUE:
        return field_value_to_string(item.value) == (condition.value or "")
    if not condition.value:
        return False
    items = parse_json_array(item.value)
    if items is not None:
        return condition.value in (field_value_to_string(entry) for entry in items)
    if isinstance(item.value, str):
        return condition.value in item.value
    return False


def _add_contained(value: Any, addition: str) -> Any:
    if isinstance(value, list):
        return value if addition in (field_value_to_string(entry) for entry in value) else [*value, addition]
    items = parse_json_array(value)
    if items is not None:
        if addition in (field_value_to_string(entry) for entry in items):
            return value
        return json.dumps([*items, addition], separators=(",", ":"))
    if isinstance(value, str):
        if addition in value:
            return value
        return f"{value} {addition}" if value else addition
    return addition


def _remove_contained(value: Any, removal: str) -> Any:
    if isinstance(value, list):
        return [entry for entry in value if field_value_to_string(entry) != removal]
    items = parse_json_array(value)
    if items is not None:
        if removal not in (field_value_to_string(entry) for entry in items):
            return value
        remaining = [entry for entry in items if field_value_to_string(entry) != removal]
        return json.dumps(remaining, separators=(",", ":"))
    if isinstance(value, str) and removal in value:
        return WHITESPACE_PATTERN.sub(" ", value.replace(removal, "")).strip()
    return value


def apply_target(item: Field, target: Predicate) -> None:
    """Force ``item`` towards ``target``. Mutates the (already copied) field."""
    if target.state is RuleState.SET:
        item.checked = not target.not_
        return

    if target.state is RuleState.SET_TO_VALUE:
        if target.not_:
            item.value = ""
            item.checked = False
        else:
            item.value = target.value if target.value is not None else ""
            item.checked = True
        return

    if not target.value:
        return
    if target.not_:
        item.value = _remove_contained(item.value, target.value)
        if not _has_value(item.value) or parse_json_array(item.value) == []:
            item.checked = False
        return
    item.value = _add_contained(item.value, target.value)
    item.checked = True


@dataclass(slots=True)
class RuleEngine:
    rules: list[Rule]
    max_passes: int = DEFAULT_MAX_PASSES
    reasons_by_target: dict[tuple[int, str], str] = field(default_factory=dict)

    @classmethod
    def from_rules(cls, rules: list[Rule], max_passes: int = DEFAULT_MAX_PASSES) -> RuleEngine:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        reasons = {
            (index, target.name): translate_rule(rule, target.name)
            for index, rule in enumerate(rules)
            for target in rule.targets
        }
        return cls(rules=list(rules), max_passes=max_passes, reasons_by_target=reasons)

    def conditions_met(self, rule: Rule, fields_by_name: dict[str, Field]) -> bool:
        for condition in rule.conditions:
            met = _evaluate_condition(condition, fields_by_name)
            if met == condition.not_:
                return False
        return True

    def apply(self, fields: list[Field]) -> ApplyResult:
        """Apply every rule repeatedly until a full pass changes nothing.

        The caller's fields are never mutated; the result holds copies.
        """
        working = [item.copy() for item in fields]
        fields_by_name = {item.name: item for item in working}
        changes: list[Change] = []
        reasons: dict[str, str] = {}

        for pass_number in range(1, self.max_passes + 1):
            pass_changes = self._run_pass(working, fields_by_name, reasons)
            changes.extend(pass_changes)
            logger.debug("rule_pass_completed", extra={"pass_number": pass_number, "change_count": len(pass_changes)})
            if not pass_changes:
                logger.info(
                    "fixed_point_reached",
                    extra={"passes": pass_number, "change_count": len(changes), "rule_count": len(self.rules)},
                )
                return ApplyResult(updated_fields=working, changes=changes, reasons=reasons, passes=pass_number)

        logger.error("fixed_point_not_reached", extra={"max_passes": self.max_passes, "rule_count": len(self.rules)})
        raise FixedPointNotReachedError(self.max_passes, pass_changes)

    def _run_pass(self, working: list[Field], fields_by_name: dict[str, Field], reasons: dict[str, str]) -> list[Change]:
        pass_changes: list[Change] = []
        for index, rule in enumerate(self.rules):
            if not self.conditions_met(rule, fields_by_name):
                continue
            for target in rule.targets:
                reason = self.reasons_by_target[(index, target.name)]
                for item in _target_fields(target.name, working, fields_by_name):
                    old_checked, old_value = item.checked, item.value
                    apply_target(item, target)
                    reasons[item.name] = reason
                    if old_checked != item.checked:
                        pass_changes.append(Change(item.name, "checked", old_checked, item.checked, reason, index))
                    if old_value != item.value:
                        pass_changes.append(Change(item.name, "value", old_value, item.value, reason, index))
        return pass_changes

    def is_field_required(self, field_name: str, fields: list[Field] | None = None) -> bool:
        if fields is None:
            return any(
                not rule.conditions and _requires(target, field_name) for rule in self.rules for target in rule.targets
            )
        fields_by_name = {item.name: item for item in fields}
        current = fields_by_name.get(field_name)
        if current is not None and current.checked:
            return True
        return any(
            _requires(target, field_name) and self.conditions_met(rule, fields_by_name)
            for rule in self.rules
            for target in rule.targets
        )


def _requires(target: Predicate, field_name: str) -> bool:
    if target.not_ or target.state is RuleState.CONTAINS:
        return False
    return target.name == field_name or is_child_of(field_name, target.name)


def _evaluate_condition(condition: Predicate, fields_by_name: dict[str, Field]) -> bool:
    item = fields_by_name.get(condition.name)
    if item is not None:
        return check_condition(item, condition)
    children = [candidate for name, candidate in fields_by_name.items() if is_child_of(name, condition.name)]
    return bool(children) and all(check_condition(child, condition) for child in children)


def _target_fields(name: str, working: list[Field], fields_by_name: dict[str, Field]) -> list[Field]:
    item = fields_by_name.get(name)
    if item is not None:
        return [item]
    children = [candidate for candidate in working if is_child_of(candidate.name, name)]
    if not children:
        logger.debug("rule_target_missing", extra={"target": name})
    return children


def apply_rules(fields: list[Field], rules: list[Rule], max_passes: int = DEFAULT_MAX_PASSES) -> ApplyResult:
    engine = RuleEngine.from_rules(rules, max_passes=max_passes)
    return engine.apply(fields)


def is_field_required(field_name: str, rules: list[Rule], fields: list[Field] | None = None) -> bool:
    """A field is required when it is already checked, or a Set/SetToValue
    target of a rule whose conditions hold for ``fields``.

    Without ``fields`` only unconditional rules are considered.
    """
    engine = RuleEngine.from_rules(rules)
    return engine.is_field_required(field_name, fields)


def check_field_compliance(fields: list[Field], rules: list[Rule]) -> list[ComplianceIssue]:
    """Report template defaults that the rules would rewrite on load."""
    result = apply_rules(fields, rules)
    original = {item.name: item for item in fields}
    issues: list[ComplianceIssue] = []
    for updated in result.updated_fields:
        before = original[updated.name]
        reason = result.reasons.get(updated.name, "Rule enforcement")
        if before.checked != updated.checked:
            issues.append(ComplianceIssue(updated.name, "checked", updated.checked, before.checked, reason))
        if before.value != updated.value:
            issues.append(ComplianceIssue(updated.name, "value", updated.value, before.value, reason))
    return issues
