from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any

from .models import Predicate, Rule, RuleState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuleValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _rule_label(rule: Rule, index: int) -> str:
    return f'"{rule.description}"' if rule.description else str(index + 1)


def _condition_key(rule: Rule) -> frozenset[tuple[str, str, str | None, bool]]:
    return frozenset(condition.identity() for condition in rule.conditions)


def _predicates_conflict(first: Predicate, second: Predicate) -> bool:
    """Two predicates on the same field that cannot both hold."""
    if first.state is not second.state:
        return True
    if first.not_ != second.not_:
        return first.state is not RuleState.CONTAINS or first.value == second.value
    if first.state is RuleState.SET_TO_VALUE and not first.not_:
        return first.value != second.value
    return False


def _conditions_exclusive(first: Iterable[Predicate], second: Iterable[Predicate]) -> bool:
    """True when the two AND-ed condition lists can never hold together.

    Only exact field/value disagreement counts; numeric ranges are not compared.
    """
    second_by_name: dict[str, list[Predicate]] = {}
    for condition in second:
        second_by_name.setdefault(condition.name, []).append(condition)
    for condition in first:
        for other in second_by_name.get(condition.name, []):
            if condition.state is other.state and condition.value == other.value and condition.not_ != other.not_:
                return True
            if (
                condition.state is RuleState.SET_TO_VALUE
                and other.state is RuleState.SET_TO_VALUE
                and not condition.not_
                and not other.not_
                and condition.value != other.value
            ):
                return True
    return False


def _grouped(predicates: Iterable[Predicate]) -> dict[str, list[Predicate]]:
    grouped: dict[str, list[Predicate]] = {}
    for predicate in predicates:
        grouped.setdefault(predicate.name, []).append(predicate)
    return grouped


def detect_internal_contradictions(rules: list[Rule]) -> list[str]:
    errors: list[str] = []
    for index, rule in enumerate(rules):
        for role, predicates in (("condition", rule.conditions), ("target", rule.targets)):
            for name, group in _grouped(predicates).items():
                if any(_predicates_conflict(first, second) for first, second in combinations(group, 2)):
                    errors.append(f"Contradiction detected in rule {_rule_label(rule, index)} involving {role} {name}")
    return errors


def detect_cross_rule_contradictions(rules: list[Rule]) -> tuple[list[str], set[frozenset[int]]]:
    """Find targets that two rules drive in incompatible directions.

    Returns the error messages and the set of contradictory rule index pairs.
    """
    errors: list[str] = []
    pairs: set[frozenset[int]] = set()

    targets_by_field: dict[str, list[tuple[int, Predicate]]] = {}
    for index, rule in enumerate(rules):
        for target in rule.targets:
            targets_by_field.setdefault(target.name, []).append((index, target))

    for field_name, entries in targets_by_field.items():
        for (first_index, first), (second_index, second) in combinations(entries, 2):
            if first_index == second_index:
                continue
            message = _target_conflict_message(rules, field_name, first_index, first, second_index, second)
            if message is None:
                continue
            pair = frozenset({first_index, second_index})
            pairs.add(pair)
            if message not in errors:
                errors.append(message)

    return errors, pairs


def _target_conflict_message(
    rules: list[Rule],
    field_name: str,
    first_index: int,
    first: Predicate,
    second_index: int,
    second: Predicate,
) -> str | None:
    first_rule, second_rule = rules[first_index], rules[second_index]
    rule_names = f"rules {first_index + 1} and {second_index + 1}"

    if first.state is second.state and first.not_ != second.not_:
        same_conditions = _condition_key(first_rule) == _condition_key(second_rule)
        if not same_conditions or not _predicates_conflict(first, second):
            return None
        return (
            f'Contradiction detected for field "{field_name}": cannot be both required (not={first.not_}) '
            f"and not required (not={second.not_}) under the same conditions ({rule_names})"
        )

    if _conditions_exclusive(first_rule.conditions, second_rule.conditions):
        return None

    if first.state is not second.state:
        if RuleState.CONTAINS in {first.state, second.state}:
            return None
        return (
            f'Contradiction detected for field "{field_name}": has conflicting states '
            f"({first.state.value} vs {second.state.value}) under overlapping conditions ({rule_names})"
        )

    if first.state is RuleState.SET_TO_VALUE and not first.not_ and first.value != second.value:
        return (
            f'Contradiction detected for field "{field_name}": has conflicting values '
            f'("{first.value}" vs "{second.value}") under overlapping conditions ({rule_names})'
        )
    return None


def build_dependency_graph(rules: list[Rule]) -> dict[str, list[str]]:
    """Map each target field to the condition fields it depends on.

    Rules that test and set the same field are default-value rules and add no edge.
    """
    graph: dict[str, list[str]] = {}
    for rule in rules:
        for condition in rule.conditions:
            graph.setdefault(condition.name, [])
            for target in rule.targets:
                if target.name == condition.name:
                    continue
                dependencies = graph.setdefault(target.name, [])
                if condition.name not in dependencies:
                    dependencies.append(condition.name)
    return graph


def _walk_cycles(graph: dict[str, list[str]]) -> Iterator[list[str]]:
    visited: set[str] = set()
    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        path = [root]
        on_path = {root}
        stack = [iter(graph[root])]
        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if child in on_path:
                yield path[path.index(child) :] + [child]
                continue
            if child in visited:
                continue
            visited.add(child)
            path.append(child)
            on_path.add(child)
            stack.append(iter(graph.get(child, ())))


def _are_contrapositives(first: Rule, second: Rule) -> bool:
    """True when ``second`` tests the field ``first`` sets and unsets what ``first`` tests.

    ``if A set then B not set`` paired with ``if B not set then A not set`` only
    ever pushes both fields towards unset, so the loop between them settles.
    """
    if not first.conditions or not second.conditions:
        return False
    first_conditions = {condition.name for condition in first.conditions}
    second_conditions = {condition.name for condition in second.conditions}
    if not any(target.name in second_conditions for target in first.targets):
        return False
    if not any(target.name in first_conditions for target in second.targets):
        return False

    for target in first.targets:
        for condition in second.conditions:
            if condition.name != target.name or condition.not_ != target.not_:
                continue
            if target.state is not RuleState.SET or condition.state is not RuleState.SET:
                continue
            for other_target in second.targets:
                for other_condition in first.conditions:
                    if (
                        other_condition.name == other_target.name
                        and other_target.not_ != other_condition.not_
                        and other_target.state is RuleState.SET
                        and other_condition.state is RuleState.SET
                    ):
                        return True
    return False


def _contrapositive_fields(rules: list[Rule]) -> set[str]:
    fields: set[str] = set()
    for first, second in combinations(rules, 2):
        if _are_contrapositives(first, second) or _are_contrapositives(second, first):
            for predicate in (*first.conditions, *first.targets, *second.conditions, *second.targets):
                fields.add(predicate.name)
    return fields


def detect_circular_dependencies(rules: list[Rule]) -> list[str]:
    """Report field dependency cycles.

    Cycles made up entirely of fields from contrapositive rule pairs are skipped.
    """
    errors: list[str] = []
    seen: set[frozenset[str]] = set()
    settled = _contrapositive_fields(rules)
    for cycle in _walk_cycles(build_dependency_graph(rules)):
        key = frozenset(cycle)
        if key in seen:
            continue
        seen.add(key)
        if settled and key <= settled:
            logger.debug("contrapositive_cycle_skipped", extra={"fields": sorted(key)})
            continue
        errors.append(f"Circular dependency detected: {' → '.join(cycle)}")
    return errors


def suggest_rule_merges(rules: list[Rule], contradictory_pairs: set[frozenset[int]]) -> list[str]:
    groups: dict[frozenset[tuple[str, str, str | None, bool]], list[int]] = {}
    for index, rule in enumerate(rules):
        groups.setdefault(_condition_key(rule), []).append(index)

    warnings: list[str] = []
    for key, indexes in groups.items():
        mergeable = [
            index
            for index in indexes
            if not any(frozenset({index, other}) in contradictory_pairs for other in indexes if other != index)
        ]
        if len(mergeable) < 2:
            continue
        numbers = ", ".join(str(index + 1) for index in mergeable)
        reason = "they have no conditions" if not key else "they have identical conditions"
        warnings.append(f"Rules {numbers} can be merged as {reason}.")
    return warnings


def validate_rules(rules: list[Rule]) -> RuleValidationResult:
    """Statically check a flat rule list.

    Contradictions and circular field dependencies are errors and make the
    result invalid; merge suggestions are warnings only.
    """
    internal_errors = detect_internal_contradictions(rules)
    cross_errors, contradictory_pairs = detect_cross_rule_contradictions(rules)
    circular_errors = detect_circular_dependencies(rules)
    warnings = suggest_rule_merges(rules, contradictory_pairs)

    errors = [*circular_errors, *cross_errors, *internal_errors]
    logger.info(
        "rules_validated",
        extra={"rule_count": len(rules), "error_count": len(errors), "warning_count": len(warnings)},
    )
    return RuleValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
