from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .models import Rule, RuleSet, Template

CIRCULAR_MARKER = " (circular!)"

logger = logging.getLogger(__name__)


class CircularInheritanceError(ValueError):
    """Raised when a ruleset (directly or transitively) extends itself."""

    def __init__(self, ruleset_name: str) -> None:
        super().__init__(f"Circular inheritance detected in ruleset: {ruleset_name}")
        self.ruleset_name = ruleset_name


class RuleSetNotFoundError(LookupError):
    """Raised when a caller explicitly asks for a ruleset name or tag that does not exist."""


@dataclass(slots=True)
class InheritanceValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors)}


def find_ruleset(template: Template, name_or_index: str | int) -> RuleSet | None:
    rule_sets = template.rule_sets
    if isinstance(name_or_index, int):
        if 0 <= name_or_index < len(rule_sets):
            return rule_sets[name_or_index]
        return None
    return next((rule_set for rule_set in rule_sets if rule_set.name == name_or_index), None)


def find_ruleset_index(template: Template, name: str) -> int:
    return next((index for index, rule_set in enumerate(template.rule_sets) if rule_set.name == name), -1)


def get_child_rulesets(template: Template, parent_name: str) -> list[RuleSet]:
    return [rule_set for rule_set in template.rule_sets if rule_set.extends == parent_name]


def has_child_rulesets(template: Template, name: str) -> bool:
    return any(rule_set.extends == name for rule_set in template.rule_sets)


def resolve_ruleset_rules(template: Template, name_or_index: str | int) -> list[Rule]:
    """Return a ruleset's effective rules, ancestors first.

    An unknown ruleset resolves to no rules. Raises CircularInheritanceError
    when the ``extends`` chain revisits a ruleset.
    """
    rule_set = find_ruleset(template, name_or_index)
    if rule_set is None:
        return []

    chain: list[RuleSet] = []
    visited: set[str] = set()
    current: RuleSet | None = rule_set
    while current is not None:
        if current.name in visited:
            raise CircularInheritanceError(current.name)
        visited.add(current.name)
        chain.append(current)
        current = find_ruleset(template, current.extends) if current.extends else None

    rules: list[Rule] = []
    for ancestor in reversed(chain):
        rules.extend(ancestor.rules)

    logger.debug(
        "ruleset_resolved",
        extra={"ruleset": rule_set.name, "chain": [item.name for item in reversed(chain)], "rule_count": len(rules)},
    )
    return rules


def get_default_rules(template: Template, resolve_inheritance: bool = False) -> list[Rule]:
    if resolve_inheritance:
        return resolve_ruleset_rules(template, 0)
    return list(template.rule_sets[0].rules) if template.rule_sets else []


def get_inheritance_chain(template: Template, name_or_index: str | int) -> list[str]:
    """Ancestor names parent-first, e.g. ``["Base", "Production"]``.

    A cycle stops the walk and the repeated name is prepended with a
    ``(circular!)`` marker.
    """
    rule_set = find_ruleset(template, name_or_index)
    if rule_set is None:
        return []

    chain: list[str] = []
    visited: set[str] = set()
    current: RuleSet | None = rule_set
    while current is not None:
        if current.name in visited:
            chain.insert(0, f"{current.name}{CIRCULAR_MARKER}")
            break
        visited.add(current.name)
        chain.insert(0, current.name)
        current = find_ruleset(template, current.extends) if current.extends else None
    return chain


def validate_ruleset_inheritance(template: Template) -> InheritanceValidationResult:
    names = {rule_set.name for rule_set in template.rule_sets}
    parents = {rule_set.name: rule_set.extends for rule_set in template.rule_sets}
    errors: list[str] = []

    for rule_set in template.rule_sets:
        if not rule_set.extends:
            continue
        if rule_set.extends not in names:
            errors.append(f'RuleSet "{rule_set.name}" extends non-existent ruleset "{rule_set.extends}"')
            continue
        if rule_set.extends == rule_set.name:
            errors.append(f'RuleSet "{rule_set.name}" cannot extend itself')
            continue

        path: list[str] = []
        current: str | None = rule_set.name
        while current is not None:
            if current in path:
                cycle = path[path.index(current) :] + [current]
                errors.append(f"Circular inheritance detected: {_canonical_cycle(cycle)}")
                break
            path.append(current)
            current = parents.get(current)

    unique_errors = list(dict.fromkeys(errors))
    if unique_errors:
        logger.info("ruleset_inheritance_invalid", extra={"template": template.name, "errors": unique_errors})
    return InheritanceValidationResult(is_valid=not unique_errors, errors=unique_errors)


def _canonical_cycle(cycle: list[str]) -> str:
    # Rotate so the same cycle found from different starting rulesets renders identically.
    nodes = cycle[:-1]
    start = nodes.index(min(nodes))
    rotated = nodes[start:] + nodes[:start]
    return " → ".join(rotated + [rotated[0]])


def select_ruleset(template: Template, name: str | None = None, tag: str | None = None) -> RuleSet | None:
    if name:
        wanted = name.lower()
        found = next((rule_set for rule_set in template.rule_sets if rule_set.name.lower() == wanted), None)
        if found is None:
            available = ", ".join(rule_set.name for rule_set in template.rule_sets) or "(none)"
            raise RuleSetNotFoundError(f'RuleSet "{name}" not found. Available: {available}')
        return found

    if tag:
        wanted = tag.lower()
        found = next(
            (
                rule_set
                for rule_set in template.rule_sets
                if any(candidate.lower() == wanted for candidate in rule_set.tags)
            ),
            None,
        )
        if found is None:
            all_tags = list(dict.fromkeys(item for rule_set in template.rule_sets for item in rule_set.tags))
            raise RuleSetNotFoundError(
                f'No rulesets found with tag "{tag}". Available tags: {", ".join(all_tags) or "(none)"}'
            )
        return found

    return template.rule_sets[0] if template.rule_sets else None


def select_rulesets(
    template: Template,
    name: str | None = None,
    tag: str | None = None,
    all_rulesets: bool = False,
) -> list[RuleSet]:
    if all_rulesets:
        return list(template.rule_sets)
    if tag and not name:
        wanted = tag.lower()
        matches = [
            rule_set for rule_set in template.rule_sets if any(item.lower() == wanted for item in rule_set.tags)
        ]
        if matches:
            return matches
    selected = select_ruleset(template, name=name, tag=tag)
    return [selected] if selected is not None else []
