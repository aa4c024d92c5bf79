from __future__ import annotations

import copy
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any


class TemplateFormatError(ValueError):
    """Raised when a template or rule document has the wrong shape."""


class RuleState(str, Enum):
    SET = "set"
    SET_TO_VALUE = "set_to_value"
    CONTAINS = "contains"

    @classmethod
    def parse(cls, raw_value: Any) -> RuleState:
        if isinstance(raw_value, RuleState):
            return raw_value
        candidate = str(raw_value or "").strip().lower().replace("_", "")
        for state in cls:
            if state.value.replace("_", "") == candidate:
                return state
        raise TemplateFormatError(f"unsupported rule state: {raw_value!r}")


@dataclass(slots=True)
class Field:
    name: str
    value: Any = ""
    checked: bool = False
    range: str = ""
    info: str = ""
    example: str = ""
    link: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Field:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise TemplateFormatError("field requires a name")
        value = raw.get("value", "")
        return cls(
            name=name,
            value="" if value is None else value,
            checked=bool(raw.get("checked", False)),
            range=str(raw.get("range") or ""),
            info=str(raw.get("info") or ""),
            example=str(raw.get("example") or ""),
            link=raw.get("link"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "checked": self.checked,
            "range": self.range,
            "info": self.info,
            "example": self.example,
        }
        if self.link is not None:
            payload["link"] = self.link
        return payload

    def copy(self) -> Field:
        return Field(
            name=self.name,
            value=copy.deepcopy(self.value),
            checked=self.checked,
            range=self.range,
            info=self.info,
            example=self.example,
            link=self.link,
        )


@dataclass(slots=True, frozen=True)
class Predicate:
    """A single field test, used both as a rule condition and as a rule target."""

    name: str
    state: RuleState
    value: str | None = None
    not_: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Predicate:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise TemplateFormatError("rule condition/target requires a name")
        value = raw.get("value")
        return cls(
            name=name,
            state=RuleState.parse(raw.get("state")),
            value=None if value is None else str(value),
            not_=bool(raw.get("not", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "state": self.state.value}
        if self.value is not None:
            payload["value"] = self.value
        if self.not_:
            payload["not"] = True
        return payload

    def identity(self) -> tuple[str, str, str | None, bool]:
        value = self.value if self.state is not RuleState.SET else None
        return (self.name, self.state.value, value, self.not_)


@dataclass(slots=True, frozen=True)
class Rule:
    targets: tuple[Predicate, ...]
    conditions: tuple[Predicate, ...] = ()
    description: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Rule:
        if not isinstance(raw, dict):
            raise TemplateFormatError("rule must be an object")
        return cls(
            targets=tuple(Predicate.from_dict(item) for item in raw.get("targets") or []),
            conditions=tuple(Predicate.from_dict(item) for item in raw.get("conditions") or []),
            description=raw.get("description") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"targets": [target.to_dict() for target in self.targets]}
        if self.conditions:
            payload["conditions"] = [condition.to_dict() for condition in self.conditions]
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(slots=True)
class RuleSet:
    name: str
    rules: list[Rule] = dataclass_field(default_factory=list)
    description: str = ""
    tags: list[str] = dataclass_field(default_factory=list)
    extends: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RuleSet:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise TemplateFormatError("ruleset requires a name")
        return cls(
            name=name,
            rules=[Rule.from_dict(item) for item in raw.get("rules") or []],
            description=str(raw.get("description") or ""),
            tags=[str(tag) for tag in raw.get("tags") or []],
            extends=raw.get("extends") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "rules": [rule.to_dict() for rule in self.rules],
        }
        if self.extends:
            payload["extends"] = self.extends
        return payload


@dataclass(slots=True)
class Template:
    name: str
    fields: list[Field] = dataclass_field(default_factory=list)
    rule_sets: list[RuleSet] = dataclass_field(default_factory=list)
    file_name: str = ""
    version: str = ""
    description: str = ""
    owner: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fileName": self.file_name,
            "version": self.version,
            "description": self.description,
            "owner": self.owner,
            "fields": [item.to_dict() for item in self.fields],
            "ruleSets": [rule_set.to_dict() for rule_set in self.rule_sets],
        }


@dataclass(slots=True, frozen=True)
class Change:
    field_name: str
    property: str
    old_value: Any
    new_value: Any
    reason: str
    rule_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "property": self.property,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "reason": self.reason,
            "ruleIndex": self.rule_index,
        }


def is_template(raw: Any) -> bool:
    if not isinstance(raw, dict):
        return False
    fields = raw.get("fields")
    return isinstance(fields, list) and len(fields) > 0 and isinstance(raw.get("ruleSets"), list)


def rules_from_list(raw_rules: Any) -> list[Rule]:
    if raw_rules is None:
        return []
    if not isinstance(raw_rules, list):
        raise TemplateFormatError("rules must be a list")
    return [Rule.from_dict(item) for item in raw_rules]


def fields_from_list(raw_fields: Any) -> list[Field]:
    if raw_fields is None:
        return []
    if not isinstance(raw_fields, list):
        raise TemplateFormatError("fields must be a list")
    return [Field.from_dict(item) for item in _flatten_nested_field_dicts(raw_fields)]


def template_from_dict(raw: Any) -> Template:
    if not isinstance(raw, dict):
        raise TemplateFormatError("template must be a JSON object")
    raw_rule_sets = raw.get("ruleSets") or []
    if not isinstance(raw_rule_sets, list):
        raise TemplateFormatError("ruleSets must be a list")
    return Template(
        name=str(raw.get("name") or ""),
        fields=fields_from_list(raw.get("fields")),
        rule_sets=[RuleSet.from_dict(item) for item in raw_rule_sets],
        file_name=str(raw.get("fileName") or ""),
        version=str(raw.get("version") or ""),
        description=str(raw.get("description") or ""),
        owner=str(raw.get("owner") or ""),
    )


def _flatten_nested_field_dicts(raw_fields: list[Any], prefix: str = "") -> list[dict[str, Any]]:
    flattened: list[dict[str, Any]] = []
    for raw in raw_fields:
        if not isinstance(raw, dict):
            raise TemplateFormatError("field must be an object")
        name = str(raw.get("name") or "").strip()
        full_name = f"{prefix}.{name}" if prefix else name
        children = raw.get("fields")
        if isinstance(children, list) and children:
            flattened.extend(_flatten_nested_field_dicts(children, full_name))
            continue
        leaf = {**raw, "name": full_name}
        leaf.pop("fields", None)
        if not leaf.get("range") and leaf.get("options"):
            leaf["range"] = "||".join(str(option) for option in leaf["options"])
        flattened.append(leaf)
    return flattened


def normalize_template_fields(raw: dict[str, Any]) -> dict[str, Any]:
    fields = raw.get("fields") or []
    if not any(isinstance(item, dict) and item.get("fields") for item in fields):
        return raw
    return {**raw, "fields": _flatten_nested_field_dicts(fields)}


def create_default_ruleset() -> RuleSet:
    return RuleSet(name="Default", description="Default rule set")


def merge_templates(existing: Template, incoming: Template) -> Template:
    """Merge ``incoming`` into ``existing`` without mutating either.

    Incoming fields replace same-named fields, rule-sets are merged by
    position (rules whose description is already present are skipped) and
    non-empty incoming metadata wins.
    """
    merged_fields: dict[str, Field] = {item.name: item.copy() for item in existing.fields}
    for item in incoming.fields:
        merged_fields[item.name] = item.copy()

    existing_sets = existing.rule_sets or [create_default_ruleset()]
    incoming_sets = incoming.rule_sets or [create_default_ruleset()]

    merged_sets: list[RuleSet] = []
    for index, existing_set in enumerate(existing_sets):
        incoming_set = incoming_sets[index] if index < len(incoming_sets) else None
        rules = list(existing_set.rules)
        if incoming_set is not None:
            known_descriptions = {rule.description for rule in existing_set.rules}
            rules.extend(rule for rule in incoming_set.rules if rule.description not in known_descriptions)
        merged_sets.append(
            RuleSet(
                name=existing_set.name,
                rules=rules,
                description=existing_set.description,
                tags=list(existing_set.tags),
                extends=existing_set.extends,
            )
        )
    merged_sets.extend(incoming_sets[len(existing_sets) :])

    return Template(
        name=incoming.name or existing.name,
        fields=list(merged_fields.values()),
        rule_sets=merged_sets,
        file_name=incoming.file_name or existing.file_name,
        version=incoming.version or existing.version,
        description=incoming.description or existing.description,
        owner=incoming.owner or existing.owner,
    )
