from __future__ import annotations

import re

from .models import Predicate, Rule, RuleState

QUOTES = "'\"`"

NEGATION_PATTERNS = (
    re.compile(r"^not\s+", re.IGNORECASE),
    re.compile(r"\s+is\s+not\s+", re.IGNORECASE),
    re.compile(r"\s+not\s+", re.IGNORECASE),
    re.compile(r"^disable[ds]?\s+", re.IGNORECASE),
    re.compile(r"\s+disabled$", re.IGNORECASE),
    re.compile(r"^uncheck(?:ed)?\s+", re.IGNORECASE),
    re.compile(r"\s+unchecked$", re.IGNORECASE),
)

# Phrases emitted by translate_rule, checked before the looser forms.
TRANSLATED_TARGET_VALUE = re.compile(
    r"^['\"`]?(.+?)['\"`]?\s+is\s+required\s+to\s+be\s+(not\s+)?set\s+to\s+the\s+value\s+['\"`](.+?)['\"`]$",
    re.IGNORECASE,
)
TRANSLATED_TARGET_SET = re.compile(r"^['\"`]?(.+?)['\"`]?\s+is\s+required\s+to\s+be\s+(not\s+)?set$", re.IGNORECASE)
TRANSLATED_TARGET_CONTAINS = re.compile(
    r"^['\"`]?(.+?)['\"`]?\s+must\s+(not\s+)?contain\s+['\"`](.+?)['\"`]$", re.IGNORECASE
)
TRANSLATED_CONDITION_VALUE = re.compile(
    r"^['\"`]?(.+?)['\"`]?\s+is\s+(not\s+)?set\s+to\s+the\s+value\s+['\"`](.+?)['\"`]$", re.IGNORECASE
)

SET_TO_VALUE_PATTERNS = (
    re.compile(r"^['\"`]?(.+?)['\"`]?\s*(?:=|equals?)\s*['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
    re.compile(r"^['\"`]?(.+?)['\"`]?\s+is\s+(?:set\s+)?to\s+['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
)
CONTAINS_PATTERNS = (
    re.compile(r"^['\"`]?(.+?)['\"`]?\s+contains?\s+['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
    re.compile(r"^['\"`]?(.+?)['\"`]?\s+includes?\s+['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
)
SET_PATTERNS = (
    re.compile(r"^['\"`]?(.+?)['\"`]?\s+is\s+(?:set|enabled|checked|required|active)$", re.IGNORECASE),
    re.compile(r"^(?:set|enable|check|require|activate)\s+['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
    re.compile(r"^['\"`]?(.+?)['\"`]?\s+(?:enabled|checked|set)$", re.IGNORECASE),
    re.compile(r"^['\"`]?(.+?)['\"`]?$", re.IGNORECASE),
)

IF_THEN_PATTERN = re.compile(r"^(?:if|when)\s+(.+?)\s*,?\s*(?:then|,)\s+(.+?)\.?$", re.IGNORECASE)
REQUIRES_PATTERN = re.compile(r"^['\"`]?(.+?)['\"`]?\s+(?:requires?|needs?)\s+['\"`]?(.+?)['\"`]?\.?$", re.IGNORECASE)
DEPENDS_PATTERN = re.compile(r"^['\"`]?(.+?)['\"`]?\s+depends?\s+on\s+['\"`]?(.+?)['\"`]?\.?$", re.IGNORECASE)
ALWAYS_PATTERN = re.compile(
    r"^(?:always\s+(?:set|enable|check|require)\s+)?['\"`]?(.+?)['\"`]?"
    r"(?:\s+is\s+(?:always\s+)?(?:required|enabled|set))?\.?$",
    re.IGNORECASE,
)
AND_SPLIT = re.compile(r"\s+and\s+", re.IGNORECASE)


def _describe_target(target: Predicate) -> str:
    negation = "not " if target.not_ else ""
    value = target.value or ""
    if target.state is RuleState.SET:
        return f"'{target.name}' is required to be {negation}set"
    if target.state is RuleState.SET_TO_VALUE:
        return f"'{target.name}' is required to be {negation}set to the value '{value}'"
    return f"'{target.name}' must {negation}contain '{value}'"


def _describe_condition(condition: Predicate) -> str:
    negation = "not " if condition.not_ else ""
    value = condition.value or ""
    if condition.state is RuleState.SET:
        return f"'{condition.name}' is {negation}set"
    if condition.state is RuleState.SET_TO_VALUE:
        return f"'{condition.name}' is {negation}set to the value '{value}'"
    return f"'{condition.name}' {negation}contains '{value}'"


def translate_rule(rule: Rule, specific_target: str | None = None) -> str:
    """Render a rule as an English sentence, optionally for a single target."""
    targets = [target for target in rule.targets if specific_target is None or target.name == specific_target]
    target_text = " and ".join(_describe_target(target) for target in targets)
    if not rule.conditions:
        return f"{target_text}."
    condition_text = " and ".join(_describe_condition(condition) for condition in rule.conditions)
    return f"If {condition_text}, then {target_text}."


def _strip_quotes(text: str) -> str:
    return text.strip().strip(QUOTES)


def _match_field_name(text: str, field_names: list[str] | None) -> str:
    cleaned = _strip_quotes(text)
    if not field_names:
        return cleaned
    lowered = cleaned.lower()
    for name in field_names:
        if name.lower() == lowered:
            return name
    for name in field_names:
        candidate = name.lower()
        if lowered in candidate or candidate in lowered:
            return name
    return cleaned


def _parse_predicate(text: str, field_names: list[str] | None) -> Predicate | None:
    working = text.strip()
    negated = False
    for pattern in NEGATION_PATTERNS:
        if pattern.search(working):
            negated = True
            working = pattern.sub(" ", working, count=1).strip()
            break

    if match := TRANSLATED_TARGET_VALUE.match(working):
        return Predicate(
            name=_match_field_name(match.group(1), field_names),
            state=RuleState.SET_TO_VALUE,
            value=match.group(3).strip(),
            not_=negated or bool(match.group(2)),
        )
    if match := TRANSLATED_TARGET_SET.match(working):
        return Predicate(
            name=_match_field_name(match.group(1), field_names),
            state=RuleState.SET,
            not_=negated or bool(match.group(2)),
        )
    if match := TRANSLATED_TARGET_CONTAINS.match(working):
        return Predicate(
            name=_match_field_name(match.group(1), field_names),
            state=RuleState.CONTAINS,
            value=match.group(3).strip(),
            not_=negated or bool(match.group(2)),
        )
    if match := TRANSLATED_CONDITION_VALUE.match(working):
        return Predicate(
            name=_match_field_name(match.group(1), field_names),
            state=RuleState.SET_TO_VALUE,
            value=match.group(3).strip(),
            not_=negated or bool(match.group(2)),
        )

    for pattern in SET_TO_VALUE_PATTERNS:
        if match := pattern.match(working):
            return Predicate(
                name=_match_field_name(match.group(1), field_names),
                state=RuleState.SET_TO_VALUE,
                value=_strip_quotes(match.group(2)),
                not_=negated,
            )
    for pattern in CONTAINS_PATTERNS:
        if match := pattern.match(working):
            return Predicate(
                name=_match_field_name(match.group(1), field_names),
                state=RuleState.CONTAINS,
                value=_strip_quotes(match.group(2)),
                not_=negated,
            )
    for pattern in SET_PATTERNS:
        match = pattern.match(working)
        if match and match.group(1).strip():
            return Predicate(name=_match_field_name(match.group(1), field_names), state=RuleState.SET, not_=negated)
    return None


def _parse_all(text: str, field_names: list[str] | None) -> list[Predicate]:
    parsed = (_parse_predicate(part, field_names) for part in AND_SPLIT.split(text))
    return [predicate for predicate in parsed if predicate is not None]


def parse_natural_language_rule(text: str, field_names: list[str] | None = None) -> Rule | None:
    """Parse common English rule phrasings (including translate_rule output).

    Returns ``None`` when no supported phrasing matches.
    """
    trimmed = text.strip()

    if match := IF_THEN_PATTERN.match(trimmed):
        conditions = _parse_all(match.group(1), field_names)
        targets = _parse_all(match.group(2), field_names)
        if targets:
            return Rule(targets=tuple(targets), conditions=tuple(conditions))

    if match := REQUIRES_PATTERN.match(trimmed):
        condition = _parse_predicate(match.group(1), field_names)
        target = _parse_predicate(match.group(2), field_names)
        if condition and target:
            return Rule(targets=(target,), conditions=(condition,))

    if match := DEPENDS_PATTERN.match(trimmed):
        target = _parse_predicate(match.group(1), field_names)
        condition = _parse_predicate(match.group(2), field_names)
        if condition and target:
            return Rule(targets=(target,), conditions=(condition,))

    lowered = trimmed.lower()
    if "always" in lowered or "required" in lowered:
        if match := ALWAYS_PATTERN.match(trimmed):
            target = _parse_predicate(match.group(1), field_names)
            if target:
                return Rule(targets=(target,))

    return None


def can_parse_natural_language_rule(text: str, field_names: list[str] | None = None) -> bool:
    return parse_natural_language_rule(text, field_names) is not None
