from template_rules.models import Predicate, Rule, RuleState, rules_from_list
from template_rules.rule_validation import build_dependency_graph, validate_rules

SET = RuleState.SET
SET_TO_VALUE = RuleState.SET_TO_VALUE
CONTAINS = RuleState.CONTAINS


def _when(conditions: list[Predicate], *targets: Predicate, description: str | None = None) -> Rule:
    return Rule(targets=tuple(targets), conditions=tuple(conditions), description=description)


def test_clean_rules_are_valid_even_with_warnings() -> None:
    rules = [
        _when([Predicate("Repository", SET_TO_VALUE, "MongoDb")], Predicate("ConnectionString", SET)),
        _when([Predicate("Repository", SET_TO_VALUE, "MongoDb")], Predicate("DatabaseName", SET)),
    ]

    result = validate_rules(rules)

    assert result.is_valid is True
    assert result.errors == []
    assert result.warnings == ["Rules 1, 2 can be merged as they have identical conditions."]


def test_two_way_dependency_is_circular() -> None:
    rules = [
        _when([Predicate("A", SET)], Predicate("B", SET)),
        _when([Predicate("B", SET)], Predicate("A", SET)),
    ]

    result = validate_rules(rules)

    assert result.is_valid is False
    assert any("Circular dependency" in error for error in result.errors)
    assert result.errors.count("Circular dependency detected: A → B → A") == 1


def test_longer_cycle_reported_once() -> None:
    rules = [
        _when([Predicate("A", SET)], Predicate("B", SET)),
        _when([Predicate("B", SET)], Predicate("C", SET)),
        _when([Predicate("C", SET)], Predicate("A", SET)),
    ]
    circular = [error for error in validate_rules(rules).errors if error.startswith("Circular dependency")]
    assert len(circular) == 1


def test_self_referencing_default_rule_is_not_a_cycle() -> None:
    rules = [_when([Predicate("Port", SET, not_=True)], Predicate("Port", SET_TO_VALUE, "8080"))]
    assert build_dependency_graph(rules) == {"Port": []}
    assert validate_rules(rules).is_valid is True


def test_not_flag_conflict_under_same_conditions() -> None:
    rules = rules_from_list(
        [
            {"conditions": [{"name": "Repo", "state": "Set"}], "targets": [{"name": "Field1", "state": "Set", "not": False}]},
            {"conditions": [{"name": "Repo", "state": "Set"}], "targets": [{"name": "Field1", "state": "Set", "not": True}]},
        ]
    )

    result = validate_rules(rules)

    assert result.is_valid is False
    assert any("cannot be both required" in error for error in result.errors)
    assert result.warnings == []


def test_not_flag_conflict_ignores_different_conditions() -> None:
    rules = [
        _when([Predicate("Mode", SET_TO_VALUE, "cloud")], Predicate("Proxy", SET)),
        _when([Predicate("Mode", SET_TO_VALUE, "local")], Predicate("Proxy", SET, not_=True)),
    ]
    assert validate_rules(rules).is_valid is True


def test_contains_targets_are_additive() -> None:
    rules = [
        _when([Predicate("Auth", SET)], Predicate("Scopes", CONTAINS, "read")),
        _when([Predicate("Auth", SET)], Predicate("Scopes", CONTAINS, "write")),
    ]

    result = validate_rules(rules)

    assert result.is_valid is True
    assert result.errors == []


def test_conflicting_values_under_overlapping_conditions() -> None:
    rules = [
        _when([Predicate("Env", SET)], Predicate("LogLevel", SET_TO_VALUE, "debug")),
        _when([Predicate("Region", SET)], Predicate("LogLevel", SET_TO_VALUE, "info")),
    ]

    result = validate_rules(rules)

    assert result.is_valid is False
    assert result.errors == [
        'Contradiction detected for field "LogLevel": has conflicting values ("debug" vs "info") '
        "under overlapping conditions (rules 1 and 2)"
    ]


def test_exclusive_conditions_allow_different_values() -> None:
    rules = [
        _when([Predicate("Env", SET_TO_VALUE, "dev")], Predicate("LogLevel", SET_TO_VALUE, "debug")),
        _when([Predicate("Env", SET_TO_VALUE, "prod")], Predicate("LogLevel", SET_TO_VALUE, "warn")),
    ]
    assert validate_rules(rules).is_valid is True


def test_conflicting_states_under_overlapping_conditions() -> None:
    rules = [
        _when([], Predicate("Cache", SET)),
        _when([Predicate("Tier", SET)], Predicate("Cache", SET_TO_VALUE, "redis")),
    ]

    result = validate_rules(rules)

    assert result.is_valid is False
    assert "has conflicting states (set vs set_to_value)" in result.errors[0]


def test_internal_contradiction_uses_description_label() -> None:
    rules = [
        _when(
            [Predicate("Mode", SET_TO_VALUE, "a"), Predicate("Mode", SET_TO_VALUE, "b")],
            Predicate("Other", SET),
            description="impossible",
        ),
        _when([], Predicate("X", SET), Predicate("X", SET, not_=True)),
    ]

    result = validate_rules(rules)

    assert 'Contradiction detected in rule "impossible" involving condition Mode' in result.errors
    assert "Contradiction detected in rule 2 involving target X" in result.errors


def test_merge_suggestion_for_unconditional_rules_skips_contradictory_pairs() -> None:
    rules = [
        _when([], Predicate("A", SET)),
        _when([], Predicate("B", SET)),
        _when([], Predicate("C", SET)),
    ]
    assert validate_rules(rules).warnings == ["Rules 1, 2, 3 can be merged as they have no conditions."]

    conflicting = [
        _when([], Predicate("A", SET)),
        _when([], Predicate("A", SET, not_=True)),
        _when([], Predicate("B", SET)),
    ]
    result = validate_rules(conflicting)
    assert result.is_valid is False
    assert result.warnings == []


def test_condition_order_does_not_affect_identity() -> None:
    rules = [
        _when([Predicate("A", SET), Predicate("B", SET)], Predicate("X", SET)),
        _when([Predicate("B", SET), Predicate("A", SET)], Predicate("X", SET, not_=True)),
    ]
    assert any("cannot be both required" in error for error in validate_rules(rules).errors)


def test_contrapositive_pair_is_not_a_cycle() -> None:
    rules = [
        _when([Predicate("A", SET)], Predicate("B", SET, not_=True)),
        _when([Predicate("B", SET, not_=True)], Predicate("A", SET, not_=True)),
    ]

    result = validate_rules(rules)

    assert not any(error.startswith("Circular dependency") for error in result.errors)
    assert result.is_valid is True


def test_contrapositive_pair_does_not_hide_unrelated_cycle() -> None:
    rules = [
        _when([Predicate("A", SET)], Predicate("B", SET, not_=True)),
        _when([Predicate("B", SET, not_=True)], Predicate("A", SET, not_=True)),
        _when([Predicate("C", SET)], Predicate("D", SET)),
        _when([Predicate("D", SET)], Predicate("C", SET)),
    ]

    circular = [error for error in validate_rules(rules).errors if error.startswith("Circular dependency")]

    assert circular == ["Circular dependency detected: C → D → C"]


def test_contains_and_other_state_in_one_rule_conflict() -> None:
    rules = [_when([], Predicate("X", SET), Predicate("X", CONTAINS, "a"))]

    result = validate_rules(rules)

    assert result.is_valid is False
    assert result.errors == ["Contradiction detected in rule 1 involving target X"]
