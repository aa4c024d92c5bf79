import pytest

from template_rules.models import Predicate, Rule, RuleSet, RuleState, Template
from template_rules.rulesets import (
    CircularInheritanceError,
    RuleSetNotFoundError,
    find_ruleset_index,
    get_child_rulesets,
    get_default_rules,
    get_inheritance_chain,
    has_child_rulesets,
    resolve_ruleset_rules,
    select_ruleset,
    select_rulesets,
    validate_ruleset_inheritance,
)


def _rule(target: str, condition: str | None = None) -> Rule:
    conditions = (Predicate(condition, RuleState.SET),) if condition else ()
    return Rule(targets=(Predicate(target, RuleState.SET),), conditions=conditions, description=target)


def _template(*rule_sets: RuleSet) -> Template:
    return Template(name="svc", rule_sets=list(rule_sets))


def test_inheritance_chain_is_parent_first() -> None:
    template = _template(
        RuleSet("Base", rules=[_rule("Logging")]),
        RuleSet("Production", rules=[_rule("Tls")], extends="Base", tags=["prod"]),
    )

    assert get_inheritance_chain(template, "Production") == ["Base", "Production"]
    resolved = resolve_ruleset_rules(template, "Production")
    assert [rule.description for rule in resolved] == ["Logging", "Tls"]


def test_three_level_resolution_order() -> None:
    template = _template(
        RuleSet("Base", rules=[_rule("A")]),
        RuleSet("Staging", rules=[_rule("B")], extends="Base"),
        RuleSet("Production", rules=[_rule("C"), _rule("D")], extends="Staging"),
    )

    assert [rule.description for rule in resolve_ruleset_rules(template, 2)] == ["A", "B", "C", "D"]
    assert get_inheritance_chain(template, "Production") == ["Base", "Staging", "Production"]


def test_unknown_ruleset_resolves_to_no_rules() -> None:
    template = _template(RuleSet("Base", rules=[_rule("A")]))
    assert resolve_ruleset_rules(template, "Missing") == []
    assert resolve_ruleset_rules(template, 7) == []


def test_dangling_extends_stops_the_walk() -> None:
    template = _template(RuleSet("Child", rules=[_rule("A")], extends="Ghost"))
    assert [rule.description for rule in resolve_ruleset_rules(template, "Child")] == ["A"]


def test_circular_inheritance_raises_on_resolve() -> None:
    template = _template(
        RuleSet("A", extends="B"),
        RuleSet("B", extends="A"),
    )
    with pytest.raises(CircularInheritanceError, match="Circular inheritance detected in ruleset: A") as excinfo:
        resolve_ruleset_rules(template, "A")
    assert excinfo.value.ruleset_name == "A"


def test_chain_marks_cycle_instead_of_raising() -> None:
    template = _template(RuleSet("A", extends="B"), RuleSet("B", extends="A"))
    assert get_inheritance_chain(template, "A") == ["A (circular!)", "B", "A"]


def test_validate_inheritance_reports_every_problem_once() -> None:
    template = _template(
        RuleSet("A", extends="B"),
        RuleSet("B", extends="A"),
        RuleSet("Self", extends="Self"),
        RuleSet("Orphan", extends="Nowhere"),
        RuleSet("Fine"),
    )

    result = validate_ruleset_inheritance(template)

    assert result.is_valid is False
    assert result.errors == [
        "Circular inheritance detected: A → B → A",
        'RuleSet "Self" cannot extend itself',
        'RuleSet "Orphan" extends non-existent ruleset "Nowhere"',
    ]


def test_validate_inheritance_accepts_a_dag() -> None:
    template = _template(RuleSet("Base"), RuleSet("Dev", extends="Base"), RuleSet("Prod", extends="Base"))
    assert validate_ruleset_inheritance(template).to_dict() == {"isValid": True, "errors": []}


def test_lookup_helpers() -> None:
    template = _template(RuleSet("Base", rules=[_rule("A")]), RuleSet("Dev", extends="Base", rules=[_rule("B")]))

    assert find_ruleset_index(template, "Dev") == 1
    assert find_ruleset_index(template, "Nope") == -1
    assert [rule_set.name for rule_set in get_child_rulesets(template, "Base")] == ["Dev"]
    assert has_child_rulesets(template, "Base") is True
    assert has_child_rulesets(template, "Dev") is False
    assert [rule.description for rule in get_default_rules(template)] == ["A"]


def test_default_rules_of_a_child_default_can_include_parents() -> None:
    template = _template(RuleSet("Dev", extends="Base", rules=[_rule("B")]), RuleSet("Base", rules=[_rule("A")]))
    assert [rule.description for rule in get_default_rules(template)] == ["B"]
    assert [rule.description for rule in get_default_rules(template, resolve_inheritance=True)] == ["A", "B"]


def test_select_ruleset_by_name_tag_and_default() -> None:
    template = _template(
        RuleSet("Base", tags=["core"]),
        RuleSet("Production", tags=["Prod", "live"], extends="Base"),
    )

    assert select_ruleset(template).name == "Base"
    assert select_ruleset(template, name="production").name == "Production"
    assert select_ruleset(template, tag="PROD").name == "Production"
    assert select_ruleset(_template()) is None


def test_select_ruleset_unknown_name_lists_available() -> None:
    template = _template(RuleSet("Base"), RuleSet("Production"))
    with pytest.raises(RuleSetNotFoundError, match="Available: Base, Production"):
        select_ruleset(template, name="staging")
    with pytest.raises(RuleSetNotFoundError, match='No rulesets found with tag "qa"'):
        select_ruleset(template, tag="qa")


def test_select_rulesets_all_and_by_tag() -> None:
    template = _template(RuleSet("A", tags=["x"]), RuleSet("B", tags=["x"]), RuleSet("C"))
    assert [item.name for item in select_rulesets(template, all_rulesets=True)] == ["A", "B", "C"]
    assert [item.name for item in select_rulesets(template, tag="x")] == ["A", "B"]
    assert [item.name for item in select_rulesets(template)] == ["A"]
