import pytest

from template_rules.models import template_from_dict
from template_rules.rulesets import CircularInheritanceError, RuleSetNotFoundError
from template_rules.settings_validation import validate_settings


def mongo_template() -> dict:
    return {
        "name": "service",
        "fields": [
            {"name": "Repository", "value": "SQLite", "range": "SQLite||MongoDb"},
            {"name": "ConnectionString", "value": ""},
            {"name": "Port", "value": 80, "range": "integer(1..65535)"},
            {"name": "Hosting.Mode", "value": "http", "range": "http||https"},
        ],
        "ruleSets": [
            {
                "name": "Default",
                "rules": [
                    {
                        "conditions": [{"name": "Repository", "state": "set_to_value", "value": "MongoDb"}],
                        "targets": [{"name": "ConnectionString", "state": "set"}],
                    }
                ],
            },
            {
                "name": "Secure",
                "extends": "Default",
                "tags": ["prod"],
                "rules": [{"targets": [{"name": "Hosting.Mode", "state": "set_to_value", "value": "https"}]}],
            },
        ],
    }


def test_missing_required_field_after_propagation() -> None:
    result = validate_settings(template_from_dict(mongo_template()), {"Repository": "MongoDb"})

    assert result.is_valid is False
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.field == "ConnectionString"
    assert issue.type == "missing"
    assert issue.expected == "any value"
    assert result.summary["missingRequired"] == 1


def test_satisfied_rule_has_no_issues() -> None:
    result = validate_settings(
        template_from_dict(mongo_template()),
        {"Repository": "MongoDb", "ConnectionString": "mongodb://host"},
    )

    assert result.is_valid is True
    assert result.issues == []
    assert result.to_dict()["summary"] == {
        "totalFields": 4,
        "validFields": 4,
        "missingRequired": 0,
        "invalidValues": 0,
        "warnings": 0,
    }


def test_range_violations_are_invalid() -> None:
    result = validate_settings(template_from_dict(mongo_template()), {"Repository": "Postgres", "Port": "99999"})

    invalid = {issue.field: issue for issue in result.issues if issue.type == "invalid"}
    assert set(invalid) == {"Repository", "Port"}
    assert invalid["Port"].expected == "A whole number between 1 and 65535"
    assert invalid["Port"].actual == "99999"
    assert result.is_valid is False


def test_unknown_keys_are_warnings_only() -> None:
    result = validate_settings(
        template_from_dict(mongo_template()),
        {"Repository": "SQLite", "Typo": "1", "Hosting.Mode": "http", "Hosting.Mode.Extra": "x"},
    )

    assert result.is_valid is True
    assert [(issue.field, issue.type) for issue in result.issues] == [("Typo", "warning")]
    assert result.passes() is True
    assert result.passes(strict=True) is False


def test_misspelled_sibling_of_dotted_field_is_unknown() -> None:
    template = template_from_dict({"name": "logging", "fields": [{"name": "Logging.Level", "value": "info"}]})

    result = validate_settings(template, {"Logging.Level": "info", "Logging.Levle": "debug"})

    assert [(issue.field, issue.type) for issue in result.issues] == [("Logging.Levle", "warning")]
    assert result.is_valid is True


def test_inherited_rules_force_values() -> None:
    result = validate_settings(
        template_from_dict(mongo_template()),
        {"Repository": "SQLite", "Hosting.Mode": "http"},
        tag="prod",
    )

    assert result.is_valid is False
    assert [(issue.field, issue.type, issue.expected, issue.actual) for issue in result.issues] == [
        ("Hosting.Mode", "invalid", "https", "http")
    ]


def test_missing_field_expected_uses_readable_range() -> None:
    result = validate_settings(template_from_dict(mongo_template()), {"Repository": "SQLite"}, ruleset="Secure")

    assert [(issue.field, issue.type, issue.expected) for issue in result.issues] == [
        ("Hosting.Mode", "missing", "One of: http, https")
    ]


def test_structural_errors_propagate() -> None:
    raw = mongo_template()
    with pytest.raises(RuleSetNotFoundError):
        validate_settings(template_from_dict(raw), {}, ruleset="Nope")

    raw["ruleSets"][0]["extends"] = "Secure"
    with pytest.raises(CircularInheritanceError):
        validate_settings(template_from_dict(raw), {}, ruleset="Secure")
