from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from .app import create_app, max_passes_from_env
from .documents import TemplateLoadError, UnsupportedSettingsFormatError, load_settings, load_template
from .fields import field_value_to_string, fields_to_nested_object, merge_settings_into_fields
from .models import Template
from .rule_validation import validate_rules
from .rules_engine import ApplyResult, FixedPointNotReachedError, apply_rules, check_field_compliance
from .rulesets import (
    CircularInheritanceError,
    RuleSetNotFoundError,
    get_inheritance_chain,
    resolve_ruleset_rules,
    select_ruleset,
    select_rulesets,
    validate_ruleset_inheritance,
)
from .settings_validation import validate_settings

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_ERROR = 2

# Failures that are the caller's fault (bad files, bad ruleset names) rather than invalid content.
USAGE_ERRORS = (
    TemplateLoadError,
    UnsupportedSettingsFormatError,
    RuleSetNotFoundError,
    CircularInheritanceError,
    FixedPointNotReachedError,
)

logger = logging.getLogger(__name__)


def _report(message: str = "") -> None:
    print(message, file=sys.stderr)


def _fail(error: Exception, as_json: bool) -> int:
    logger.debug("command_failed", extra={"error_type": type(error).__name__})
    if as_json:
        print(json.dumps({"error": str(error)}))
    else:
        _report(f"Error: {error}")
    return EXIT_ERROR


def _validate_settings_command(args: argparse.Namespace) -> int:
    try:
        template = load_template(args.template)
        settings = load_settings(args.settings)
        result = validate_settings(
            template, settings, ruleset=args.ruleset, tag=args.tag, max_passes=max_passes_from_env()
        )
    except USAGE_ERRORS as exc:
        return _fail(exc, args.json)

    passed = result.passes(strict=args.strict)
    if args.json:
        print(json.dumps({**result.to_dict(), "strict": args.strict, "passed": passed}, indent=2))
        return EXIT_OK if passed else EXIT_INVALID

    _report(f"Validating {args.settings} against template '{template.name or args.template}'")
    for issue in result.issues:
        line = f"  [{issue.type}] {issue.field}: {issue.message}"
        if issue.expected is not None:
            line += f" (expected: {issue.expected})"
        if issue.actual is not None:
            line += f" (actual: {issue.actual})"
        _report(line)
    summary = result.summary
    _report(
        f"{summary['validFields']}/{summary['totalFields']} fields valid, "
        f"{summary['missingRequired']} missing, {summary['invalidValues']} invalid, {summary['warnings']} warnings"
    )
    _report("Settings are valid." if passed else "Settings are NOT valid.")
    return EXIT_OK if passed else EXIT_INVALID


def _ruleset_report(template: Template, name: str) -> dict[str, Any]:
    report: dict[str, Any] = {"name": name, "chain": get_inheritance_chain(template, name)}
    try:
        rules = resolve_ruleset_rules(template, name)
    except CircularInheritanceError as exc:
        report.update(isValid=False, ruleCount=0, errors=[str(exc)], warnings=[], compliance=[])
        return report

    validation = validate_rules(rules)
    compliance = check_field_compliance(template.fields, rules) if validation.is_valid else []
    report.update(
        isValid=validation.is_valid,
        ruleCount=len(rules),
        errors=validation.errors,
        warnings=validation.warnings,
        compliance=[issue.to_dict() for issue in compliance],
    )
    return report


def _validate_template_command(args: argparse.Namespace) -> int:
    try:
        template = load_template(args.template)
        selected = select_rulesets(template, name=args.ruleset, tag=args.tag, all_rulesets=args.all)
    except USAGE_ERRORS as exc:
        return _fail(exc, args.json)

    inheritance = validate_ruleset_inheritance(template)
    reports = [_ruleset_report(template, rule_set.name) for rule_set in selected]
    is_valid = inheritance.is_valid and all(report["isValid"] for report in reports)

    if args.json:
        print(
            json.dumps(
                {
                    "template": template.name,
                    "isValid": is_valid,
                    "inheritance": inheritance.to_dict(),
                    "rulesets": reports,
                },
                indent=2,
            )
        )
        return EXIT_OK if is_valid else EXIT_INVALID

    _report(f"Template '{template.name or args.template}': {len(template.fields)} fields, {len(template.rule_sets)} rulesets")
    for error in inheritance.errors:
        _report(f"  [error] {error}")
    for report in reports:
        _report(f"RuleSet '{report['name']}' ({' → '.join(report['chain'])}): {report['ruleCount']} rules")
        for error in report["errors"]:
            _report(f"  [error] {error}")
        for warning in report["warnings"]:
            _report(f"  [warning] {warning}")
        for issue in report["compliance"]:
            _report(
                f"  [compliance] {issue['field']}.{issue['property']}: default {issue['actual']!r}, "
                f"rules force {issue['expected']!r}"
            )
    _report("Template is valid." if is_valid else "Template is NOT valid.")
    return EXIT_OK if is_valid else EXIT_INVALID


def _format_diff(result: ApplyResult) -> str:
    if not result.changes:
        return "No changes."
    lines = []
    for change in result.changes:
        lines.append(
            f"{change.field_name} {change.property}: {field_value_to_string(change.old_value)!r} -> "
            f"{field_value_to_string(change.new_value)!r}  # {change.reason}"
        )
    return "\n".join(lines)


def _apply_rules_command(args: argparse.Namespace) -> int:
    try:
        template = load_template(args.template)
        selected = select_ruleset(template, name=args.ruleset)
        rules = resolve_ruleset_rules(template, selected.name) if selected is not None else []
        fields = template.fields
        if args.settings:
            fields = merge_settings_into_fields(fields, load_settings(args.settings))
        result = apply_rules(fields, rules, max_passes=max_passes_from_env())
    except USAGE_ERRORS as exc:
        return _fail(exc, False)

    if args.format == "fields":
        output = json.dumps([item.to_dict() for item in result.updated_fields], indent=2)
    elif args.format == "diff":
        output = _format_diff(result)
    else:
        output = json.dumps(fields_to_nested_object(result.updated_fields), indent=2)

    _report(f"Applied {len(rules)} rules in {result.passes} passes, {len(result.changes)} changes")
    if args.output and not args.dry_run:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
        _report(f"Wrote {args.output}")
    else:
        if args.output:
            _report(f"Dry run: not writing {args.output}")
        print(output)
    return EXIT_OK


def _serve_command(args: argparse.Namespace) -> int:
    app = create_app()
    app.run(host=args.host, port=args.port, debug=False)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="template-rules", description="Validate and apply template rules")
    subparsers = parser.add_subparsers(dest="command", required=True)

    settings_parser = subparsers.add_parser("validate-settings", help="Validate a settings file against a template")
    settings_parser.add_argument("template")
    settings_parser.add_argument("settings")
    selection = settings_parser.add_mutually_exclusive_group()
    selection.add_argument("--ruleset")
    selection.add_argument("--tag")
    settings_parser.add_argument("--strict", action="store_true", help="Treat unknown fields as failures")
    settings_parser.add_argument("--json", action="store_true")
    settings_parser.set_defaults(handler=_validate_settings_command)

    template_parser = subparsers.add_parser("validate-template", help="Check a template's rulesets for errors")
    template_parser.add_argument("template")
    selection = template_parser.add_mutually_exclusive_group()
    selection.add_argument("--ruleset")
    selection.add_argument("--tag")
    selection.add_argument("--all", action="store_true")
    template_parser.add_argument("--json", action="store_true")
    template_parser.set_defaults(handler=_validate_template_command)

    apply_parser = subparsers.add_parser("apply-rules", help="Apply a ruleset and print the resulting settings")
    apply_parser.add_argument("template")
    apply_parser.add_argument("settings", nargs="?")
    apply_parser.add_argument("--ruleset")
    apply_parser.add_argument("-f", "--format", choices=["json", "fields", "diff"], default="json")
    apply_parser.add_argument("-o", "--output")
    apply_parser.add_argument("--dry-run", action="store_true")
    apply_parser.set_defaults(handler=_apply_rules_command)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(handler=_serve_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    level_name = os.environ.get("APP_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING))

    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
