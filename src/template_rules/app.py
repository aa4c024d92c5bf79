from __future__ import annotations

import logging
import os
from typing import Any

from flask import Flask, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException

from .fields import flatten_object, to_field_values
from .models import Template, TemplateFormatError, fields_from_list, normalize_template_fields, rules_from_list, template_from_dict
from .ranges import to_human_readable, validate_value
from .rule_validation import validate_rules
from .rules_engine import DEFAULT_MAX_PASSES, FixedPointNotReachedError, RuleEngine
from .rulesets import (
    CircularInheritanceError,
    RuleSetNotFoundError,
    get_inheritance_chain,
    resolve_ruleset_rules,
    select_ruleset,
    validate_ruleset_inheritance,
)
from .settings_validation import validate_settings
from .translation import parse_natural_language_rule, translate_rule


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("template_rules").setLevel(level)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return jsonify({"error": "invalid request payload"}), 400
        return error

    @app.errorhandler(TemplateFormatError)
    def handle_template_format_error(error: TemplateFormatError) -> Any:
        app.logger.warning("invalid_template_payload", extra={"path": request.path, "error": str(error)})
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(RuleSetNotFoundError)
    def handle_ruleset_not_found(error: RuleSetNotFoundError) -> Any:
        app.logger.info("ruleset_not_found", extra={"path": request.path, "error": str(error)})
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(CircularInheritanceError)
    def handle_circular_inheritance(error: CircularInheritanceError) -> Any:
        app.logger.warning("circular_inheritance", extra={"path": request.path, "ruleset": error.ruleset_name})
        return jsonify({"error": str(error), "ruleset": error.ruleset_name}), 422

    @app.errorhandler(FixedPointNotReachedError)
    def handle_fixed_point_not_reached(error: FixedPointNotReachedError) -> Any:
        app.logger.warning("fixed_point_not_reached", extra={"path": request.path, "max_passes": error.max_passes})
        return jsonify({"error": str(error)}), 422

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        if _is_api_request():
            return jsonify({"error": error.description}), error.code
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        if _is_api_request():
            return jsonify({"error": "internal server error"}), 500
        raise error


def _json_body() -> dict[str, Any]:
    body = request.get_json(force=True, silent=False) or {}
    if not isinstance(body, dict):
        raise BadRequest("request body must be a JSON object")
    return body


def _template_from_body(body: dict[str, Any]) -> Template:
    raw = body.get("template")
    if not isinstance(raw, dict):
        raise TemplateFormatError("template must be a JSON object")
    return template_from_dict(normalize_template_fields(raw))


def max_passes_from_env() -> int:
    raw = os.environ.get("TEMPLATE_RULES_MAX_PASSES", "")
    try:
        return max(1, int(raw)) if raw else DEFAULT_MAX_PASSES
    except ValueError:
        logging.getLogger(__name__).warning("invalid_max_passes", extra={"value": raw})
        return DEFAULT_MAX_PASSES


def create_app() -> Flask:
    app = Flask(__name__)
    _configure_observability(app, "template-rules")
    _configure_error_handlers(app)
    app.config["MAX_PASSES"] = max_passes_from_env()

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app.config["APP_NAME"]})

    @app.post("/api/rules/validate")
    def validate_rule_list() -> Any:
        body = _json_body()
        if "rules" not in body:
            return jsonify({"error": "rules is required"}), 400
        result = validate_rules(rules_from_list(body["rules"]))
        return jsonify(result.to_dict())

    @app.post("/api/rules/apply")
    def apply_rule_list() -> Any:
        body = _json_body()
        if "template" in body:
            template = _template_from_body(body)
            selected = select_ruleset(template, name=body.get("ruleset"))
            rules = resolve_ruleset_rules(template, selected.name) if selected is not None else []
            fields = fields_from_list(body["fields"]) if "fields" in body else template.fields
        else:
            if "fields" not in body:
                return jsonify({"error": "fields is required"}), 400
            fields = fields_from_list(body["fields"])
            rules = rules_from_list(body.get("rules"))

        engine = RuleEngine.from_rules(rules, max_passes=app.config["MAX_PASSES"])
        result = engine.apply(fields)
        app.logger.info(
            "rules_applied", extra={"field_count": len(fields), "rule_count": len(rules), "change_count": len(result.changes)}
        )
        return jsonify(result.to_dict())

    @app.post("/api/rules/translate")
    def translate_rule_list() -> Any:
        body = _json_body()
        if "text" in body:
            field_names = body.get("fieldNames")
            parsed = parse_natural_language_rule(str(body["text"]), field_names if isinstance(field_names, list) else None)
            if parsed is None:
                return jsonify({"error": "could not parse rule text"}), 400
            return jsonify({"rule": parsed.to_dict(), "text": translate_rule(parsed)})
        rules = rules_from_list(body.get("rules"))
        return jsonify({"translations": [translate_rule(rule) for rule in rules]})

    @app.post("/api/rulesets/resolve")
    def resolve_ruleset() -> Any:
        body = _json_body()
        template = _template_from_body(body)
        selected = select_ruleset(template, name=body.get("ruleset"), tag=body.get("tag"))
        if selected is None:
            return jsonify({"ruleset": None, "chain": [], "rules": []})
        rules = resolve_ruleset_rules(template, selected.name)
        return jsonify(
            {
                "ruleset": selected.name,
                "chain": get_inheritance_chain(template, selected.name),
                "rules": [rule.to_dict() for rule in rules],
            }
        )

    @app.post("/api/rulesets/inheritance")
    def check_inheritance() -> Any:
        template = _template_from_body(_json_body())
        return jsonify(validate_ruleset_inheritance(template).to_dict())

    @app.post("/api/settings/validate")
    def validate_settings_payload() -> Any:
        body = _json_body()
        template = _template_from_body(body)
        settings = body.get("settings")
        if not isinstance(settings, dict):
            return jsonify({"error": "settings must be a JSON object"}), 400
        result = validate_settings(
            template,
            to_field_values(flatten_object(settings)),
            ruleset=body.get("ruleset"),
            tag=body.get("tag"),
            max_passes=app.config["MAX_PASSES"],
        )
        return jsonify(result.to_dict())

    @app.post("/api/ranges/check")
    def check_range() -> Any:
        body = _json_body()
        range_spec = str(body.get("range") or "")
        payload: dict[str, Any] = {"range": range_spec, "description": to_human_readable(range_spec)}
        if "value" in body:
            payload["valid"] = validate_value(body["value"], range_spec)
        return jsonify(payload)

    return app
