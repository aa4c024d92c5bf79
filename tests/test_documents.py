import json

import pytest

from template_rules.documents import (
    TemplateLoadError,
    UnsupportedSettingsFormatError,
    load_settings,
    load_template,
    parse_settings,
)


def test_load_template_flattens_nested_fields(tmp_path) -> None:
    path = tmp_path / "service.template.json"
    path.write_text(
        json.dumps(
            {
                "name": "service",
                "fields": [{"name": "Hosting", "fields": [{"name": "Port", "value": 443, "range": "integer"}]}],
                "ruleSets": [{"name": "Default", "rules": []}],
            }
        ),
        encoding="utf-8",
    )

    template = load_template(path)

    assert [item.name for item in template.fields] == ["Hosting.Port"]
    assert template.file_name == "service.template.json"


def test_load_template_errors(tmp_path) -> None:
    with pytest.raises(TemplateLoadError, match="not found"):
        load_template(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(TemplateLoadError, match="not valid JSON"):
        load_template(broken)

    malformed = tmp_path / "malformed.json"
    malformed.write_text(json.dumps({"fields": [{"name": "A"}], "ruleSets": [{"rules": []}]}), encoding="utf-8")
    with pytest.raises(TemplateLoadError, match="malformed"):
        load_template(malformed)


def test_load_settings_by_extension(tmp_path) -> None:
    json_path = tmp_path / "appsettings.json"
    json_path.write_text(json.dumps({"Hosting": {"Port": 443}, "Tags": ["a"]}), encoding="utf-8")
    yaml_path = tmp_path / "settings.yml"
    yaml_path.write_text("Hosting:\n  Port: 443\nServers:\n  - Host: a\n", encoding="utf-8")
    env_path = tmp_path / ".env"
    env_path.write_text("# local\nHOSTING_PORT=443\n", encoding="utf-8")

    assert load_settings(json_path) == {"Hosting.Port": 443, "Tags": ["a"]}
    assert load_settings(yaml_path) == {"Hosting.Port": 443, "Servers.1.Host": "a"}
    assert load_settings(env_path) == {"HOSTING_PORT": "443"}


def test_load_settings_errors(tmp_path) -> None:
    xml_path = tmp_path / "settings.xml"
    xml_path.write_text("<settings/>", encoding="utf-8")
    with pytest.raises(UnsupportedSettingsFormatError, match="unsupported settings format"):
        load_settings(xml_path)

    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("key: [unclosed\n", encoding="utf-8")
    with pytest.raises(TemplateLoadError, match="could not be parsed"):
        load_settings(bad_yaml)

    with pytest.raises(TemplateLoadError, match="not found"):
        load_settings(tmp_path / "nope.json")


def test_parse_settings_accepts_bare_format_names() -> None:
    assert parse_settings("a: 1\n", "yaml") == {"a": 1}
    assert parse_settings("", ".json") == {}
    with pytest.raises(TemplateLoadError, match="mapping"):
        parse_settings("- 1\n- 2\n", "yaml")
