import copy

import pytest

from altwatch.config import (
    DEFAULT_CONFIG,
    ConfigError,
    bootstrap_runtime_config,
    build_rule_config,
    build_scan_scope,
    get_runtime_config,
    import_config_file,
    load_config_file,
    load_runtime_config,
    set_runtime_config,
)
from altwatch.models import SCAN_SCOPES
from altwatch.storage import init_db


def test_bootstrap_creates_runtime_config(tmp_path):
    conn = init_db()
    cfg = bootstrap_runtime_config(conn)
    assert cfg == DEFAULT_CONFIG


def test_get_runtime_config_after_set(tmp_path):
    conn = init_db()
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["app"]["name"] = "Test"
    set_runtime_config(conn, custom)
    cfg = get_runtime_config(conn)
    assert cfg["app"]["name"] == "Test"


def test_set_runtime_config_rejects_invalid(tmp_path):
    conn = init_db()
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, {"app": {"name": "Bad"}})
    assert "Invalid config.runtime" in str(excinfo.value)


@pytest.mark.parametrize(
    "section,key,value",
    [
        ("rules", "min_alt_length", -1),
        ("rules", "missing_alt_error", "yes"),
        ("scan", "scope", "everything"),
        ("jobs", "media_batch_size", 0),
        ("scan", "content_types", "post"),
    ],
)
def test_set_runtime_config_rejects_bad_values(tmp_path, section, key, value):
    conn = init_db()
    invalid = copy.deepcopy(DEFAULT_CONFIG)
    invalid[section][key] = value
    with pytest.raises(ConfigError):
        set_runtime_config(conn, invalid)


def test_load_runtime_config_builds_rules_and_scope(tmp_path):
    conn = init_db()
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["rules"]["generic_words"] = " Image, PHOTO ,,photo"
    custom["scan"].update({"scope": "modified_within", "days_back": 14})
    set_runtime_config(conn, custom)

    config = load_runtime_config(conn)
    rules = build_rule_config(config.rules)
    assert rules.generic_words == frozenset({"image", "photo"})
    assert rules.min_alt_length == 5
    assert rules.missing_alt_is_error is True

    scope = build_scan_scope(config.scan)
    assert (scope.kind, scope.days) == ("modified_within", 14)
    assert config.jobs.media_batch_size == 25
    assert config.jobs.content_batch_size == 5


def test_scope_without_limit_falls_back_to_all(tmp_path):
    conn = init_db()
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["scan"]["scope"] = "most_recent"
    set_runtime_config(conn, custom)
    assert build_scan_scope(load_runtime_config(conn).scan).kind == "all"


def test_every_scan_scope_is_accepted(tmp_path):
    conn = init_db()
    for scope in SCAN_SCOPES:
        custom = copy.deepcopy(DEFAULT_CONFIG)
        custom["scan"]["scope"] = scope
        set_runtime_config(conn, custom)
        assert load_runtime_config(conn).scan.scope == scope

    custom["scan"]["scope"] = "newest"
    with pytest.raises(ConfigError):
        set_runtime_config(conn, custom)


def test_load_config_file_merges_over_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("rules:\n  min_alt_length: 8\njobs:\n  media_batch_size: 10\n", encoding="utf-8")
    cfg = load_config_file(str(path))
    assert cfg["rules"]["min_alt_length"] == 8
    assert cfg["rules"]["detect_filename"] is True
    assert cfg["jobs"]["media_batch_size"] == 10
    assert cfg["jobs"]["content_batch_size"] == 5


def test_load_config_file_rejects_bad_files(tmp_path):
    bad_yaml = tmp_path / "bad.yml"
    bad_yaml.write_text("rules: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config_file(str(bad_yaml))

    unknown = tmp_path / "unknown.yml"
    unknown.write_text("rules:\n  shout: true\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config_file(str(unknown))

    with pytest.raises(ConfigError):
        load_config_file(str(tmp_path / "missing.yml"))


def test_import_config_file_stores_runtime_config(tmp_path):
    conn = init_db()
    path = tmp_path / "config.yml"
    path.write_text("app:\n  name: Imported\n", encoding="utf-8")
    import_config_file(conn, str(path))
    assert get_runtime_config(conn)["app"]["name"] == "Imported"
