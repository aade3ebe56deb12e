from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .models import (
    SCAN_SCOPES,
    SCOPE_ALL,
    SCOPE_MODIFIED_WITHIN,
    SCOPE_MOST_RECENT,
    RuleConfig,
    ScanScope,
)
from .storage import get_setting, set_setting
from .utils import parse_csv_words


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str
    corpus_path: str


@dataclass(frozen=True)
class RulesConfig:
    missing_alt_error: bool
    min_alt_length: int
    detect_filename: bool
    generic_words: str


@dataclass(frozen=True)
class ScanConfig:
    scope: str
    days_back: int
    max_records: int
    content_types: list[str]


@dataclass(frozen=True)
class JobsConfig:
    media_batch_size: int
    content_batch_size: int
    step_interval_seconds: float
    findings_retention: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    rules: RulesConfig
    scan: ScanConfig
    jobs: JobsConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "altwatch",
    },
    "paths": {
        "data_dir": "/data",
        "state_db": "/data/state.sqlite3",
        "corpus_path": "/data/corpus.json",
    },
    "rules": {
        "missing_alt_error": True,
        "min_alt_length": 5,
        "detect_filename": True,
        "generic_words": "image,photo,picture,graphic,logo,icon,banner,untitled,placeholder",
    },
    "scan": {
        "scope": "all",
        "days_back": 0,
        "max_records": 0,
        "content_types": ["post", "page"],
    },
    "jobs": {
        "media_batch_size": 25,
        "content_batch_size": 5,
        "step_interval_seconds": 1.0,
        "findings_retention": 5,
    },
}

CONFIG_KEY = "config.runtime"


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return _build_config(cfg)


def get_config_path(path: str | None = None) -> str | None:
    return path or os.environ.get("AW_CONFIG_PATH") or None


def load_config_file(path: str) -> dict[str, Any]:
    """Read a YAML config file and lay it over the defaults.

    Partial files are allowed; anything not mentioned keeps its default.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    merged = deep_merge(_deep_copy(DEFAULT_CONFIG), raw)
    errors = validate_runtime_config(merged)
    if errors:
        raise ConfigError("Invalid config file: " + "; ".join(errors))
    return merged


def import_config_file(conn, path: str) -> dict[str, Any]:
    cfg = load_config_file(path)
    set_runtime_config(conn, cfg)
    return cfg


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if errors:
        return errors
    if cfg["rules"]["min_alt_length"] < 0:
        errors.append("config.runtime.rules.min_alt_length must be >= 0")
    if cfg["scan"]["scope"] not in SCAN_SCOPES:
        errors.append(
            "config.runtime.scan.scope must be one of " + ", ".join(SCAN_SCOPES)
        )
    if cfg["scan"]["days_back"] < 0 or cfg["scan"]["max_records"] < 0:
        errors.append("config.runtime.scan limits must be >= 0")
    for key in ("media_batch_size", "content_batch_size"):
        if cfg["jobs"][key] < 1:
            errors.append(f"config.runtime.jobs.{key} must be >= 1")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_rule_config(rules: RulesConfig) -> RuleConfig:
    return RuleConfig(
        missing_alt_is_error=rules.missing_alt_error,
        min_alt_length=max(0, rules.min_alt_length),
        detect_filename_like_alt=rules.detect_filename,
        generic_words=frozenset(parse_csv_words(rules.generic_words)),
    )


def build_scan_scope(scan: ScanConfig) -> ScanScope:
    if scan.scope == SCOPE_MODIFIED_WITHIN and scan.days_back > 0:
        return ScanScope(kind=SCOPE_MODIFIED_WITHIN, days=scan.days_back)
    if scan.scope == SCOPE_MOST_RECENT and scan.max_records > 0:
        return ScanScope(kind=SCOPE_MOST_RECENT, count=scan.max_records)
    return ScanScope(kind=SCOPE_ALL)


def deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    paths_cfg = cfg.get("paths") or {}
    rules_cfg = cfg.get("rules") or {}
    scan_cfg = cfg.get("scan") or {}
    jobs_cfg = cfg.get("jobs") or {}

    app = AppConfig(name=str(app_cfg.get("name")))

    paths = PathsConfig(
        data_dir=str(paths_cfg.get("data_dir")),
        state_db=str(paths_cfg.get("state_db")),
        corpus_path=str(paths_cfg.get("corpus_path")),
    )

    rules = RulesConfig(
        missing_alt_error=bool(rules_cfg.get("missing_alt_error")),
        min_alt_length=int(rules_cfg.get("min_alt_length")),
        detect_filename=bool(rules_cfg.get("detect_filename")),
        generic_words=str(rules_cfg.get("generic_words") or ""),
    )

    scan = ScanConfig(
        scope=str(scan_cfg.get("scope")),
        days_back=int(scan_cfg.get("days_back")),
        max_records=int(scan_cfg.get("max_records")),
        content_types=list(scan_cfg.get("content_types") or []),
    )

    jobs = JobsConfig(
        media_batch_size=int(jobs_cfg.get("media_batch_size")),
        content_batch_size=int(jobs_cfg.get("content_batch_size")),
        step_interval_seconds=float(jobs_cfg.get("step_interval_seconds")),
        findings_retention=int(jobs_cfg.get("findings_retention")),
    )

    return Config(app=app, paths=paths, rules=rules, scan=scan, jobs=jobs)


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
