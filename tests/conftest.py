from __future__ import annotations

import copy

import pytest

from altwatch.config import DEFAULT_CONFIG, load_runtime_config, set_runtime_config
from altwatch.models import AssetMetadata, RuleConfig
from altwatch.storage import init_db


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("AW_DATA_DIR", str(tmp_path / "data"))
    for name in ("AW_ADMIN_TOKEN", "AW_CORPUS_PATH", "AW_CONFIG_PATH", "AW_LOG_FILE", "AW_LOG_LEVELS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def conn(tmp_path):
    connection = init_db(str(tmp_path / "state.sqlite3"))
    yield connection
    connection.close()


@pytest.fixture
def rules():
    return RuleConfig(
        missing_alt_is_error=True,
        min_alt_length=5,
        detect_filename_like_alt=True,
        generic_words=frozenset({"image", "photo", "picture", "logo"}),
    )


def configure(conn, **sections):
    """Store DEFAULT_CONFIG with per-section overrides and return the built Config."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in sections.items():
        cfg[section].update(values)
    set_runtime_config(conn, cfg)
    return load_runtime_config(conn)


def image_asset(alt: str, name: str = "photo.jpg", modified_at: str | None = None) -> AssetMetadata:
    return AssetMetadata(
        alt_text=alt,
        filename=name,
        mime_type="image/jpeg",
        title=name.rsplit(".", 1)[0],
        url=f"https://cdn.example.com/uploads/{name}",
        modified_at=modified_at,
    )
