"""Tests for YAML + environment configuration."""
from pathlib import Path

import pytest

from backlog.config import Config
from backlog.rest_store import RestIssueStore
from backlog.store import SQLiteIssueStore


def test_defaults_when_file_missing(tmp_path):
    cfg = Config.load(str(tmp_path / "missing.yaml"), environ={})
    assert cfg.store == "sqlite"
    assert cfg.default_account == "default"
    assert cfg.db_path == str(Path("~/.local/share/backlog/backlog.db").expanduser())


def test_yaml_values(tmp_path):
    path = tmp_path / "backlog.yaml"
    path.write_text(
        "store: rest\n"
        "store_url: https://records.example.com/rest/v1\n"
        "issue_prefix: OPS\n"
        "sync_in_background: false\n"
        "unknown_key: ignored\n"
    )
    cfg = Config.load(str(path), environ={})
    assert cfg.store == "rest"
    assert cfg.store_url == "https://records.example.com/rest/v1"
    assert cfg.issue_prefix == "OPS"
    assert cfg.sync_in_background is False


def test_env_overrides_yaml(tmp_path):
    path = tmp_path / "backlog.yaml"
    path.write_text(f"db_path: {tmp_path / 'from_yaml.db'}\n")
    env = {"BACKLOG_DB": str(tmp_path / "from_env.db"), "BACKLOG_ACCOUNT": "team"}
    cfg = Config.load(str(path), environ=env)
    assert cfg.db_path == str(tmp_path / "from_env.db")
    assert cfg.default_account == "team"


def test_unreadable_yaml_falls_back(tmp_path):
    path = tmp_path / "backlog.yaml"
    path.write_text("store: [unclosed\n")
    cfg = Config.load(str(path), environ={})
    assert cfg.store == "sqlite"


def test_make_sqlite_store(tmp_path):
    cfg = Config(db_path=str(tmp_path / "sub" / "b.db"), issue_prefix="OPS")
    store = cfg.make_store()
    assert isinstance(store, SQLiteIssueStore)
    assert store.issue_prefix == "OPS"
    assert (tmp_path / "sub").is_dir()


def test_make_rest_store():
    cfg = Config(store="rest", store_url="http://localhost:3001", store_api_key="k", http_timeout=2)
    store = cfg.make_store()
    assert isinstance(store, RestIssueStore)
    assert store.timeout == 2
    assert store.api_key == "k"


def test_rest_store_needs_url():
    with pytest.raises(ValueError):
        Config(store="rest").make_store()
