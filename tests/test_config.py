"""Tests for wsvc.config — layered TOML configuration."""
from __future__ import annotations

import pathlib
import tomllib

import pytest

from wsvc.config import (
    KEYS,
    WsvcConfig,
    get_value,
    global_config_path,
    load_config,
    local_config_path,
    set_value,
    unset_value,
)
from wsvc.errors import ConfigError
from wsvc.repo import Repository


def test_global_path_honours_env(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WSVC_CONFIG_HOME", str(tmp_path / "home"))
    assert global_config_path() == tmp_path / "home" / "config.toml"


def test_defaults_when_nothing_is_set(repo: Repository) -> None:
    assert load_config(repo.root) == WsvcConfig()
    assert load_config(None) == WsvcConfig()


def test_set_then_get_local(repo: Repository) -> None:
    path = set_value("commit.author", "Ada Lovelace", repo.root)
    assert path == local_config_path(repo.root)
    assert get_value("commit.author", repo.root) == "Ada Lovelace"
    with path.open("rb") as fh:
        assert tomllib.load(fh) == {"commit": {"author": "Ada Lovelace"}}


def test_local_overrides_global(repo: Repository) -> None:
    set_value("commit.author", "global-user", global_=True)
    assert get_value("commit.author", repo.root) == "global-user"
    set_value("commit.author", "local-user", repo.root)
    assert get_value("commit.author", repo.root) == "local-user"
    assert get_value("commit.author", repo.root, global_=True) == "global-user"


def test_boolean_coercion(repo: Repository) -> None:
    set_value("commit.auto_record", "yes", repo.root)
    assert get_value("commit.auto_record", repo.root) is True
    set_value("commit.auto_record", "off", repo.root)
    assert get_value("commit.auto_record", repo.root) is False
    with pytest.raises(ConfigError):
        set_value("commit.auto_record", "maybe", repo.root)


def test_values_with_quotes_and_backslashes_survive(repo: Repository) -> None:
    tricky = 'pa"ss\\word'
    set_value("auth.password", tricky, repo.root)
    assert get_value("auth.password", repo.root) == tricky


def test_values_with_control_characters_survive(repo: Repository) -> None:
    set_value("commit.author", "kept", repo.root)
    tricky = "line one\nline two\ttabbed\r\x01\x7f"
    set_value("auth.password", tricky, repo.root)
    assert get_value("auth.password", repo.root) == tricky
    assert get_value("commit.author", repo.root) == "kept"
    with local_config_path(repo.root).open("rb") as fh:
        assert tomllib.load(fh)["auth"]["password"] == tricky


def test_unknown_key_raises(repo: Repository) -> None:
    with pytest.raises(ConfigError):
        set_value("no.such_key", "x", repo.root)
    with pytest.raises(ConfigError):
        get_value("nope")


def test_local_write_outside_repository_raises() -> None:
    with pytest.raises(ConfigError):
        set_value("commit.author", "x", None)


def test_unset(repo: Repository) -> None:
    set_value("remote.origin", "ws://example:9999/sync", repo.root)
    set_value("commit.author", "a", repo.root)
    assert unset_value("remote.origin", repo.root) is True
    assert unset_value("remote.origin", repo.root) is False
    assert get_value("remote.origin", repo.root) is None
    assert get_value("commit.author", repo.root) == "a"


def test_load_config_merges_every_key(repo: Repository) -> None:
    set_value("auth.account", "alice", global_=True)
    set_value("auth.password", "s3cret", repo.root)
    set_value("remote.origin", "ws://host:1/sync", repo.root)
    set_value("commit.auto_record", "true", repo.root)
    set_value("commit.author", "Alice", repo.root)
    assert load_config(repo.root) == WsvcConfig(
        author="Alice",
        auto_record=True,
        account="alice",
        password="s3cret",
        origin="ws://host:1/sync",
    )


def test_unreadable_file_is_ignored(repo: Repository) -> None:
    local_config_path(repo.root).write_text("this is [not toml", encoding="utf-8")
    assert load_config(repo.root) == WsvcConfig()


def test_password_never_logged(repo: Repository, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("DEBUG")
    set_value("auth.password", "hunter2", repo.root)
    assert "hunter2" not in caplog.text


def test_known_keys() -> None:
    assert set(KEYS) == {"commit.author", "commit.auto_record", "auth.account", "auth.password", "remote.origin"}
