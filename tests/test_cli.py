"""CLI tests for the ``wsvc`` Typer app.

Each test runs in its own temporary working directory.  Sync and clone are
exercised against an in-memory server session by swapping out the network
client; the real aiohttp client is covered in test_sync_client.py.
"""
from __future__ import annotations

import asyncio
import datetime
import pathlib
from typing import Any

import pytest
from typer.testing import CliRunner

from conftest import channel_pair
from wsvc.app import cli
from wsvc.commands import sync as sync_command
from wsvc.config import get_value
from wsvc.errors import ExitCode
from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind
from wsvc.repo import WSVC_DIR, init_repository, open_repository
from wsvc.restore import AUTO_RECORD_MESSAGE
from wsvc.snapshot import commit
from wsvc.sync.protocol import SyncReport, SyncSession

runner = CliRunner()

_T0 = datetime.datetime(2020, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def workdir(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> pathlib.Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _invoke(*args: str) -> Any:
    return runner.invoke(cli, list(args))


# ---------------------------------------------------------------------------
# init / new
# ---------------------------------------------------------------------------


def test_init_creates_repository(workdir: pathlib.Path) -> None:
    result = _invoke("init")
    assert result.exit_code == 0, result.output
    assert "✅" in result.output
    assert (workdir / WSVC_DIR / "HEAD").is_file()


def test_init_twice_fails(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("init")
    assert result.exit_code == ExitCode.USER_ERROR
    assert "already exists" in result.output


def test_new_creates_directory(workdir: pathlib.Path) -> None:
    assert _invoke("new", "proj").exit_code == 0
    assert (workdir / "proj" / WSVC_DIR).is_dir()
    assert _invoke("new", "server", "--bare").exit_code == 0
    assert open_repository(workdir / "server").bare


# ---------------------------------------------------------------------------
# commit / log
# ---------------------------------------------------------------------------


def test_commit_and_log(workdir: pathlib.Path) -> None:
    _invoke("init")
    (workdir / "a.txt").write_text("one")
    first = _invoke("commit", "-m", "first", "--author", "ada")
    assert first.exit_code == 0, first.output
    (workdir / "a.txt").write_text("two")
    assert _invoke("commit", "-m", "second").exit_code == 0

    result = _invoke("log")
    assert result.exit_code == 0, result.output
    assert result.output.index("second") < result.output.index("first")
    assert "(HEAD)" in result.output
    assert "Author: ada" in result.output

    limited = _invoke("log", "--limit", "1")
    assert "second" in limited.output
    assert "first" not in limited.output
    skipped = _invoke("log", "--skip", "1")
    assert "first" in skipped.output
    assert "second" not in skipped.output


def test_commit_uses_configured_author(workdir: pathlib.Path) -> None:
    _invoke("init")
    _invoke("config", "set", "commit.author", "Grace Hopper")
    assert _invoke("commit", "-m", "m").exit_code == 0
    repo = open_repository(workdir)
    head = repo.store.read_head()
    assert head is not None
    assert repo.store.get_record(head).author == "Grace Hopper"


def test_log_on_empty_repository(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("log")
    assert result.exit_code == 0
    assert "No records yet." in result.output


def test_commands_outside_repository(workdir: pathlib.Path) -> None:
    for args in (["commit", "-m", "x"], ["log"], ["checkout"]):
        result = _invoke(*args)
        assert result.exit_code == ExitCode.REPO_NOT_FOUND, args
        assert "❌" in result.output


def test_commit_in_bare_repository_fails(workdir: pathlib.Path) -> None:
    _invoke("init", "--bare")
    result = _invoke("commit", "-m", "x")
    assert result.exit_code == ExitCode.USER_ERROR
    assert "bare" in result.output


# ---------------------------------------------------------------------------
# checkout
# ---------------------------------------------------------------------------


def test_checkout_restores_older_record(workdir: pathlib.Path) -> None:
    _invoke("init")
    (workdir / "a.txt").write_text("v1")
    _invoke("commit", "-m", "one")
    repo = open_repository(workdir)
    first = repo.store.read_head()
    assert first is not None
    (workdir / "a.txt").write_text("v2")
    _invoke("commit", "-m", "two")

    result = _invoke("checkout", first[:10])
    assert result.exit_code == 0, result.output
    assert (workdir / "a.txt").read_text() == "v1"

    assert _invoke("checkout").exit_code == 0
    assert (workdir / "a.txt").read_text() == "v2"


def test_checkout_clean_flag(workdir: pathlib.Path) -> None:
    _invoke("init")
    (workdir / "a.txt").write_text("a")
    _invoke("commit", "-m", "one")
    (workdir / "junk.txt").write_text("junk")

    assert _invoke("checkout", "latest").exit_code == 0
    assert (workdir / "junk.txt").exists()
    assert _invoke("checkout", "latest", "--clean").exit_code == 0
    assert not (workdir / "junk.txt").exists()


def test_checkout_ambiguous_prefix_lists_candidates(workdir: pathlib.Path) -> None:
    _invoke("init")
    records = workdir / WSVC_DIR / "records"
    first = "1234abcd" + "0" * 56
    second = "1234ef01" + "0" * 56
    (records / first).touch()
    (records / second).touch()

    result = _invoke("checkout", "1234")
    assert result.exit_code == ExitCode.USER_ERROR
    assert first in result.output
    assert second in result.output


def test_checkout_unknown_ref(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("checkout", "ffff")
    assert result.exit_code == ExitCode.USER_ERROR
    assert "No record matches" in result.output


def test_checkout_auto_records_dirty_workspace(workdir: pathlib.Path) -> None:
    _invoke("init")
    _invoke("config", "set", "commit.auto_record", "true")
    (workdir / "a.txt").write_text("v1")
    _invoke("commit", "-m", "one")
    (workdir / "a.txt").write_text("unsaved")

    result = _invoke("checkout")
    assert result.exit_code == 0, result.output
    assert "saved as" in result.output
    repo = open_repository(workdir)
    head = repo.store.read_head()
    assert head is not None
    assert repo.store.get_record(head).message == AUTO_RECORD_MESSAGE
    assert (workdir / "a.txt").read_text() == "v1"


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


def test_config_roundtrip(workdir: pathlib.Path) -> None:
    _invoke("init")
    assert _invoke("config", "set", "remote.origin", "ws://h:1/sync").exit_code == 0
    got = _invoke("config", "get", "remote.origin")
    assert got.exit_code == 0
    assert got.output.strip() == "ws://h:1/sync"

    assert _invoke("config", "unset", "remote.origin").exit_code == 0
    assert _invoke("config", "get", "remote.origin").exit_code == ExitCode.USER_ERROR
    assert _invoke("config", "unset", "remote.origin").exit_code == ExitCode.USER_ERROR


def test_config_masks_password(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("config", "set", "auth.password", "hunter2")
    assert "hunter2" not in result.output
    got = _invoke("config", "get", "auth.password")
    assert got.output.strip() == "***"


def test_config_global_outside_repository(workdir: pathlib.Path) -> None:
    assert _invoke("config", "set", "commit.author", "x").exit_code == ExitCode.USER_ERROR
    assert _invoke("config", "set", "commit.author", "x", "--global").exit_code == 0
    assert _invoke("config", "get", "commit.author", "--global").output.strip() == "x"


def test_config_unknown_key(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("config", "set", "bogus.key", "1")
    assert result.exit_code == ExitCode.USER_ERROR
    assert "Unknown config key" in result.output


# ---------------------------------------------------------------------------
# sync / clone
# ---------------------------------------------------------------------------


@pytest.fixture
def remote(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    """Replace the network client with an in-memory session against a bare store."""
    repo = init_repository(tmp_path / "remote", bare=True)
    scratch = tmp_path / "remote-scratch"
    scratch.mkdir()
    (scratch / "shared.txt").write_text("from the server")
    commit(repo.store, scratch, author="server", message="seed", timestamp=_T0)
    state: dict[str, Any] = {"store": repo.store, "calls": []}

    async def fake_sync(
        store: ObjectStore, url: str, account: str | None = None, password: str | None = None
    ) -> SyncReport:
        state["calls"].append((url, account, password))
        server_ch, client_ch = channel_pair()
        _, report = await asyncio.gather(
            SyncSession(repo.store).serve(server_ch), SyncSession(store).run_client(client_ch)
        )
        return report

    monkeypatch.setattr(sync_command, "sync_with_remote", fake_sync)
    return state


def test_sync_without_origin_fails(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("sync")
    assert result.exit_code == ExitCode.USER_ERROR
    assert "remote.origin" in result.output


def test_sync_pulls_and_checks_out_new_head(workdir: pathlib.Path, remote: dict[str, Any]) -> None:
    (workdir / "local").mkdir()
    init_repository(workdir / "local")
    _invoke("config", "set", "remote.origin", "ws://example:9999/sync", "--global")
    _invoke("config", "set", "auth.account", "alice", "--global")
    _invoke("config", "set", "auth.password", "s3cret", "--global")

    result = _invoke("sync", "--root", str(workdir / "local"))
    assert result.exit_code == 0, result.output
    assert "HEAD is now" in result.output
    assert remote["calls"] == [("ws://example:9999/sync", "alice", "s3cret")]
    assert (workdir / "local" / "shared.txt").read_text() == "from the server"


def test_sync_pushes_local_records(workdir: pathlib.Path, remote: dict[str, Any]) -> None:
    _invoke("init")
    (workdir / "mine.txt").write_text("local work")
    _invoke("commit", "-m", "local")
    head = open_repository(workdir).store.read_head()

    result = _invoke("sync", "ws://example:9999/sync", "--account", "bob", "--password", "pw")
    assert result.exit_code == 0, result.output
    assert remote["calls"] == [("ws://example:9999/sync", "bob", "pw")]
    assert head in remote["store"].list_ids(ObjectKind.RECORD)
    # Local record is newer than the seed, so both sides keep it as HEAD.
    assert remote["store"].read_head() == head


def test_clone_creates_workspace_and_origin(workdir: pathlib.Path, remote: dict[str, Any]) -> None:
    result = _invoke("clone", "ws://example:9999/project")
    assert result.exit_code == 0, result.output
    target = workdir / "project"
    assert (target / "shared.txt").read_text() == "from the server"
    repo = open_repository(target)
    assert get_value("remote.origin", repo.root) == "ws://example:9999/project"
    assert repo.store.read_head() == remote["store"].read_head()


def test_clone_refuses_non_empty_target(workdir: pathlib.Path, remote: dict[str, Any]) -> None:
    (workdir / "taken").mkdir()
    (workdir / "taken" / "file").write_text("x")
    result = _invoke("clone", "ws://example:9999/sync", "taken")
    assert result.exit_code == ExitCode.USER_ERROR
    assert remote["calls"] == []


def test_sync_network_failure_is_retryable(workdir: pathlib.Path) -> None:
    _invoke("init")
    result = _invoke("sync", "ws://127.0.0.1:1/sync")
    assert result.exit_code == ExitCode.IO_ERROR
    assert "re-running the command is safe" in result.output


@pytest.mark.parametrize(
    "url,expected",
    [
        ("ws://host:9999/sync", "host"),
        ("ws://host:9999/project", "project"),
        ("ws://host:9999/team/project/", "project"),
        ("ws://host:9999/", "host"),
    ],
)
def test_derive_directory_name(url: str, expected: str) -> None:
    assert sync_command._derive_directory_name(url) == expected
