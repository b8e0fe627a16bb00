"""Tests for the FastAPI sync server (wsvc.sync.server).

The server side runs inside Starlette's TestClient; the client side runs
the real :class:`SyncSession` over a thin adapter around the test
websocket session.
"""
from __future__ import annotations

import asyncio
import datetime
import pathlib

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketDenialResponse, WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind
from wsvc.repo import init_repository
from wsvc.settings import ServerSettings
from wsvc.snapshot import commit
from wsvc.sync.auth import encode_credentials
from wsvc.sync.protocol import SyncReport, SyncSession
from wsvc.sync.server import create_app

_T0 = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


class PortalChannel:
    """Message channel over a TestClient websocket session (blocking calls)."""

    def __init__(self, ws: WebSocketTestSession) -> None:
        self.ws = ws

    async def send_text(self, data: str) -> None:
        self.ws.send_text(data)

    async def send_bytes(self, data: bytes) -> None:
        self.ws.send_bytes(data)

    async def receive_text(self) -> str:
        return self.ws.receive_text()

    async def receive_bytes(self) -> bytes:
        return self.ws.receive_bytes()


def _run_client(ws: WebSocketTestSession, store: ObjectStore) -> SyncReport:
    return asyncio.run(SyncSession(store).run_client(PortalChannel(ws)))


@pytest.fixture
def served(tmp_path: pathlib.Path) -> pathlib.Path:
    """A bare server repository holding one record."""
    repo = init_repository(tmp_path / "served", bare=True)
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    (scratch / "hello.txt").write_bytes(b"hello from the server\n")
    commit(repo.store, scratch, author="server", message="seed", timestamp=_T0)
    return repo.root


def _client(root: pathlib.Path, **settings: str) -> TestClient:
    return TestClient(create_app(ServerSettings(repo=root, **settings)))


def test_health_reports_head(served: pathlib.Path) -> None:
    head = ObjectStore(served).read_head()
    response = _client(served).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "head": head}


@pytest.mark.parametrize("path", ["/sync", "/"])
def test_open_server_serves_clone(served: pathlib.Path, tmp_path: pathlib.Path, path: str) -> None:
    clone = ObjectStore.create(tmp_path / "clone")
    with _client(served).websocket_connect(path) as ws:
        report = _run_client(ws, clone)
    server = ObjectStore(served)
    assert clone.read_head() == server.read_head()
    assert report.records_received == [server.read_head()]
    assert set(clone.list_ids(ObjectKind.BLOB)) == set(server.list_ids(ObjectKind.BLOB))


def test_push_updates_server_head(served: pathlib.Path, tmp_path: pathlib.Path) -> None:
    repo = init_repository(tmp_path / "work")
    assert repo.workspace is not None
    with _client(served).websocket_connect("/sync") as ws:
        _run_client(ws, repo.store)

    (repo.workspace / "hello.txt").write_bytes(b"edited by the client\n")
    pushed = commit(repo.store, repo.workspace, author="client", message="edit", timestamp=_T0 + datetime.timedelta(hours=1))
    with _client(served).websocket_connect("/sync") as ws:
        report = _run_client(ws, repo.store)

    assert report.records_sent == [pushed]
    assert ObjectStore(served).read_head() == pushed


def test_missing_credentials_rejected_with_401(served: pathlib.Path) -> None:
    client = _client(served, account="alice", password="s3cret")
    with pytest.raises(WebSocketDenialResponse) as exc_info:
        with client.websocket_connect("/sync"):
            pass
    assert exc_info.value.status_code == 401


def test_wrong_password_rejected(served: pathlib.Path) -> None:
    client = _client(served, account="alice", password="s3cret")
    headers = {"Authorization": encode_credentials("alice", "nope")}
    with pytest.raises(WebSocketDenialResponse) as exc_info:
        with client.websocket_connect("/sync", headers=headers):
            pass
    assert exc_info.value.status_code == 401


def test_rejection_without_denial_extension_closes_with_4001(served: pathlib.Path) -> None:
    app = create_app(ServerSettings(repo=served, account="alice", password="s3cret"))

    async def without_extensions(scope, receive, send):
        await app({**scope, "extensions": {}}, receive, send)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with TestClient(without_extensions).websocket_connect("/sync"):
            pass
    assert exc_info.value.code == 4001


def test_valid_credentials_sync(served: pathlib.Path, tmp_path: pathlib.Path) -> None:
    client = _client(served, account="alice", password="s3cret")
    clone = ObjectStore.create(tmp_path / "clone")
    headers = {"Authorization": encode_credentials("alice", "s3cret")}
    with client.websocket_connect("/sync", headers=headers) as ws:
        _run_client(ws, clone)
    assert clone.read_head() == ObjectStore(served).read_head()
