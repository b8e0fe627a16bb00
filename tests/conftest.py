"""Pytest configuration and fixtures."""
from __future__ import annotations

import asyncio
import pathlib
from collections.abc import Awaitable, Callable

import pytest

from wsvc.errors import IoFailure, ProtocolError
from wsvc.object_store import ObjectStore
from wsvc.repo import Repository, init_repository
from wsvc.sync.protocol import SyncReport, SyncSession


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async tests run when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point the global config at an empty temp dir and clear repo overrides."""
    monkeypatch.setenv("WSVC_CONFIG_HOME", str(tmp_path_factory.mktemp("wsvc-home")))
    monkeypatch.delenv("WSVC_REPO_ROOT", raising=False)


@pytest.fixture
def repo(tmp_path: pathlib.Path) -> Repository:
    """A fresh non-bare repository in ``tmp_path/work``."""
    return init_repository(tmp_path / "work")


# ---------------------------------------------------------------------------
# In-memory message channel
# ---------------------------------------------------------------------------

_CLOSED = object()


class MemoryChannel:
    """One end of an in-memory, ordered, bidirectional message stream.

    ``drop_after_binary`` simulates a connection drop: once that many binary
    frames have been sent, the next binary send closes the stream.
    """

    def __init__(self, name: str, inbox: asyncio.Queue, outbox: asyncio.Queue, drop_after_binary: int | None = None) -> None:
        self.name = name
        self.inbox = inbox
        self.outbox = outbox
        self.drop_after_binary = drop_after_binary
        self.binary_sent = 0
        self.closed = False

    async def _send(self, frame: tuple[str, object]) -> None:
        if self.closed:
            raise IoFailure("send", self.name, "connection closed")
        await self.outbox.put(frame)

    async def _receive(self, kind: str) -> object:
        frame = await self.inbox.get()
        if frame is _CLOSED:
            self.closed = True
            raise IoFailure("receive", self.name, "connection closed")
        if frame[0] != kind:
            raise ProtocolError("transport", f"expected {kind} frame, got {frame[0]}")
        return frame[1]

    async def send_text(self, data: str) -> None:
        await self._send(("text", data))

    async def send_bytes(self, data: bytes) -> None:
        if self.drop_after_binary is not None and self.binary_sent >= self.drop_after_binary:
            await self.close()
            raise IoFailure("send", self.name, "connection dropped")
        self.binary_sent += 1
        await self._send(("bytes", data))

    async def receive_text(self) -> str:
        return await self._receive("text")  # type: ignore[return-value]

    async def receive_bytes(self) -> bytes:
        return await self._receive("bytes")  # type: ignore[return-value]

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.outbox.put(_CLOSED)


def channel_pair(
    drop_server_after_binary: int | None = None, drop_client_after_binary: int | None = None
) -> tuple[MemoryChannel, MemoryChannel]:
    to_client: asyncio.Queue = asyncio.Queue()
    to_server: asyncio.Queue = asyncio.Queue()
    server = MemoryChannel("server", to_server, to_client, drop_server_after_binary)
    client = MemoryChannel("client", to_client, to_server, drop_client_after_binary)
    return server, client


SyncRunner = Callable[..., Awaitable[tuple[SyncReport | BaseException, SyncReport | BaseException]]]


@pytest.fixture
def run_sync() -> SyncRunner:
    """Return ``await run_sync(server_store, client_store)`` → ``(server_result, client_result)``.

    Results are reports, or the exception each side raised.
    """

    async def _run(
        server_store: ObjectStore,
        client_store: ObjectStore,
        drop_server_after_binary: int | None = None,
        drop_client_after_binary: int | None = None,
    ) -> tuple[SyncReport | BaseException, SyncReport | BaseException]:
        server_ch, client_ch = channel_pair(drop_server_after_binary, drop_client_after_binary)

        async def _side(coro: Awaitable[SyncReport], channel: MemoryChannel) -> SyncReport:
            try:
                return await coro
            finally:
                await channel.close()

        server_result, client_result = await asyncio.gather(
            _side(SyncSession(server_store).serve(server_ch), server_ch),
            _side(SyncSession(client_store).run_client(client_ch), client_ch),
            return_exceptions=True,
        )
        return server_result, client_result

    return _run
