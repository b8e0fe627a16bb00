"""Sync server: FastAPI websocket endpoint backed by one repository.

The auth gate runs before the upgrade is accepted; on rejection the server
answers the handshake with a plain HTTP 401.  ASGI servers without the
websocket denial-response extension close the socket unaccepted instead,
which the client observes as a 403.  Accepted sessions against the same
store run one at a time.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.responses import PlainTextResponse
from starlette.types import Message

from wsvc.errors import IoFailure, ProtocolError, Unauthorized, WsvcError
from wsvc.repo import open_repository
from wsvc.settings import ServerSettings, app_version, get_settings
from wsvc.sync.auth import AuthGate
from wsvc.sync.protocol import SyncSession

logger = logging.getLogger(__name__)

_CLOSE_UNAUTHORIZED = 4001
_CLOSE_INTERNAL_ERROR = 1011
_DENIAL_EXTENSION = "websocket.http.response"


class WebSocketChannel:
    """Adapts a Starlette :class:`WebSocket` to the sync message channel."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"

    async def _receive(self) -> Message:
        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise IoFailure("receive", self.peer, exc) from exc
        if message["type"] == "websocket.disconnect":
            raise IoFailure("receive", self.peer, f"disconnected (code {message.get('code')})")
        return message

    async def receive_text(self) -> str:
        message = await self._receive()
        text = message.get("text")
        if text is None:
            raise ProtocolError("transport", "expected a text frame")
        return text

    async def receive_bytes(self) -> bytes:
        message = await self._receive()
        data = message.get("bytes")
        if data is None:
            raise ProtocolError("transport", "expected a binary frame")
        return data

    async def send_text(self, data: str) -> None:
        try:
            await self.websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise IoFailure("send", self.peer, exc) from exc

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self.websocket.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise IoFailure("send", self.peer, exc) from exc


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build the sync server app for ``settings.repo``."""
    settings = settings or get_settings()
    repository = open_repository(settings.repo)
    gate = AuthGate(settings.account, settings.password)
    session_lock = asyncio.Lock()

    app = FastAPI(title="wsvc", version=app_version())
    app.state.repository = repository

    @app.get("/health")
    async def health() -> dict[str, str | None]:
        return {"status": "ok", "head": repository.store.read_head()}

    async def sync_endpoint(websocket: WebSocket) -> None:
        """Run one sync session as the server side."""
        # Validate before accepting: no upgrade if rejected
        try:
            account = gate.authorize(websocket.headers.get("authorization"))
        except Unauthorized as exc:
            logger.warning("⚠️ Sync connection refused: %s", exc)
            if _DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
                await websocket.send_denial_response(PlainTextResponse("unauthorized", status_code=401))
            else:
                await websocket.close(code=_CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        channel = WebSocketChannel(websocket)
        logger.info("✅ Sync connection from %s (account %s)", channel.peer, account or "anonymous")

        try:
            async with session_lock:
                await SyncSession(repository.store).serve(channel)
        except IoFailure as exc:
            logger.warning("⚠️ Sync session with %s dropped: %s", channel.peer, exc)
            return
        except WsvcError as exc:
            logger.error("❌ Sync session with %s failed: %s", channel.peer, exc)
            with contextlib.suppress(RuntimeError, WebSocketDisconnect):
                await websocket.close(code=_CLOSE_INTERNAL_ERROR)
            return

        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close()

    app.add_api_websocket_route("/", sync_endpoint)
    app.add_api_websocket_route("/sync", sync_endpoint)
    return app
