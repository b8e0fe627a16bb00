"""Sync client: runs the connecting side of a session over aiohttp.

A handshake rejected with 401/403 surfaces as :class:`~wsvc.errors.Unauthorized`
and is never retried.  Every other transport fault surfaces as
:class:`~wsvc.errors.IoFailure`, which callers may retry: objects already
received stay in the store and are not transferred again.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from wsvc.errors import IoFailure, ProtocolError, Unauthorized
from wsvc.object_store import ObjectStore
from wsvc.sync.auth import encode_credentials
from wsvc.sync.protocol import SyncReport, SyncSession

logger = logging.getLogger(__name__)

_CLOSED_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class ClientWebSocketChannel:
    """Adapts an aiohttp client websocket to the sync message channel."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, url: str) -> None:
        self.ws = ws
        self.url = url

    async def _receive(self, expected: aiohttp.WSMsgType) -> aiohttp.WSMessage:
        try:
            msg = await self.ws.receive()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise IoFailure("receive", self.url, exc) from exc
        if msg.type in _CLOSED_TYPES:
            raise IoFailure("receive", self.url, f"connection closed (code {self.ws.close_code})")
        if msg.type is aiohttp.WSMsgType.ERROR:
            raise IoFailure("receive", self.url, self.ws.exception())
        if msg.type is not expected:
            raise ProtocolError("transport", f"expected a {expected.name.lower()} frame, got {msg.type.name.lower()}")
        return msg

    async def receive_text(self) -> str:
        return (await self._receive(aiohttp.WSMsgType.TEXT)).data

    async def receive_bytes(self) -> bytes:
        return (await self._receive(aiohttp.WSMsgType.BINARY)).data

    async def send_text(self, data: str) -> None:
        try:
            await self.ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise IoFailure("send", self.url, exc) from exc

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self.ws.send_bytes(data)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise IoFailure("send", self.url, exc) from exc


async def sync_with_remote(
    store: ObjectStore,
    url: str,
    account: str | None = None,
    password: str | None = None,
) -> SyncReport:
    """Sync *store* with the server at *url* (``ws://`` or ``wss://``).

    Credentials, when given, are sent in the upgrade handshake.  The
    password is never logged.
    """
    headers: dict[str, str] = {}
    if account:
        headers["Authorization"] = encode_credentials(account, password or "")
    logger.info("🔄 Syncing %s with %s (account %s)", store.root, url, account or "anonymous")

    try:
        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(url, headers=headers, max_msg_size=0, heartbeat=30.0) as ws:
                return await SyncSession(store).run_client(ClientWebSocketChannel(ws, url))
    except aiohttp.WSServerHandshakeError as exc:
        if exc.status in (401, 403):
            raise Unauthorized(f"{url} rejected the handshake (HTTP {exc.status})") from exc
        raise IoFailure("connect", url, exc) from exc
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
        raise IoFailure("connect", url, exc) from exc
