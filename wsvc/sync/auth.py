"""Auth gate for the sync handshake.

Credentials travel in the websocket upgrade request as::

    Authorization: Basic <base64(account)>.<base64(password)>

Account and password are base64-encoded independently and joined with a
``.`` (which never appears in standard base64 output), so either field may
contain any character, including ``:``.

A server configured without credentials accepts every request.  The sync
engine itself never sees credentials; it only runs once the gate has
accepted the connection.  Passwords are never logged.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import logging

from wsvc.errors import Unauthorized

logger = logging.getLogger(__name__)

SCHEME = "Basic"


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _unb64(value: str) -> str:
    return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")


def encode_credentials(account: str, password: str) -> str:
    """Return the ``Authorization`` header value for *account*/*password*."""
    return f"{SCHEME} {_b64(account)}.{_b64(password)}"


def parse_credentials(header: str) -> tuple[str, str]:
    """Decode an ``Authorization`` header into ``(account, password)``.

    Raises:
        Unauthorized: the header is missing the scheme or is not valid base64.
    """
    scheme, _, token = header.strip().partition(" ")
    if scheme != SCHEME or not token:
        raise Unauthorized("malformed authorization header")
    account_b64, sep, password_b64 = token.strip().partition(".")
    if not sep:
        raise Unauthorized("malformed authorization header")
    try:
        return _unb64(account_b64), _unb64(password_b64)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise Unauthorized("malformed authorization header") from exc


class AuthGate:
    """Binary accept/reject decision over the handshake credentials."""

    def __init__(self, account: str | None = None, password: str | None = None) -> None:
        self._account = account or None
        self._password = password or ""

    @property
    def open(self) -> bool:
        """``True`` when no credentials are required."""
        return self._account is None

    def authorize(self, header: str | None) -> str | None:
        """Validate *header* and return the authenticated account.

        Returns ``None`` for an open server (no credentials configured).

        Raises:
            Unauthorized: credentials are missing, malformed or wrong.
        """
        if self.open:
            return None
        if not header:
            logger.warning("⚠️ Sync handshake without credentials rejected")
            raise Unauthorized("credentials required")
        account, password = parse_credentials(header)
        account_ok = hmac.compare_digest(account.encode("utf-8"), (self._account or "").encode("utf-8"))
        password_ok = hmac.compare_digest(password.encode("utf-8"), self._password.encode("utf-8"))
        if not (account_ok and password_ok):
            logger.warning("⚠️ Sync handshake rejected for account %r", account)
            raise Unauthorized("invalid account or password")
        return account
