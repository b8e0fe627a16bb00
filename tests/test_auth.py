"""Tests for the sync handshake auth gate."""
from __future__ import annotations

import base64

import pytest

from wsvc.errors import ExitCode, Unauthorized
from wsvc.sync.auth import AuthGate, encode_credentials, parse_credentials


def test_encode_uses_independent_base64_fields() -> None:
    header = encode_credentials("alice", "s3cret")
    scheme, token = header.split(" ")
    assert scheme == "Basic"
    account_b64, password_b64 = token.split(".")
    assert base64.b64decode(account_b64) == b"alice"
    assert base64.b64decode(password_b64) == b"s3cret"


@pytest.mark.parametrize(
    "account,password",
    [("alice", "s3cret"), ("a:b", "p:q.r"), ("ünïcode", ""), ("", "only-password")],
)
def test_parse_reverses_encode(account: str, password: str) -> None:
    assert parse_credentials(encode_credentials(account, password)) == (account, password)


@pytest.mark.parametrize(
    "header",
    ["", "Bearer abc.def", "Basic", "Basic nodot", "Basic !!!.???", "Basic YWxpY2U6czNjcmV0"],
)
def test_parse_rejects_malformed_headers(header: str) -> None:
    with pytest.raises(Unauthorized):
        parse_credentials(header)


def test_open_gate_accepts_anything() -> None:
    gate = AuthGate()
    assert gate.open
    assert gate.authorize(None) is None
    assert gate.authorize("garbage") is None


def test_closed_gate_accepts_matching_credentials() -> None:
    gate = AuthGate("alice", "s3cret")
    assert not gate.open
    assert gate.authorize(encode_credentials("alice", "s3cret")) == "alice"


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        encode_credentials("alice", "wrong"),
        encode_credentials("bob", "s3cret"),
        encode_credentials("alice", ""),
        "Basic not-base64",
    ],
)
def test_closed_gate_rejects(header: str | None) -> None:
    gate = AuthGate("alice", "s3cret")
    with pytest.raises(Unauthorized) as exc_info:
        gate.authorize(header)
    assert exc_info.value.exit_code == ExitCode.UNAUTHORIZED
    assert not exc_info.value.retryable


def test_rejection_never_logs_password(caplog: pytest.LogCaptureFixture) -> None:
    gate = AuthGate("alice", "s3cret")
    with pytest.raises(Unauthorized):
        gate.authorize(encode_credentials("alice", "guess-123"))
    assert "guess-123" not in caplog.text
    assert "s3cret" not in caplog.text
