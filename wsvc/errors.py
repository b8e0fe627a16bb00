"""Exit-code contract and exception types for wsvc.

Every error raised by the object store, the snapshot/restore engines, the
sync protocol and the CLI derives from :class:`WsvcError`.  Each carries an
:class:`ExitCode` for the CLI and a ``retryable`` flag so that callers can
tell transient I/O faults apart from authentication and corruption failures.
"""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, unknown ref, ambiguous prefix)
    2 — repo-not-found
    3 — internal error (dangling object, protocol violation)
    4 — unauthorized
    5 — I/O failure (filesystem or network; retrying may help)
    6 — corrupt store
    """

    SUCCESS = 0
    USER_ERROR = 1
    REPO_NOT_FOUND = 2
    INTERNAL_ERROR = 3
    UNAUTHORIZED = 4
    IO_ERROR = 5
    CORRUPT_STORE = 6


class WsvcError(Exception):
    """Base exception for wsvc errors."""

    retryable: bool = False

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Repository errors
# ---------------------------------------------------------------------------


class RepoNotFoundError(WsvcError):
    """Raised when no wsvc repository can be found."""

    def __init__(self, message: str = "Not a wsvc repository. Run `wsvc init`.") -> None:
        super().__init__(message, exit_code=ExitCode.REPO_NOT_FOUND)


class RepoExistsError(WsvcError):
    """Raised by ``init`` when the target already holds a repository."""

    def __init__(self, path: object) -> None:
        super().__init__(f"A wsvc repository already exists at {path}", exit_code=ExitCode.USER_ERROR)
        self.path = path


class RepoLockedError(WsvcError):
    """Raised when another invocation holds the repository lock."""

    def __init__(self, lock_path: object) -> None:
        super().__init__(
            f"Repository is locked by another wsvc process (remove {lock_path} if stale)",
            exit_code=ExitCode.USER_ERROR,
        )
        self.lock_path = lock_path


class ConfigError(WsvcError):
    """Raised for unknown config keys or unparseable values."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=ExitCode.USER_ERROR)


# ---------------------------------------------------------------------------
# Object store errors
# ---------------------------------------------------------------------------


class ObjectNotFound(WsvcError):
    """A referenced object is absent from the store.

    Dangling references are store damage, never a silent gap.
    """

    def __init__(self, kind: str, object_id: str) -> None:
        super().__init__(f"{kind} object {object_id} not found", exit_code=ExitCode.INTERNAL_ERROR)
        self.kind = kind
        self.object_id = object_id


class CorruptObject(WsvcError):
    """Stored bytes fail to decompress or do not re-hash to their key."""

    def __init__(self, kind: str, object_id: str, detail: str = "content hash mismatch") -> None:
        super().__init__(
            f"{kind} object {object_id} is corrupt: {detail}",
            exit_code=ExitCode.CORRUPT_STORE,
        )
        self.kind = kind
        self.object_id = object_id


class IoFailure(WsvcError):
    """A filesystem or network fault, surfaced with the failing operation."""

    retryable = True

    def __init__(self, operation: str, target: object, cause: BaseException | str | None = None) -> None:
        detail = f"{operation} failed for {target}"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail, exit_code=ExitCode.IO_ERROR)
        self.operation = operation
        self.target = target
        self.cause = cause


# ---------------------------------------------------------------------------
# Ref resolution errors
# ---------------------------------------------------------------------------


class RecordNotFound(WsvcError):
    """No record matches the requested ref."""

    def __init__(self, ref: str) -> None:
        super().__init__(f"No record matches '{ref}'", exit_code=ExitCode.USER_ERROR)
        self.ref = ref


class AmbiguousPrefix(WsvcError):
    """A hash prefix matched more than one record.

    ``candidates`` holds every matching full id, sorted.
    """

    def __init__(self, prefix: str, candidates: list[str]) -> None:
        self.prefix = prefix
        self.candidates = sorted(candidates)
        listing = "\n".join(f"  {c}" for c in self.candidates)
        super().__init__(
            f"Prefix '{prefix}' is ambiguous; it matches {len(self.candidates)} records:\n{listing}",
            exit_code=ExitCode.USER_ERROR,
        )


# ---------------------------------------------------------------------------
# Sync errors
# ---------------------------------------------------------------------------


class Unauthorized(WsvcError):
    """The sync handshake was rejected.  Never retried automatically."""

    def __init__(self, detail: str = "credentials rejected") -> None:
        super().__init__(f"Unauthorized: {detail}", exit_code=ExitCode.UNAUTHORIZED)


class ProtocolError(WsvcError):
    """The peer sent a message out of sequence or of the wrong shape."""

    def __init__(self, phase: str, detail: str) -> None:
        super().__init__(f"Sync protocol error in phase {phase}: {detail}", exit_code=ExitCode.INTERNAL_ERROR)
        self.phase = phase
