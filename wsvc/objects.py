"""Object model: Blob / Tree / Record kinds and their canonical encodings.

Object IDs are lowercase SHA-256 hex digests of an object's *logical* bytes:

- Blob   — the raw file content (stored compressed, hashed decompressed).
- Tree   — canonical JSON ``{"entries": [{"id", "kind", "name"}, ...]}``
           with entries sorted by name.
- Record — canonical JSON ``{"author", "message", "parent", "root",
           "timestamp"}``.

Canonical JSON is compact (no whitespace), ASCII-only and key-sorted, so two
structurally identical directories always serialize to identical bytes and
therefore share an ID.  The functions here are pure; persistence lives in
:mod:`wsvc.object_store`.
"""
from __future__ import annotations

import datetime
import enum
import hashlib
import json
import re
from dataclasses import dataclass, field

_HEX_ID_RE = re.compile(r"^[0-9a-f]{64}$")

# Name of the per-workspace metadata directory; never tracked in a tree.
WSVC_DIR = ".wsvc"
_RESERVED_NAMES = frozenset({"", ".", "..", WSVC_DIR})
_FORBIDDEN_NAME_CHARS = ("/", "\x00")


class ObjectKind(str, enum.Enum):
    """The three object namespaces of a store."""

    BLOB = "blob"
    TREE = "tree"
    RECORD = "record"


def hash_bytes(data: bytes) -> str:
    """Return the ObjectId (sha256 hex digest) of *data*."""
    return hashlib.sha256(data).hexdigest()


def is_object_id(value: str) -> bool:
    """Return ``True`` if *value* is a well-formed 64-char lowercase hex id."""
    return bool(_HEX_ID_RE.match(value))


def canonical_json(payload: object) -> bytes:
    """Serialize *payload* to compact, key-sorted ASCII JSON.

    Non-ASCII text, including undecodable filename bytes carried as
    surrogate escapes, is written as ``\\uXXXX`` escapes and survives a
    ``json.loads`` round trip unchanged.
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("ascii")


def check_entry_name(name: str) -> None:
    """Raise ``ValueError`` unless *name* is a single, plain path component."""
    if name in _RESERVED_NAMES or any(ch in name for ch in _FORBIDDEN_NAME_CHARS):
        raise ValueError(f"invalid tree entry name {name!r}")


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreeEntry:
    """One named child of a directory."""

    name: str
    kind: ObjectKind
    id: str


@dataclass(frozen=True)
class Tree:
    """One directory level, entries ordered by name."""

    entries: tuple[TreeEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entries, key=lambda e: e.name))
        names = [e.name for e in ordered]
        if len(set(names)) != len(names):
            raise ValueError("Tree entries must have unique names")
        for entry in ordered:
            check_entry_name(entry.name)
            if entry.kind is ObjectKind.RECORD:
                raise ValueError(f"Tree entry {entry.name!r} cannot reference a record")
        object.__setattr__(self, "entries", ordered)

    def to_bytes(self) -> bytes:
        return canonical_json(
            {
                "entries": [
                    {"id": e.id, "kind": e.kind.value, "name": e.name}
                    for e in self.entries
                ]
            }
        )

    @property
    def id(self) -> str:
        return hash_bytes(self.to_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> Tree:
        """Parse canonical tree bytes.  Raises ``ValueError`` on malformed input."""
        try:
            payload = json.loads(data.decode("utf-8"))
            entries = tuple(
                TreeEntry(name=str(raw["name"]), kind=ObjectKind(raw["kind"]), id=str(raw["id"]))
                for raw in payload["entries"]
            )
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ValueError(f"malformed tree: {exc}") from exc
        return cls(entries=entries)

    def child_ids(self, kind: ObjectKind) -> list[str]:
        """Return ids of entries of *kind*, in name order."""
        return [e.id for e in self.entries if e.kind is kind]


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


def _normalise_timestamp(ts: datetime.datetime) -> datetime.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class Record:
    """An immutable snapshot pointing to a root tree and an optional parent."""

    author: str
    message: str
    timestamp: datetime.datetime
    root: str
    parent: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", _normalise_timestamp(self.timestamp))

    def to_bytes(self) -> bytes:
        return canonical_json(
            {
                "author": self.author,
                "message": self.message,
                "parent": self.parent,
                "root": self.root,
                "timestamp": self.timestamp.isoformat(),
            }
        )

    @property
    def id(self) -> str:
        return hash_bytes(self.to_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> Record:
        """Parse canonical record bytes.  Raises ``ValueError`` on malformed input."""
        try:
            payload = json.loads(data.decode("utf-8"))
            parent = payload.get("parent")
            return cls(
                author=str(payload["author"]),
                message=str(payload["message"]),
                timestamp=datetime.datetime.fromisoformat(payload["timestamp"]),
                root=str(payload["root"]),
                parent=str(parent) if parent is not None else None,
            )
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed record: {exc}") from exc
