"""Wire messages for the sync protocol.

Every control message is a JSON text frame carrying a ``type`` tag.  Blob
payloads are sent as a :class:`BlobHeader` text frame followed by one or
more binary frames holding the stored (zlib-compressed) bytes.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal, TypeVar

from pydantic import BaseModel, Field, ValidationError

from wsvc.errors import ProtocolError

BLOB_CHUNK_SIZE = 65536


class Tag(str, Enum):
    """Which side lacks an object."""
    MISSING = "missing"  # the client wants it
    NEW = "new"  # the client has it, the server does not


class RecordRef(BaseModel):
    """A record id with its parent link."""
    id: str
    parent: str | None = None


class TaggedId(BaseModel):
    id: str
    tag: Tag


class TreeObject(BaseModel):
    """A tree id and its canonical JSON text."""
    id: str
    data: str


class RecordClosure(BaseModel):
    """A record plus every tree reachable from its root not yet sent this session."""
    record_id: str
    record: str = Field(..., description="Canonical record JSON")
    trees: list[TreeObject] = Field(default_factory=list)


# ── phase 1 ────────────────────────────────────────────────────────────


class RecordList(BaseModel):
    """Server → client: every record the server holds, parents first."""
    type: Literal["records"] = "records"
    records: list[RecordRef]


class RecordTags(BaseModel):
    """Client → server: record ids tagged missing/new."""
    type: Literal["record_tags"] = "record_tags"
    records: list[TaggedId]


# ── phase 2 ────────────────────────────────────────────────────────────


class TreeBatch(BaseModel):
    """Either direction: closures for the records the peer lacks."""
    type: Literal["trees"] = "trees"
    closures: list[RecordClosure]


class BlobTags(BaseModel):
    """Client → server: blob ids tagged missing/new."""
    type: Literal["blob_tags"] = "blob_tags"
    blobs: list[TaggedId]


# ── phase 3 ────────────────────────────────────────────────────────────


class BlobRequest(BaseModel):
    """Server → client: the ``new`` blobs the server does not already hold."""
    type: Literal["blob_request"] = "blob_request"
    ids: list[str]


class BlobHeader(BaseModel):
    """Precedes the binary frames of one blob."""
    type: Literal["blob"] = "blob"
    id: str
    size: int = Field(..., ge=0, description="Stored (compressed) size in bytes")


class Done(BaseModel):
    """Either direction: everything received is persisted."""
    type: Literal["done"] = "done"
    head: str | None = None


SyncMessage = RecordList | RecordTags | TreeBatch | BlobTags | BlobRequest | BlobHeader | Done

M = TypeVar("M", bound=BaseModel)


def parse_message(model: type[M], raw: str, phase: str) -> M:
    """Validate *raw* as *model*, raising :class:`ProtocolError` on mismatch."""
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        expected = model.model_fields["type"].default
        raise ProtocolError(phase, f"expected '{expected}' message: {exc.errors()[0]['msg']}") from exc
