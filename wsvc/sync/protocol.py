"""Three-phase sync protocol between two object stores.

One session runs over a single ordered, bidirectional message channel.  The
server (the side that accepted the connection) and the client (the side
that opened it) walk the same explicit state machine::

    CONNECTING → RECORDS → TREES → BLOBS → DONE
         └──────────┴────────┴───────┴──→ FAILED

No phase starts until the previous one has completed on both sides, and no
phase may be skipped.

Phase 1 — records
    server → ``records``      every record id with its parent, parents first
    client → ``record_tags``  each differing id tagged ``missing``/``new``

Phase 2 — trees
    server → ``trees``        closure of every ``missing`` record
    client → ``trees``        closure of every ``new`` record
    client → ``blob_tags``    blobs the client lacks (``missing``) or
                              believes the server lacks (``new``)

Phase 3 — blobs
    server → ``blob_request`` the ``new`` blobs the server does not hold
    server → blob frames      every ``missing`` blob
    client → blob frames      every requested blob
    both                      persist trees/records, apply HEAD policy
    client → ``done``; server → ``done``

Received blobs are verified and written as they arrive, so a dropped
connection keeps everything already received and a retry skips it.
Received trees and records are held in memory and written only once the
objects they reference are present, children before parents.

HEAD policy: the newest record obtained from the peer replaces HEAD only if
its timestamp is strictly later than the current HEAD record's.  This
compares wall clocks from two machines and is therefore exposed to clock
skew between peers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from wsvc.errors import CorruptObject, ObjectNotFound, ProtocolError
from wsvc.history import latest_record
from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind, Record, Tree, hash_bytes
from wsvc.sync.messages import (
    BLOB_CHUNK_SIZE,
    BlobHeader,
    BlobRequest,
    BlobTags,
    Done,
    RecordClosure,
    RecordList,
    RecordRef,
    RecordTags,
    Tag,
    TaggedId,
    TreeBatch,
    TreeObject,
    parse_message,
)

logger = logging.getLogger(__name__)


class MessageChannel(Protocol):
    """The transport a session runs over.

    Implementations raise :class:`~wsvc.errors.IoFailure` when the
    connection is closed or broken.
    """

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str: ...

    async def send_bytes(self, data: bytes) -> None: ...

    async def receive_bytes(self) -> bytes: ...


class SyncPhase(str, Enum):
    CONNECTING = "connecting"
    RECORDS = "records"
    TREES = "trees"
    BLOBS = "blobs"
    DONE = "done"
    FAILED = "failed"


_PHASE_ORDER = [SyncPhase.CONNECTING, SyncPhase.RECORDS, SyncPhase.TREES, SyncPhase.BLOBS, SyncPhase.DONE]


@dataclass
class SyncReport:
    """What one side of a session transferred."""

    role: str
    records_received: list[str] = field(default_factory=list)
    records_sent: list[str] = field(default_factory=list)
    blobs_received: int = 0
    blobs_sent: int = 0
    head_before: str | None = None
    head_after: str | None = None

    @property
    def head_changed(self) -> bool:
        return self.head_before != self.head_after


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def ordered_records(store: ObjectStore) -> list[RecordRef]:
    """Return every stored record as ``(id, parent)``, parents before children."""
    parents = {rid: store.get_record(rid).parent for rid in store.list_ids(ObjectKind.RECORD)}
    ordered: list[RecordRef] = []
    seen: set[str] = set()
    for rid in sorted(parents):
        chain: list[str] = []
        current: str | None = rid
        while current is not None and current in parents and current not in seen:
            seen.add(current)
            chain.append(current)
            current = parents[current]
        ordered.extend(RecordRef(id=c, parent=parents[c]) for c in reversed(chain))
    return ordered


def _parse_tree(tree_id: str, data: bytes) -> Tree:
    try:
        return Tree.from_bytes(data)
    except ValueError as exc:
        raise CorruptObject(ObjectKind.TREE.value, tree_id, str(exc)) from exc


def _parse_record(record_id: str, data: bytes) -> Record:
    try:
        return Record.from_bytes(data)
    except ValueError as exc:
        raise CorruptObject(ObjectKind.RECORD.value, record_id, str(exc)) from exc


def _referenced_blobs(trees: dict[str, bytes]) -> set[str]:
    blobs: set[str] = set()
    for tree_id, data in trees.items():
        blobs.update(_parse_tree(tree_id, data).child_ids(ObjectKind.BLOB))
    return blobs


def apply_head_policy(store: ObjectStore, received: list[str]) -> bool:
    """Move HEAD to the newest received record if it is strictly later.

    Returns ``True`` if HEAD moved.  Ties keep the local HEAD.
    """
    newest = latest_record((rid, store.get_record(rid)) for rid in received)
    if newest is None:
        return False
    newest_id, newest_record = newest
    head = store.read_head()
    if head is not None and head != newest_id:
        current = store.get_record(head)
        if newest_record.timestamp <= current.timestamp:
            logger.info(
                "⚠️ Keeping HEAD %s (%s); peer's newest %s is not later (%s)",
                head[:8],
                current.timestamp.isoformat(),
                newest_id[:8],
                newest_record.timestamp.isoformat(),
            )
            return False
    if head == newest_id:
        return False
    store.write_head(newest_id)
    return True


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SyncSession:
    """One side of one sync session against *store*.

    Call :meth:`serve` on the accepting side and :meth:`run_client` on the
    connecting side.  A session object runs once.
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store
        self.phase = SyncPhase.CONNECTING

    # ── state machine ───────────────────────────────────────────────────

    def _enter(self, phase: SyncPhase) -> None:
        if self.phase is SyncPhase.FAILED:
            raise ProtocolError(self.phase.value, "session already failed")
        current = _PHASE_ORDER.index(self.phase)
        if _PHASE_ORDER.index(phase) != current + 1:
            raise ProtocolError(self.phase.value, f"cannot move from {self.phase.value} to {phase.value}")
        logger.info("🔄 Sync phase %s → %s", self.phase.value, phase.value)
        self.phase = phase

    # ── framing ─────────────────────────────────────────────────────────

    @staticmethod
    async def _send(channel: MessageChannel, message: BaseModel) -> None:
        await channel.send_text(message.model_dump_json())

    async def _send_blob(self, channel: MessageChannel, blob_id: str) -> None:
        stored = self.store.read_stored(ObjectKind.BLOB, blob_id)
        await self._send(channel, BlobHeader(id=blob_id, size=len(stored)))
        for offset in range(0, len(stored), BLOB_CHUNK_SIZE):
            await channel.send_bytes(stored[offset : offset + BLOB_CHUNK_SIZE])

    async def _receive_blob(self, channel: MessageChannel, expected: set[str]) -> bool:
        header = parse_message(BlobHeader, await channel.receive_text(), self.phase.value)
        if header.id not in expected:
            raise ProtocolError(self.phase.value, f"unexpected blob {header.id}")
        expected.discard(header.id)
        buf = bytearray()
        while len(buf) < header.size:
            buf.extend(await channel.receive_bytes())
        if len(buf) != header.size:
            raise ProtocolError(self.phase.value, f"blob {header.id} overran its declared size")
        return self.store.put_stored(ObjectKind.BLOB, header.id, bytes(buf))

    # ── closures ────────────────────────────────────────────────────────

    def _closure(self, record_id: str, sent: set[str]) -> RecordClosure:
        """Build the closure of *record_id*, skipping trees already in *sent*."""
        raw_record = self.store.get(ObjectKind.RECORD, record_id)
        record = _parse_record(record_id, raw_record)
        trees: list[TreeObject] = []
        stack = [record.root]
        while stack:
            tree_id = stack.pop()
            if tree_id in sent:
                continue
            sent.add(tree_id)
            data = self.store.get(ObjectKind.TREE, tree_id)
            trees.append(TreeObject(id=tree_id, data=data.decode("utf-8")))
            stack.extend(reversed(_parse_tree(tree_id, data).child_ids(ObjectKind.TREE)))
        return RecordClosure(record_id=record_id, record=raw_record.decode("utf-8"), trees=trees)

    def _accept(self, batch: TreeBatch, expected: set[str]) -> tuple[dict[str, bytes], dict[str, bytes]]:
        """Verify received closures; return ``(records, trees)`` keyed by id."""
        records: dict[str, bytes] = {}
        trees: dict[str, bytes] = {}
        for closure in batch.closures:
            if closure.record_id not in expected:
                raise ProtocolError(self.phase.value, f"unexpected record {closure.record_id}")
            raw = closure.record.encode("utf-8")
            if hash_bytes(raw) != closure.record_id:
                raise CorruptObject(ObjectKind.RECORD.value, closure.record_id)
            records[closure.record_id] = raw
            for tree in closure.trees:
                data = tree.data.encode("utf-8")
                if hash_bytes(data) != tree.id:
                    raise CorruptObject(ObjectKind.TREE.value, tree.id)
                trees[tree.id] = data
        if missing := expected - records.keys():
            raise ProtocolError(self.phase.value, f"no closure for {len(missing)} requested record(s)")
        return records, trees

    # ── persistence ─────────────────────────────────────────────────────

    def _write_tree(self, tree_id: str, received: dict[str, bytes]) -> None:
        if self.store.exists(ObjectKind.TREE, tree_id):
            return
        data = received.get(tree_id)
        if data is None:
            raise ObjectNotFound(ObjectKind.TREE.value, tree_id)
        for entry in _parse_tree(tree_id, data).entries:
            if entry.kind is ObjectKind.TREE:
                self._write_tree(entry.id, received)
            elif not self.store.exists(ObjectKind.BLOB, entry.id):
                raise ObjectNotFound(ObjectKind.BLOB.value, entry.id)
        self.store.put_stored(ObjectKind.TREE, tree_id, data)

    def _persist(self, records: dict[str, bytes], trees: dict[str, bytes]) -> list[str]:
        """Write received trees then records, children before parents."""
        pending = {rid: _parse_record(rid, raw) for rid, raw in records.items()}
        for record in pending.values():
            self._write_tree(record.root, trees)
        written: list[str] = []
        while pending:
            ready = sorted(
                rid
                for rid, rec in pending.items()
                if rec.parent is None or self.store.exists(ObjectKind.RECORD, rec.parent)
            )
            if not ready:
                orphan = next(iter(pending.values()))
                raise ObjectNotFound(ObjectKind.RECORD.value, orphan.parent or "")
            for rid in ready:
                self.store.put_stored(ObjectKind.RECORD, rid, records[rid])
                written.append(rid)
                del pending[rid]
        return written

    def _finish(self, report: SyncReport, records: dict[str, bytes], trees: dict[str, bytes]) -> None:
        report.records_received = self._persist(records, trees)
        apply_head_policy(self.store, report.records_received)
        report.head_after = self.store.read_head()

    # ── roles ───────────────────────────────────────────────────────────

    async def serve(self, channel: MessageChannel) -> SyncReport:
        """Run the accepting side of a session."""
        try:
            return await self._serve(channel)
        except BaseException:
            logger.warning("❌ Sync session failed in phase %s", self.phase.value)
            self.phase = SyncPhase.FAILED
            raise

    async def run_client(self, channel: MessageChannel) -> SyncReport:
        """Run the connecting side of a session."""
        try:
            return await self._run_client(channel)
        except BaseException:
            logger.warning("❌ Sync session failed in phase %s", self.phase.value)
            self.phase = SyncPhase.FAILED
            raise

    async def _serve(self, channel: MessageChannel) -> SyncReport:
        report = SyncReport(role="server", head_before=self.store.read_head())

        self._enter(SyncPhase.RECORDS)
        await self._send(channel, RecordList(records=ordered_records(self.store)))
        tags = parse_message(RecordTags, await channel.receive_text(), self.phase.value)
        missing = [t.id for t in tags.records if t.tag is Tag.MISSING]
        new = {t.id for t in tags.records if t.tag is Tag.NEW}
        for rid in missing:
            if not self.store.exists(ObjectKind.RECORD, rid):
                raise ProtocolError(self.phase.value, f"client requested unknown record {rid}")

        self._enter(SyncPhase.TREES)
        sent_trees: set[str] = set()
        await self._send(channel, TreeBatch(closures=[self._closure(rid, sent_trees) for rid in missing]))
        report.records_sent = missing
        records_in, trees_in = self._accept(
            parse_message(TreeBatch, await channel.receive_text(), self.phase.value), new
        )
        blob_tags = parse_message(BlobTags, await channel.receive_text(), self.phase.value)

        self._enter(SyncPhase.BLOBS)
        wanted = [t.id for t in blob_tags.blobs if t.tag is Tag.NEW and not self.store.exists(ObjectKind.BLOB, t.id)]
        await self._send(channel, BlobRequest(ids=wanted))
        for tag in blob_tags.blobs:
            if tag.tag is Tag.MISSING:
                await self._send_blob(channel, tag.id)
                report.blobs_sent += 1
        expected = set(wanted)
        for _ in wanted:
            if await self._receive_blob(channel, expected):
                report.blobs_received += 1

        self._finish(report, records_in, trees_in)
        parse_message(Done, await channel.receive_text(), self.phase.value)
        self._enter(SyncPhase.DONE)
        await self._send(channel, Done(head=report.head_after))
        logger.info(
            "✅ Served sync: %d records in, %d out, %d blobs in, %d out",
            len(report.records_received),
            len(report.records_sent),
            report.blobs_received,
            report.blobs_sent,
        )
        return report

    async def _run_client(self, channel: MessageChannel) -> SyncReport:
        report = SyncReport(role="client", head_before=self.store.read_head())

        self._enter(SyncPhase.RECORDS)
        listing = parse_message(RecordList, await channel.receive_text(), self.phase.value)
        remote = {r.id for r in listing.records}
        missing = [r.id for r in listing.records if not self.store.exists(ObjectKind.RECORD, r.id)]
        new = [r.id for r in ordered_records(self.store) if r.id not in remote]
        await self._send(
            channel,
            RecordTags(
                records=[TaggedId(id=rid, tag=Tag.MISSING) for rid in missing]
                + [TaggedId(id=rid, tag=Tag.NEW) for rid in new]
            ),
        )

        self._enter(SyncPhase.TREES)
        records_in, trees_in = self._accept(
            parse_message(TreeBatch, await channel.receive_text(), self.phase.value), set(missing)
        )
        # Trees the server just sent are known to the server already.
        sent_trees: set[str] = set(trees_in)
        closures = [self._closure(rid, sent_trees) for rid in new]
        await self._send(channel, TreeBatch(closures=closures))
        report.records_sent = new

        server_blobs = _referenced_blobs(trees_in)
        own_trees = {t.id: t.data.encode("utf-8") for c in closures for t in c.trees}
        missing_blobs = sorted(b for b in server_blobs if not self.store.exists(ObjectKind.BLOB, b))
        new_blobs = sorted(_referenced_blobs(own_trees) - server_blobs)
        await self._send(
            channel,
            BlobTags(
                blobs=[TaggedId(id=b, tag=Tag.MISSING) for b in missing_blobs]
                + [TaggedId(id=b, tag=Tag.NEW) for b in new_blobs]
            ),
        )

        self._enter(SyncPhase.BLOBS)
        request = parse_message(BlobRequest, await channel.receive_text(), self.phase.value)
        if unknown := set(request.ids) - set(new_blobs):
            raise ProtocolError(self.phase.value, f"server requested {len(unknown)} blob(s) never offered")
        expected = set(missing_blobs)
        for _ in missing_blobs:
            if await self._receive_blob(channel, expected):
                report.blobs_received += 1
        for blob_id in request.ids:
            await self._send_blob(channel, blob_id)
            report.blobs_sent += 1

        self._finish(report, records_in, trees_in)
        await self._send(channel, Done(head=report.head_after))
        peer_done = parse_message(Done, await channel.receive_text(), self.phase.value)
        self._enter(SyncPhase.DONE)
        logger.info(
            "✅ Sync complete: %d records in, %d out, %d blobs in, %d out; HEAD %s (server HEAD %s)",
            len(report.records_received),
            len(report.records_sent),
            report.blobs_received,
            report.blobs_sent,
            (report.head_after or "-")[:8],
            (peer_done.head or "-")[:8],
        )
        return report
