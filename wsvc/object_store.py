"""Content-addressed object store for wsvc repositories.

Every command that reads or writes blobs, trees, records or HEAD goes
through :class:`ObjectStore`.  No command implements its own path logic.

Layout
------
A store root is ``<workspace>/.wsvc/`` for a normal repository, or the
repository directory itself when the repository is bare::

    <root>/objects/<hex-id>     zlib-compressed blob bytes
    <root>/trees/<hex-id>       canonical tree JSON
    <root>/records/<hex-id>     canonical record JSON
    <root>/HEAD                 hex-id of the latest record, or empty
    <root>/temp/                staging area for atomic writes

IDs are always computed over the *logical* content: blobs are keyed by the
hash of their decompressed bytes, so the compression level never affects
identity.

Atomicity
---------
Every write lands in ``temp/`` first and is then moved into place with
``os.replace``.  Two writers racing on the same object both succeed and
agree on content; a reader never observes a half-written file.  The store
is append-only: writing an existing object is a no-op.
"""
from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import pathlib
import tempfile
import zlib
from collections.abc import Iterator

from wsvc.errors import CorruptObject, IoFailure, ObjectNotFound
from wsvc.objects import ObjectKind, Record, Tree, hash_bytes, is_object_id

logger = logging.getLogger(__name__)

_KIND_DIRS: dict[ObjectKind, str] = {
    ObjectKind.BLOB: "objects",
    ObjectKind.TREE: "trees",
    ObjectKind.RECORD: "records",
}
_HEAD_FILE = "HEAD"
_TEMP_DIR = "temp"
_CHUNK_SIZE = 65536
_COMPRESS_LEVEL = 6


class ObjectStore:
    """Filesystem-backed store of blobs, trees and records plus HEAD."""

    def __init__(self, root: pathlib.Path) -> None:
        self.root = pathlib.Path(root)

    def __repr__(self) -> str:
        return f"ObjectStore({str(self.root)!r})"

    # ── layout ──────────────────────────────────────────────────────────

    @classmethod
    def create(cls, root: pathlib.Path) -> ObjectStore:
        """Create the directory layout under *root* with an empty HEAD."""
        store = cls(root)
        try:
            for dirname in (*_KIND_DIRS.values(), _TEMP_DIR):
                (store.root / dirname).mkdir(parents=True, exist_ok=True)
            head = store.root / _HEAD_FILE
            if not head.exists():
                head.write_text("", encoding="utf-8")
        except OSError as exc:
            raise IoFailure("create store", store.root, exc) from exc
        logger.debug("✅ Created object store at %s", store.root)
        return store

    @classmethod
    def is_store(cls, root: pathlib.Path) -> bool:
        """Return ``True`` if *root* carries the store layout."""
        return all((root / d).is_dir() for d in _KIND_DIRS.values()) and (root / _HEAD_FILE).is_file()

    def kind_dir(self, kind: ObjectKind) -> pathlib.Path:
        return self.root / _KIND_DIRS[kind]

    def object_path(self, kind: ObjectKind, object_id: str) -> pathlib.Path:
        """Return the on-disk path for *object_id* (may not exist)."""
        return self.kind_dir(kind) / object_id

    # ── existence / enumeration ─────────────────────────────────────────

    def exists(self, kind: ObjectKind, object_id: str) -> bool:
        """Return ``True`` if *object_id* is present.  Never decompresses."""
        if not is_object_id(object_id):
            return False
        return self.object_path(kind, object_id).is_file()

    def list_ids(self, kind: ObjectKind) -> list[str]:
        """Return every stored id of *kind*, sorted."""
        directory = self.kind_dir(kind)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file() and is_object_id(p.name))

    # ── writes ──────────────────────────────────────────────────────────

    @contextlib.contextmanager
    def _staged(self, dest: pathlib.Path) -> Iterator[int]:
        """Yield a temp file descriptor; move it onto *dest* on success."""
        temp_dir = self.root / _TEMP_DIR
        try:
            temp_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=temp_dir, prefix=".tmp-")
        except OSError as exc:
            raise IoFailure("stage write", dest, exc) from exc
        try:
            yield fd
            os.replace(tmp_name, dest)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise IoFailure("write", dest, exc) from exc
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    def _write_atomic(self, dest: pathlib.Path, data: bytes) -> None:
        with self._staged(dest) as fd:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)

    def put(self, kind: ObjectKind, data: bytes) -> str:
        """Store *data* (logical bytes) and return its ObjectId.

        Blobs are DEFLATE-compressed before the write; trees and records are
        stored as given.  If the object is already present this is a no-op.
        """
        object_id = hash_bytes(data)
        dest = self.object_path(kind, object_id)
        if dest.is_file():
            logger.debug("⚠️ %s %s already present — skipped", kind.value, object_id[:8])
            return object_id
        stored = zlib.compress(data, _COMPRESS_LEVEL) if kind is ObjectKind.BLOB else data
        self._write_atomic(dest, stored)
        logger.debug("✅ Stored %s %s (%d bytes)", kind.value, object_id[:8], len(data))
        return object_id

    def put_blob_file(self, path: pathlib.Path) -> str:
        """Stream the file at *path* into the store as a blob.

        Hashing and compression run chunk by chunk, so large files are never
        held in memory.  The compressed stream is staged under ``temp/`` and
        only moved into place once its id is known.
        """
        temp_dir = self.root / _TEMP_DIR
        try:
            temp_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=temp_dir, prefix=".blob-")
        except OSError as exc:
            raise IoFailure("stage blob", path, exc) from exc
        try:
            hasher = hashlib.sha256()
            compressor = zlib.compressobj(_COMPRESS_LEVEL)
            size = 0
            with os.fdopen(fd, "wb") as out, path.open("rb") as src:
                for chunk in iter(lambda: src.read(_CHUNK_SIZE), b""):
                    hasher.update(chunk)
                    size += len(chunk)
                    out.write(compressor.compress(chunk))
                out.write(compressor.flush())
            hasher_id = hasher.hexdigest()
            dest = self.object_path(ObjectKind.BLOB, hasher_id)
            if dest.is_file():
                os.unlink(tmp_name)
                logger.debug("⚠️ blob %s already present — skipped", hasher_id[:8])
            else:
                os.replace(tmp_name, dest)
                logger.debug("✅ Stored blob %s (%d bytes) from %s", hasher_id[:8], size, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise IoFailure("store blob", path, exc) from exc
        return hasher_id

    def put_stored(self, kind: ObjectKind, object_id: str, stored: bytes) -> bool:
        """Store on-disk bytes received from a peer under *object_id*.

        The content is verified against *object_id* before it becomes
        visible.  Returns ``True`` if a new file was written, ``False`` if the
        object was already present.

        Raises:
            CorruptObject: *stored* does not decode or hash to *object_id*.
        """
        if not is_object_id(object_id):
            raise CorruptObject(kind.value, object_id, "malformed object id")
        self._verify(kind, object_id, stored)
        dest = self.object_path(kind, object_id)
        if dest.is_file():
            return False
        self._write_atomic(dest, stored)
        logger.debug("✅ Received %s %s (%d stored bytes)", kind.value, object_id[:8], len(stored))
        return True

    # ── reads ───────────────────────────────────────────────────────────

    def read_stored(self, kind: ObjectKind, object_id: str) -> bytes:
        """Return the raw on-disk bytes of an object (compressed for blobs)."""
        if not self.exists(kind, object_id):
            raise ObjectNotFound(kind.value, object_id)
        path = self.object_path(kind, object_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFound(kind.value, object_id) from exc
        except OSError as exc:
            raise IoFailure("read", path, exc) from exc

    def get(self, kind: ObjectKind, object_id: str) -> bytes:
        """Return the logical bytes of an object, verifying its hash.

        Raises:
            ObjectNotFound: the object is absent.
            CorruptObject:  the stored bytes fail to decompress or re-hash.
        """
        return self._verify(kind, object_id, self.read_stored(kind, object_id))

    @staticmethod
    def _verify(kind: ObjectKind, object_id: str, stored: bytes) -> bytes:
        if kind is ObjectKind.BLOB:
            try:
                data = zlib.decompress(stored)
            except zlib.error as exc:
                raise CorruptObject(kind.value, object_id, f"cannot decompress: {exc}") from exc
        else:
            data = stored
        if hash_bytes(data) != object_id:
            raise CorruptObject(kind.value, object_id)
        return data

    # ── typed helpers ───────────────────────────────────────────────────

    def put_tree(self, tree: Tree) -> str:
        """Store *tree*.  Every referenced child must already be present."""
        for entry in tree.entries:
            if not self.exists(entry.kind, entry.id):
                raise ObjectNotFound(entry.kind.value, entry.id)
        return self.put(ObjectKind.TREE, tree.to_bytes())

    def get_tree(self, tree_id: str) -> Tree:
        data = self.get(ObjectKind.TREE, tree_id)
        try:
            return Tree.from_bytes(data)
        except ValueError as exc:
            raise CorruptObject(ObjectKind.TREE.value, tree_id, str(exc)) from exc

    def put_record(self, record: Record) -> str:
        """Store *record*.  Its root tree and parent must already be present."""
        if not self.exists(ObjectKind.TREE, record.root):
            raise ObjectNotFound(ObjectKind.TREE.value, record.root)
        if record.parent is not None and not self.exists(ObjectKind.RECORD, record.parent):
            raise ObjectNotFound(ObjectKind.RECORD.value, record.parent)
        return self.put(ObjectKind.RECORD, record.to_bytes())

    def get_record(self, record_id: str) -> Record:
        data = self.get(ObjectKind.RECORD, record_id)
        try:
            return Record.from_bytes(data)
        except ValueError as exc:
            raise CorruptObject(ObjectKind.RECORD.value, record_id, str(exc)) from exc

    # ── HEAD ────────────────────────────────────────────────────────────

    def read_head(self) -> str | None:
        """Return the HEAD record id, or ``None`` for an empty repository."""
        head = self.root / _HEAD_FILE
        try:
            value = head.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IoFailure("read", head, exc) from exc
        return value or None

    def write_head(self, record_id: str) -> None:
        """Point HEAD at *record_id* with an atomic rename."""
        if not self.exists(ObjectKind.RECORD, record_id):
            raise ObjectNotFound(ObjectKind.RECORD.value, record_id)
        self._write_atomic(self.root / _HEAD_FILE, f"{record_id}\n".encode("utf-8"))
        logger.info("✅ HEAD → %s", record_id[:8])
