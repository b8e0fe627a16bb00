"""History walker: parent-chain traversal and hash-prefix resolution."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from wsvc.errors import AmbiguousPrefix, RecordNotFound
from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind, Record

logger = logging.getLogger(__name__)

LATEST = "latest"


def iter_history(store: ObjectStore, start: str | None = None) -> Iterator[tuple[str, Record]]:
    """Yield ``(record_id, record)`` newest-first, following parent links.

    Starts at *start* or, by default, at HEAD.  An empty HEAD yields nothing.
    A dangling parent raises :class:`~wsvc.errors.ObjectNotFound`.
    """
    record_id = start if start is not None else store.read_head()
    while record_id is not None:
        record = store.get_record(record_id)
        yield record_id, record
        record_id = record.parent


def logs(store: ObjectStore, skip: int = 0, limit: int = 10) -> list[tuple[str, Record]]:
    """Return up to *limit* records from HEAD's chain after skipping *skip*."""
    if skip < 0 or limit < 0:
        raise ValueError("skip and limit must be non-negative")
    out: list[tuple[str, Record]] = []
    for index, item in enumerate(iter_history(store)):
        if index < skip:
            continue
        if len(out) >= limit:
            break
        out.append(item)
    return out


def resolve_record(store: ObjectStore, ref: str | None) -> str:
    """Resolve *ref* to a full record id.

    ``None``, ``""`` and ``"latest"`` mean HEAD.  Anything else is a hex
    prefix matched (case-insensitively) against every stored record id.

    Raises:
        RecordNotFound: nothing matches, or HEAD is empty for ``latest``.
        AmbiguousPrefix: more than one record matches; lists every candidate.
    """
    if not ref or ref == LATEST:
        head = store.read_head()
        if head is None:
            raise RecordNotFound(ref or LATEST)
        return head

    prefix = ref.strip().lower()
    matches = [rid for rid in store.list_ids(ObjectKind.RECORD) if rid.startswith(prefix)]
    if not matches:
        raise RecordNotFound(ref)
    if len(matches) > 1:
        logger.debug("⚠️ Prefix %s matched %d records", prefix, len(matches))
        raise AmbiguousPrefix(ref, matches)
    return matches[0]


def latest_record(records: Iterable[tuple[str, Record]]) -> tuple[str, Record] | None:
    """Return the record with the latest timestamp, or ``None`` if empty.

    Ties break on record id so the choice is deterministic.
    """
    best: tuple[str, Record] | None = None
    for item in records:
        if best is None or (item[1].timestamp, item[0]) > (best[1].timestamp, best[0]):
            best = item
    return best
