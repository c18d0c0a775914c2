"""
Merge engine: the only way records enter the store.

``merge`` is a pure reducer. It never performs I/O and never mutates its
input, so running it twice on the same batch is harmless: the second run
finds every id already present and adds nothing.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from streamsync.core.types import Record


def _sort_key(record: Record) -> tuple[int, str]:
    # Newest first; id breaks timestamp ties deterministically
    return (-record.timestamp, record.id)


class RecordStore:
    """
    Immutable id-keyed collection with a timestamp-descending view.

    Invariants:
    - no two records share an id
    - ``records`` is sorted by timestamp descending (then id)
    """

    __slots__ = ("_by_id", "_sorted")

    def __init__(self, records: Iterable[Record] = ()):
        by_id: dict[str, Record] = {}
        for record in records:
            by_id.setdefault(record.id, record)
        self._by_id = by_id
        self._sorted = tuple(sorted(by_id.values(), key=_sort_key))

    @classmethod
    def empty(cls) -> "RecordStore":
        return cls()

    @property
    def records(self) -> tuple[Record, ...]:
        """Sorted view, newest first."""
        return self._sorted

    def snapshot(self) -> list[Record]:
        """Copy of the sorted view for consumers."""
        return list(self._sorted)

    def get(self, record_id: str) -> Record | None:
        return self._by_id.get(record_id)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._sorted)

    def __repr__(self) -> str:
        return f"RecordStore(size={len(self)})"


@dataclass(frozen=True)
class MergeResult:
    """Outcome of one merge."""
    store: RecordStore
    added: tuple[Record, ...]

    @property
    def changed(self) -> bool:
        return bool(self.added)


def merge(store: RecordStore, batch: Iterable[Record]) -> MergeResult:
    """
    Merge a batch into a store.

    Records whose id is already in the store are dropped; within the batch the
    first occurrence of an id wins.

    Args:
        store: Current store (not modified)
        batch: Incoming records from any ingestion path

    Returns:
        MergeResult with the new store and the genuinely new records, sorted
        newest first. When nothing is new, the original store is returned.
    """
    fresh: dict[str, Record] = {}
    for record in batch:
        if record.id not in store and record.id not in fresh:
            fresh[record.id] = record

    if not fresh:
        return MergeResult(store=store, added=())

    new_store = RecordStore((*store.records, *fresh.values()))
    added = tuple(sorted(fresh.values(), key=_sort_key))
    return MergeResult(store=new_store, added=added)
