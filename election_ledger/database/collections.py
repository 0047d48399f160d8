# election_ledger/database/collections.py

from typing import Generic, Iterator, List, Optional, TypeVar

from election_ledger.database.hash_index import HashIndex
from election_ledger.errors import ConflictError

# Insertion-ordered record list plus an id index and a monotonic id generator

R = TypeVar('R')


class RecordCollection(Generic[R]):
    def __init__(self, kind: str):
        self.kind = kind
        self.next_id = 1
        self._records: List[R] = []
        # id -> position in _records; records are never removed
        self._by_id = HashIndex(64)

    def allocate_id(self) -> int:
        record_id = self.next_id
        self.next_id += 1
        return record_id

    def reserve(self, record_id: int) -> None:
        """Keep record_id from ever being allocated, without storing a record."""
        if record_id >= self.next_id:
            self.next_id = record_id + 1

    def add(self, record: R) -> R:
        record_id = record.id
        if record_id in self._by_id:
            raise ConflictError(f"duplicate {self.kind} id {record_id}")
        self._records.append(record)
        try:
            self._by_id.put(record_id, len(self._records) - 1)
        except Exception:
            self._records.pop()
            raise
        if record_id >= self.next_id:
            self.next_id = record_id + 1
        return record

    def remove_last(self, record: R) -> None:
        """Undo the most recent add(); used to keep multi-index inserts atomic."""
        if not self._records or self._records[-1] is not record:
            raise ValueError(f"{record!r} is not the last {self.kind}")
        self._records.pop()
        self._by_id.delete(record.id)

    def get(self, record_id: int) -> Optional[R]:
        position = self._by_id.get(record_id)
        if position is None:
            return None
        return self._records[position]

    def max_id(self) -> int:
        return max((r.id for r in self._records), default=0)

    def __contains__(self, record_id: int) -> bool:
        return record_id in self._by_id

    def __iter__(self) -> Iterator[R]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)
