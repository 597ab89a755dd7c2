from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from ..models.record_type import RecordType
from ..models.records import BatchRecord, FlockRecord, Record

"""Backing store contract and the in-memory implementation.

Error classes:
- StoreError: the current row could not be written; the sheet continues
- DuplicateRecordError: natural key already present (row level)
- StoreUnavailableError: connection lost / store down; aborts the sheet
- StatementTimeoutError: a write outlived the sheet deadline; times the sheet out
"""

__all__ = [
    "StoreError",
    "DuplicateRecordError",
    "StoreUnavailableError",
    "StatementTimeoutError",
    "EntityRefs",
    "RecordStore",
    "InMemoryStore",
]


class StoreError(Exception):
    pass


class DuplicateRecordError(StoreError):
    pass


class StoreUnavailableError(Exception):
    """Systemic store failure; not a StoreError so row handlers do not swallow it."""


class StatementTimeoutError(StoreUnavailableError):
    """A write was cancelled because it ran past the sheet deadline."""


@dataclass(frozen=True)
class EntityRefs:
    """Resolved parent entity ids for one record."""
    flock_id: int | None = None
    machine_id: int | None = None
    batch_id: int | None = None


class RecordStore(Protocol):
    def find_flock(self, flock_number: int) -> int | None: ...

    def create_flock(self, flock_number: int, flock_name: str | None = None) -> int: ...

    def find_machine(self, machine_number: str) -> int | None: ...

    def create_machine(self, machine_number: str) -> int: ...

    def find_batch(self, flock_id: int, batch_number: str | None = None) -> int | None: ...

    def create_batch(
        self, flock_id: int, batch_number: str, set_date: date, machine_id: int | None = None
    ) -> int: ...

    def has_record(self, record_type: RecordType, natural_key: tuple[Any, ...]) -> bool: ...

    def insert_record(self, record: Record, refs: EntityRefs, natural_key: tuple[Any, ...]) -> int: ...

    def set_statement_timeout(self, seconds: float | None) -> None:
        """Upper bound for each following write; None removes it."""
        ...


@dataclass
class _Batch:
    id: int
    flock_id: int
    batch_number: str
    set_date: date
    machine_id: int | None


class InMemoryStore:
    """Dict-backed RecordStore for dry runs and tests.

    Inserting a FlockRecord / BatchRecord also registers the entity so later
    sheets of the same run can resolve it.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.flocks: dict[int, int] = {}  # flock_number -> id
        self.flock_names: dict[int, str] = {}
        self.machines: dict[str, int] = {}  # machine_number -> id
        self.batches: list[_Batch] = []
        self.records: dict[RecordType, dict[tuple[Any, ...], tuple[Record, EntityRefs, int]]] = {}
        self.statement_timeout: float | None = None

    def set_statement_timeout(self, seconds: float | None) -> None:
        self.statement_timeout = seconds

    def find_flock(self, flock_number: int) -> int | None:
        return self.flocks.get(flock_number)

    def create_flock(self, flock_number: int, flock_name: str | None = None) -> int:
        if flock_number in self.flocks:
            raise DuplicateRecordError(f"Flock #{flock_number} already exists")
        flock_id = next(self._ids)
        self.flocks[flock_number] = flock_id
        self.flock_names[flock_id] = flock_name or f"Flock {flock_number}"
        return flock_id

    def find_machine(self, machine_number: str) -> int | None:
        return self.machines.get(machine_number)

    def create_machine(self, machine_number: str) -> int:
        if machine_number in self.machines:
            raise DuplicateRecordError(f"Machine {machine_number} already exists")
        machine_id = next(self._ids)
        self.machines[machine_number] = machine_id
        return machine_id

    def find_batch(self, flock_id: int, batch_number: str | None = None) -> int | None:
        candidates = [b for b in self.batches if b.flock_id == flock_id]
        if batch_number is not None:
            candidates = [b for b in candidates if b.batch_number == batch_number]
        if not candidates:
            return None
        # latest set date wins, then latest created
        return max(candidates, key=lambda b: (b.set_date, b.id)).id

    def create_batch(
        self, flock_id: int, batch_number: str, set_date: date, machine_id: int | None = None
    ) -> int:
        batch_id = next(self._ids)
        self.batches.append(_Batch(batch_id, flock_id, batch_number, set_date, machine_id))
        return batch_id

    def has_record(self, record_type: RecordType, natural_key: tuple[Any, ...]) -> bool:
        # flocks / batches may also exist because another sheet created them
        if record_type is RecordType.FLOCK:
            return natural_key[0] in self.flocks
        if record_type is RecordType.BATCH:
            batch_number, set_date = natural_key
            return any(b.batch_number == batch_number and b.set_date == set_date for b in self.batches)
        return natural_key in self.records.get(record_type, {})

    def insert_record(self, record: Record, refs: EntityRefs, natural_key: tuple[Any, ...]) -> int:
        table = self.records.setdefault(record.record_type, {})
        if self.has_record(record.record_type, natural_key):
            raise DuplicateRecordError(f"{record.record_type.value} {natural_key} already exists")
        if isinstance(record, FlockRecord):
            record_id = self.create_flock(record.flock_number, record.flock_name)
        elif isinstance(record, BatchRecord):
            if refs.flock_id is None:
                raise StoreError(f"Batch {record.batch_number} has no flock")
            record_id = self.create_batch(refs.flock_id, record.batch_number, record.set_date, refs.machine_id)
        else:
            record_id = next(self._ids)
        table[natural_key] = (record, refs, record_id)
        return record_id

    def count(self, record_type: RecordType) -> int:
        return len(self.records.get(record_type, {}))
