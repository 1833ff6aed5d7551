""" Batch Reconciler: update-or-insert many records with the fewest round trips

The naive import loop goes like this:

    for row in csv_rows:
        record = ssn.query(Account).filter_by(key=row['key']).first()  # 1 query
        if record: update(record, row)                                   # 1 query
        else: insert(row)                                                # 1 query

That's 2 queries per row, and most of them are pointless, because most rows haven't changed.

The reconciler takes a snapshot of what's in the store (one bulk read), compares it with the incoming
records in memory, and comes up with batches:

    existing = store.snapshot('Account', ['key'])
    plan = reconcile(existing, records_from_rows(csv_rows, ['key']), batch_size=1000)
    write(plan, store, 'Account')

Records that haven't changed are only counted: they cost nothing.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from funcy import lchunks, omit

from .exc import IncompleteNaturalKey, InvalidBatchSize, NaturalKeyCollision
from .store import Row, Store


logger = logging.getLogger(__name__)


# Backends have limits on statement size; 1000 rows per statement is safe with most of them
DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class ReconciliationRecord:
    """ An incoming record: the full row to persist, and the columns that make its natural key

    Attributes:
        key_columns: The natural key columns, e.g. ('key',) or ('account', 'currency'). A string is a single column.
        values: The full row, key columns included
    """
    key_columns: Tuple[str, ...]
    values: Mapping[str, Any] = field(hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'key_columns', normalize_key_columns(self.key_columns))
        object.__setattr__(self, 'values', MappingProxyType(dict(self.values)))

        missing = [col for col in self.key_columns if col not in self.values]
        if missing or not self.key_columns:
            raise IncompleteNaturalKey(missing, self.values)

    @property
    def key(self) -> Hashable:
        """ The natural key: a scalar for a single key column, a tuple for many """
        return natural_key(self.values, self.key_columns)

    @property
    def attributes(self) -> Mapping[str, Any]:
        """ The row without its key columns """
        return omit(self.values, self.key_columns)

    def as_row(self) -> dict:
        return dict(self.values)


@dataclass(frozen=True)
class ReconciliationPlan:
    """ The outcome of reconciliation: what to insert, what to update, how much to skip

    Attributes:
        insert_batches: Records with no existing counterpart, in batches, input order preserved
        update_batches: Records whose existing counterpart differs, in batches, input order preserved
        unchanged_count: The number of records identical to the existing ones. Not materialized.
        batch_size: The maximum length of a batch
    """
    insert_batches: Tuple[Tuple[ReconciliationRecord, ...], ...] = ()
    update_batches: Tuple[Tuple[ReconciliationRecord, ...], ...] = ()
    unchanged_count: int = 0
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def to_insert(self) -> Tuple[ReconciliationRecord, ...]:
        return tuple(record for batch in self.insert_batches for record in batch)

    @property
    def to_update(self) -> Tuple[ReconciliationRecord, ...]:
        return tuple(record for batch in self.update_batches for record in batch)

    @property
    def total(self) -> int:
        """ The number of records classified """
        return len(self.to_insert) + len(self.to_update) + self.unchanged_count

    @property
    def is_noop(self) -> bool:
        """ Is there nothing to write? """
        return not self.insert_batches and not self.update_batches


@dataclass(frozen=True)
class WriteReport:
    """ What write() has done """
    inserted: int = 0
    updated: int = 0
    batches: int = 0


def reconcile(existing: Mapping[Hashable, Mapping[str, Any]], incoming: Iterable[ReconciliationRecord], batch_size: int = DEFAULT_BATCH_SIZE) -> ReconciliationPlan:
    """ Classify incoming records into inserts, updates, and no-ops

    Args:
        existing: A snapshot: natural key -> attribute mapping.
            Must be keyed the same way as records are: a scalar for single-column keys, a tuple otherwise.
        incoming: The records to persist, in order
        batch_size: The maximum number of records in one batch

    Raises:
        InvalidBatchSize: `batch_size` is not a positive integer
        NaturalKeyCollision: two incoming records share a key, but differ in content
    """
    # bool is an int; True is not a batch size
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        raise InvalidBatchSize(batch_size)

    to_insert = []
    to_update = []
    unchanged_count = 0

    # Records seen so far, by key: to detect collisions within the incoming batch
    seen = {}

    for record in incoming:
        key = record.key

        # Duplicate key?
        if key in seen:
            if seen[key].values.keys() != record.values.keys() or has_changes(seen[key].values, record.values):
                raise NaturalKeyCollision(key, seen[key].values, record.values)
            # An exact duplicate: the first occurrence already does the job
            unchanged_count += 1
            continue
        seen[key] = record

        # Insert, update, or nothing
        if key not in existing:
            to_insert.append(record)
        elif has_changes(existing[key], record.attributes):
            to_update.append(record)
        else:
            unchanged_count += 1

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Reconciled %s record(s): %s to insert, %s to update, %s unchanged",
            len(to_insert) + len(to_update) + unchanged_count,
            len(to_insert), len(to_update), unchanged_count,
        )

    return ReconciliationPlan(
        insert_batches=tuple(tuple(batch) for batch in lchunks(batch_size, to_insert)),
        update_batches=tuple(tuple(batch) for batch in lchunks(batch_size, to_update)),
        unchanged_count=unchanged_count,
        batch_size=batch_size,
    )


def has_changes(current: Mapping[str, Any], target: Mapping[str, Any]) -> bool:
    """ Does any attribute in `target` differ from `current`? An attribute missing from `current` differs.

    NaN equals NaN here: otherwise, a record with a NaN would be updated over and over again.
    """
    for name, value in target.items():
        if name not in current or not _same(current[name], value):
            return True
    return False


def _same(a: Any, b: Any) -> bool:
    # NaN != NaN, yet a NaN read back from the store is the NaN we wrote
    return a == b or (a != a and b != b)


def write(plan: ReconciliationPlan, store: Store, type_name: str,
          prepare_insert: Optional[Callable[[dict], Row]] = None,
          prepare_update: Optional[Callable[[dict], Row]] = None) -> WriteReport:
    """ Write a ReconciliationPlan: one store call per batch

    Policy-level defaults, like server-generated timestamps, are not the reconciler's business.
    Supply them with `prepare_insert()` and `prepare_update()`: they get a row and return the row to write.

    Args:
        plan: The plan to write
        store: The store to write to
        type_name: The type of records
        prepare_insert: Called on every row before it's inserted
        prepare_update: Called on every row before it's updated

    Returns:
        WriteReport
    """
    inserted = updated = batches = 0

    for batch in plan.insert_batches:
        rows = _prepare_rows(batch, prepare_insert)
        store.write_insert_batch(type_name, rows)
        inserted += len(rows)
        batches += 1

    for batch in plan.update_batches:
        rows = _prepare_rows(batch, prepare_update)
        store.write_update_batch(type_name, batch[0].key_columns, rows)
        updated += len(rows)
        batches += 1

    logger.debug("%s: wrote %s batch(es): %s inserted, %s updated", type_name, batches, inserted, updated)
    return WriteReport(inserted=inserted, updated=updated, batches=batches)


def records_from_rows(rows: Iterable[Mapping[str, Any]], key_columns: Union[str, Sequence[str]]) -> List[ReconciliationRecord]:
    """ Make ReconciliationRecords from plain rows """
    key_columns = normalize_key_columns(key_columns)
    return [ReconciliationRecord(key_columns, row) for row in rows]


def normalize_key_columns(key_columns: Union[str, Iterable[str]]) -> Tuple[str, ...]:
    """ Get key columns as a tuple. A single column may be given as a string: 'key' -> ('key',) """
    if isinstance(key_columns, str):
        return (key_columns,)
    else:
        return tuple(key_columns)


def natural_key(row: Mapping[str, Any], key_columns: Sequence[str]) -> Hashable:
    """ Get the natural key of a row: a scalar for a single key column, a tuple for many """
    if len(key_columns) == 1:
        return row[key_columns[0]]
    else:
        return tuple(row[col] for col in key_columns)


def _prepare_rows(batch: Sequence[ReconciliationRecord], prepare: Optional[Callable[[dict], Row]]) -> list:
    if prepare is None:
        return [record.as_row() for record in batch]
    else:
        return [prepare(record.as_row()) for record in batch]
