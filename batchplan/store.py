""" The interface of a store: whatever executes fetch steps and write batches """

from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Tuple

from .entity import Entity


# A row to write: column name -> value
Row = Mapping[str, Any]


class Store(ABC):
    """ A store that resolves fetch steps and writes batches. Every call is one round trip. """

    @abstractmethod
    def fetch_by_keys(self, type_name: str, relationship: Optional[str], parent_keys: Iterable[Hashable]) -> Iterable[Tuple[Hashable, Entity]]:
        """ Load children of many parents at once

        Args:
            type_name: The type that owns the relationship (or the root type)
            relationship: Name of the relationship to load. None to load `type_name` entities themselves.
            parent_keys: Keys of parents to load children for

        Returns:
            (parent key, child entity) pairs.
            A parent with no children is simply absent.
            With `relationship=None`, every pair is (key, entity) for the entity itself.
        """

    @abstractmethod
    def write_insert_batch(self, type_name: str, rows: Sequence[Row]):
        """ Insert a batch of rows in one round trip """

    @abstractmethod
    def write_update_batch(self, type_name: str, key_columns: Sequence[str], rows: Sequence[Row]):
        """ Update a batch of rows, matched by their natural key, in one round trip """


class SnapshotProvider(ABC):
    """ Supplies the `existing` mapping to the reconciler, typically in one bulk read """

    @abstractmethod
    def snapshot(self, type_name: str, key_columns: Sequence[str], keys: Optional[Iterable[Hashable]] = None) -> Dict[Hashable, Dict[str, Any]]:
        """ Read existing records as {natural key: {attribute: value}}

        Args:
            type_name: The type to read
            key_columns: Natural key columns. A single column gives scalar keys; several give tuples.
            keys: Only read these natural keys. None to read everything.
        """
