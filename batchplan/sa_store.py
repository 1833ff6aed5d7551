""" A Store on top of an SqlAlchemy Session """

from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

import sqlalchemy as sa
import sqlalchemy.orm
from funcy import chunks, group_by
from sqlalchemy import log

from .entity import Entity, identity_to_key
from .reconciler import normalize_key_columns
from .store import Row, SnapshotProvider, Store
from .util import build_key_condition, entity_from_instance, get_primary_key_columns


@log.class_logger
class SqlAlchemyStore(Store, SnapshotProvider):
    """ Fetch steps and write batches with an SqlAlchemy Session

    Every call makes exactly one statement:

    * fetch_by_keys(type, None, keys):      SELECT ... FROM type WHERE pk IN (...)
    * fetch_by_keys(type, rel, keys):       SELECT type.pk, target.* FROM type JOIN target WHERE type.pk IN (...)
    * write_insert_batch(type, rows):       INSERT INTO type ... (executemany)
    * write_update_batch(type, key, rows):  UPDATE type SET ... WHERE key = ... (executemany)
    * snapshot(type, key_columns, keys):    SELECT key, ... FROM type [WHERE key IN (...)]

    Rows in a write batch that carry different columns make one executemany() per set of columns.
    Unless `chunk_size` is set: then long key lists are split into chunks, one statement per chunk.
    Use it with backends that limit the number of bound parameters.

    The store never commits. The caller owns the transaction: commit after write() for all-or-nothing writes.

    Example:
        store = SqlAlchemyStore(ssn, [Post, User, Media])
        graph = execute(plan(registry_from_models(Post, User, Media), 'Post', {1, 2, 3}, ['user']), store)
    """

    def __init__(self, session: sa.orm.Session, models: Iterable[type], chunk_size: Optional[int] = None):
        self.session = session
        self.models = {Model.__name__: Model for Model in models}
        self.chunk_size = chunk_size

    def model(self, type_name: str) -> type:
        """ Get a model by its type name """
        try:
            return self.models[type_name]
        except KeyError:
            raise KeyError(f'Model not registered with the store: {type_name}') from None

    def table(self, type_name: str) -> sa.Table:
        """ Get a model's table by its type name """
        return sa.inspect(self.model(type_name)).local_table

    # region Fetch

    def fetch_by_keys(self, type_name: str, relationship: Optional[str], parent_keys: Iterable[Hashable]) -> List[Tuple[Hashable, Entity]]:
        Model = self.model(type_name)
        mapper: sa.orm.Mapper = sa.inspect(Model)
        parent_keys = list(parent_keys)

        if self._should_log_debug():
            self.logger.debug("%s.%s: loading for %s key(s)", type_name, relationship or '*', len(parent_keys))

        if not parent_keys:
            return []

        if relationship is None:
            make_statement = self._select_by_keys
        else:
            make_statement = self._select_related_by_keys

        # We're going to make SQL queries, so we have to temporarily disable Session's autoflush.
        # If we don't, it may try to save any unsaved instances.
        results = []
        with self.session.no_autoflush:
            for keys_chunk in self._chunks(parent_keys):
                stmt = make_statement(Model, mapper, relationship, keys_chunk)
                results.extend(self._execute_fetch(stmt, relationship is None))
        return results

    def _select_by_keys(self, Model: type, mapper: sa.orm.Mapper, relationship: None, keys: List[Hashable]) -> sa.sql.expression.Select:
        """ SELECT Model WHERE pk IN (...) """
        pk_columns = get_primary_key_columns(mapper)
        return (
            sa.select(Model)
                .where(build_key_condition(pk_columns, keys))
                .order_by(*pk_columns)  # predictable order
        )

    def _select_related_by_keys(self, Model: type, mapper: sa.orm.Mapper, relationship: str, keys: List[Hashable]) -> sa.sql.expression.Select:
        """ SELECT Model.pk, Target FROM Model JOIN Target WHERE Model.pk IN (...)

        Joining through the relationship handles all of them alike: many-to-one, one-to-many, many-to-many.
        The target is aliased, so self-referential relationships work too.
        """
        try:
            prop: sa.orm.RelationshipProperty = mapper.relationships[relationship]
        except KeyError:
            raise KeyError(f'{Model.__name__}.{relationship} is not a relationship') from None

        pk_columns = get_primary_key_columns(mapper)
        target_mapper: sa.orm.Mapper = prop.mapper
        Target = sa.orm.aliased(target_mapper.class_)
        target_pk = [
            getattr(Target, target_mapper.get_property_by_column(col).key)
            for col in target_mapper.primary_key
        ]

        # The parent's primary key goes first, so every row is: (*parent key, child)
        return (
            sa.select(*pk_columns, Target)
                .select_from(Model)
                .join(getattr(Model, relationship).of_type(Target))
                .where(build_key_condition(pk_columns, keys))
                .order_by(*pk_columns, *target_pk)
        )

    def _execute_fetch(self, stmt: sa.sql.expression.Select, is_root: bool) -> Iterable[Tuple[Hashable, Entity]]:
        if is_root:
            for instance in self.session.execute(stmt).scalars():
                entity = entity_from_instance(instance)
                yield entity.key, entity
        else:
            for row in self.session.execute(stmt):
                row = tuple(row)
                parent_key = identity_to_key(row[:-1])
                yield parent_key, entity_from_instance(row[-1])

    # endregion

    # region Write

    def write_insert_batch(self, type_name: str, rows: Sequence[Row]):
        """ INSERT a batch of rows with one executemany() per distinct set of columns

        executemany() compiles its statement from the first row's columns: rows that carry other columns
        go into a statement of their own, or their extra values would be lost.
        """
        rows = [dict(row) for row in rows]
        if not rows:
            return

        table = self.table(type_name)
        groups = _group_by_columns(rows)

        if self._should_log_debug():
            self.logger.debug("%s: inserting %s row(s) in %s statement(s)", type_name, len(rows), len(groups))

        for group in groups:
            self.session.execute(sa.insert(table), group)

    def write_update_batch(self, type_name: str, key_columns: Sequence[str], rows: Sequence[Row]):
        """ UPDATE a batch of rows, matched by natural key, with one executemany() per distinct set of columns

        A row only updates the columns it carries.
        """
        rows = [dict(row) for row in rows]
        if not rows:
            return

        key_columns = normalize_key_columns(key_columns)
        table = self.table(type_name)
        groups = _group_by_columns(rows)

        if self._should_log_debug():
            self.logger.debug("%s: updating %s row(s) in %s statement(s)", type_name, len(rows), len(groups))

        for group in groups:
            value_columns = [col for col in group[0] if col not in key_columns]

            # Bound parameters can't be named like columns in an UPDATE: prefix them
            stmt = (
                sa.update(table)
                    .where(sa.and_(*(
                        table.c[col] == sa.bindparam(f'key_{col}')
                        for col in key_columns
                    )))
                    .values({
                        col: sa.bindparam(f'value_{col}')
                        for col in value_columns
                    })
            )
            params = [
                {
                    **{f'key_{col}': row[col] for col in key_columns},
                    **{f'value_{col}': row[col] for col in value_columns},
                }
                for row in group
            ]
            self.session.execute(stmt, params)

    # endregion

    # region Snapshot

    def snapshot(self, type_name: str, key_columns: Sequence[str], keys: Optional[Iterable[Hashable]] = None,
                 columns: Optional[Sequence[str]] = None) -> Dict[Hashable, Dict[str, Any]]:
        """ Read existing rows as {natural key: {column: value}}

        Args:
            type_name: The type to read
            key_columns: Natural key columns. A single column may be given as a string.
            keys: Only read these natural keys. None to read the whole table.
            columns: Only read these columns. None to read every column except the key.
        """
        key_columns = normalize_key_columns(key_columns)
        table = self.table(type_name)
        key_cols = [table.c[col] for col in key_columns]
        if columns is None:
            attr_cols = [col for col in table.c if col.key not in key_columns]
        else:
            attr_cols = [table.c[col] for col in columns]
        attr_names = [col.key for col in attr_cols]

        if keys is None:
            conditions = [None]
        else:
            keys = list(keys)
            if not keys:
                return {}
            conditions = [build_key_condition(key_cols, chunk) for chunk in self._chunks(keys)]

        if self._should_log_debug():
            self.logger.debug("%s: reading snapshot of %s key(s)", type_name, 'all' if keys is None else len(keys))

        existing = {}
        n_keys = len(key_cols)
        for condition in conditions:
            stmt = sa.select(*key_cols, *attr_cols)
            if condition is not None:
                stmt = stmt.where(condition)

            for row in self.session.execute(stmt):
                row = tuple(row)
                existing[identity_to_key(row[:n_keys])] = dict(zip(attr_names, row[n_keys:]))
        return existing

    # endregion

    def _chunks(self, keys: List[Hashable]) -> Iterable[List[Hashable]]:
        if self.chunk_size is None:
            return [keys]
        else:
            return chunks(self.chunk_size, keys)


def _group_by_columns(rows: List[dict]) -> List[List[dict]]:
    """ Split rows into groups that carry the same columns, in the order they're first seen """
    return list(group_by(lambda row: frozenset(row), rows).values())
