""" SqlAlchemy helpers """

from typing import Hashable, Iterable, Sequence, Tuple

import sqlalchemy as sa
import sqlalchemy.orm
from sqlalchemy.sql.elements import ColumnElement

from .entity import Entity, identity_to_key
from .registry import Cardinality, Relationship, RelationshipRegistry


def registry_from_models(*models: type) -> RelationshipRegistry:
    """ Build a RelationshipRegistry from SqlAlchemy models

    Every relationship() on every model is declared; type names are class names.
    Relationships with `uselist=True` are ONE_TO_MANY; all others are ONE_TO_ONE.

    Example:
        registry = registry_from_models(Post, User, Media)
    """
    relationships = []
    for Model in models:
        mapper: sa.orm.Mapper = sa.inspect(Model)
        for name, prop in mapper.relationships.items():
            relationships.append(Relationship(
                name=name,
                source=Model.__name__,
                target=prop.mapper.class_.__name__,
                cardinality=Cardinality.ONE_TO_MANY if prop.uselist else Cardinality.ONE_TO_ONE,
            ))
    return RelationshipRegistry(relationships)


def entity_from_instance(instance: object) -> Entity:
    """ Take an immutable snapshot of a loaded instance

    Only loaded columns are taken: unloaded ones would trigger a lazy-load, one query per instance.
    """
    state: sa.orm.state.InstanceState = sa.inspect(instance)
    mapper: sa.orm.Mapper = state.mapper
    return Entity(
        type=mapper.class_.__name__,
        key=identity_to_key(state.identity),
        attributes={
            attr.key: state.dict[attr.key]
            for attr in mapper.column_attrs
            if attr.key in state.dict
        },
    )


def build_key_condition(key_columns: Sequence[ColumnElement], keys: Iterable[Hashable]) -> ColumnElement:
    """ Build an IN(...) condition to select many rows at once

    Args:
        key_columns: The columns to filter with
        keys: Key values: scalars for a single column, tuples for many

    For a single column, that's:

        WHERE id IN (:val, :val, ...)

    For composite keys, tuples are used:

        WHERE (pk_col1, pk_col2) IN ((:val, :val), (:val, :val), ...)
    """
    keys = list(keys)
    if len(key_columns) == 1:
        return key_columns[0].in_(keys)
    else:
        return sa.tuple_(*key_columns).in_(keys)


def get_primary_key_columns(mapper: sa.orm.Mapper) -> Tuple[sa.Column, ...]:
    """ Get a tuple of primary key columns for a Mapper

    If you have a Model, use sa.inspect(Model)
    """
    return tuple(mapper.primary_key)
