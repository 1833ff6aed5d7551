""" Entities: immutable snapshots of records loaded from a store """

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Hashable, Mapping


@dataclass(frozen=True)
class Entity:
    """ A typed record with a key and a read-only mapping of attributes

    Attributes:
        type: The entity type name, e.g. 'Post'
        key: The identifier. A scalar for single-column keys, a tuple for composite ones.
        attributes: attribute name -> value
    """
    type: str
    key: Hashable
    attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Freeze the attributes. A copy is made so that the caller can't alter them either.
        object.__setattr__(self, 'attributes', MappingProxyType(dict(self.attributes)))

    def __getitem__(self, name: str):
        return self.attributes[name]

    def get(self, name: str, default=None):
        return self.attributes.get(name, default)


def identity_to_key(identity: tuple) -> Hashable:
    """ Convert an identity tuple into a key: unwrap single-column identities

    SqlAlchemy always uses tuples for identities: (1,)
    We'd rather have just `1` for the most common case.
    """
    if len(identity) == 1:
        return identity[0]
    else:
        return tuple(identity)
