""" Relationship registry: which relationships each entity type declares """

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple, Union

from .exc import InvalidRelationshipPath, UnknownRelationship


class Cardinality(enum.Enum):
    """ How many children a parent can have through a relationship """
    # At most one child per parent: many-to-one, one-to-one
    ONE_TO_ONE = 'one-to-one'
    # Any number of children per parent: one-to-many, many-to-many
    ONE_TO_MANY = 'one-to-many'


@dataclass(frozen=True)
class Relationship:
    """ A relationship declared on the `source` type, pointing to the `target` type """
    name: str
    source: str
    target: str
    cardinality: Cardinality = Cardinality.ONE_TO_MANY


# A relationship path: a sequence of relationship names, or a dotted string: 'user.company'
RelationshipPath = Tuple[str, ...]
PathLike = Union[str, Iterable[str]]


def parse_path(path: PathLike) -> RelationshipPath:
    """ Normalize a relationship path into a tuple of names

    Example:
        parse_path('user.company') -> ('user', 'company')
        parse_path(['user', 'company']) -> ('user', 'company')
    """
    if isinstance(path, str):
        segments = tuple(path.split('.'))
    else:
        segments = tuple(path)

    if not segments or not all(segments):
        raise InvalidRelationshipPath(path)
    return segments


class RelationshipRegistry:
    """ An explicit, immutable registry: type name -> {relationship name -> Relationship}

    The Fetch Planner consults it to validate paths and to find the target type of every segment.

    Example:
        registry = RelationshipRegistry([
            Relationship('user', 'Post', 'User', Cardinality.ONE_TO_ONE),
            Relationship('media', 'Post', 'Media', Cardinality.ONE_TO_MANY),
        ])
    """

    def __init__(self, relationships: Iterable[Relationship] = ()):
        types = {}
        for rel in relationships:
            declared = types.setdefault(rel.source, {})
            if rel.name in declared and declared[rel.name] != rel:
                raise ValueError(f"Relationship {rel.source}.{rel.name} is declared twice")
            declared[rel.name] = rel

        self._types: Mapping[str, Mapping[str, Relationship]] = MappingProxyType({
            type_name: MappingProxyType(rels)
            for type_name, rels in types.items()
        })

    def relationships(self, type_name: str) -> Mapping[str, Relationship]:
        """ Get all relationships declared on a type. Unknown types have none. """
        return self._types.get(type_name, MappingProxyType({}))

    def get(self, type_name: str, relationship_name: str) -> Relationship:
        """ Get one relationship, or fail with UnknownRelationship """
        try:
            return self._types[type_name][relationship_name]
        except KeyError:
            raise UnknownRelationship(type_name, relationship_name) from None

    def resolve(self, root_type: str, path: PathLike) -> Tuple[Relationship, ...]:
        """ Walk a path from `root_type`, returning the Relationship for every segment

        Raises:
            InvalidRelationshipPath: the path is empty, or has an empty segment
            UnknownRelationship: a segment is not declared on the type it's applied to
        """
        relationships = []
        type_name = root_type
        for name in parse_path(path):
            rel = self.get(type_name, name)
            relationships.append(rel)
            type_name = rel.target
        return tuple(relationships)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types

    def __iter__(self):
        for rels in self._types.values():
            yield from rels.values()

    def __repr__(self):
        return f'{type(self).__name__}({list(self)!r})'
