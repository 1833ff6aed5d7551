""" Fetch Planner: load an object graph with one query per relationship level

Suppose you load 100 Posts, and then, for every Post, touch `post.user` and `post.media`.
Resolved per instance, that's 1 + 100 + 100 queries.

The planner turns the same request into a BatchPlan:

    plan(registry, 'Post', {1, 2, 3}, ['user', 'media', 'user.company'])

    depth 0: Post                 for posts (1, 2, 3)
    depth 1: Post.media           for posts (1, 2, 3)
    depth 1: Post.user            for posts (1, 2, 3)
    depth 2: User.company         for <users loaded at depth 1>

One step per relationship per depth, no matter how many parents there are.
The planner makes no queries itself: see `batchplan.executor` for that.
"""

import logging
from dataclasses import dataclass, replace
from typing import AbstractSet, Dict, FrozenSet, Hashable, Iterable, Optional, Set, Tuple

from .exc import EmptyRootKeySet
from .registry import Cardinality, PathLike, Relationship, RelationshipPath, RelationshipRegistry, parse_path


logger = logging.getLogger(__name__)


# Identifies a step within a plan: (depth, source type, relationship name)
# The root step is: (0, None, None)
StepId = Tuple[int, Optional[str], Optional[str]]


@dataclass(frozen=True)
class FetchStep:
    """ One batch lookup: resolve `relationship` for all parents at this depth at once

    Attributes:
        depth: 0 for the root fetch, 1..N for relationship fetches
        source: The type that declares the relationship. None for the root step.
        relationship: The relationship name. None for the root step.
        target: The type of entities this step loads
        cardinality: Whether a parent gets one child, or many
        parent_keys: Keys to look up. Known in advance only at depths 0 and 1;
            at deeper levels it's None, and the keys are taken from the results of `sources`.
        sources: Ids of steps at the previous depth whose results are this step's parents
        paths: The requested relationship paths that this step serves
    """
    depth: int
    source: Optional[str]
    relationship: Optional[str]
    target: str
    cardinality: Cardinality
    parent_keys: Optional[FrozenSet[Hashable]] = None
    sources: Tuple[StepId, ...] = ()
    paths: Tuple[RelationshipPath, ...] = ()

    @property
    def id(self) -> StepId:
        return (self.depth, self.source, self.relationship)

    @property
    def is_root(self) -> bool:
        return self.depth == 0

    def bind(self, parent_keys: Iterable[Hashable]) -> 'FetchStep':
        """ Get a copy of this step with its parent keys known """
        return replace(self, parent_keys=frozenset(parent_keys))

    def __str__(self):
        if self.is_root:
            return f'{self.target}'
        return f'{self.source}.{self.relationship} -> {self.target}'


@dataclass(frozen=True)
class BatchPlan:
    """ An ordered sequence of FetchSteps: the root fetch, then relationship fetches by depth """
    root_type: str
    steps: Tuple[FetchStep, ...]

    @property
    def root(self) -> FetchStep:
        return self.steps[0]

    @property
    def root_keys(self) -> FrozenSet[Hashable]:
        return self.root.parent_keys

    @property
    def depth(self) -> int:
        """ The deepest relationship level in this plan """
        return self.steps[-1].depth

    def at_depth(self, depth: int) -> Tuple[FetchStep, ...]:
        """ Get all steps at a given depth """
        return tuple(step for step in self.steps if step.depth == depth)

    def step(self, step_id: StepId) -> FetchStep:
        """ Get a step by its id """
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def __iter__(self):
        return iter(self.steps)

    def __len__(self):
        return len(self.steps)


class FetchPlanner:
    """ Plan fetches using the relationships declared in a registry """

    def __init__(self, registry: RelationshipRegistry):
        self.registry = registry

    def plan(self, root_type: str, root_keys: AbstractSet[Hashable], paths: Iterable[PathLike] = ()) -> BatchPlan:
        """ Produce a BatchPlan that loads `root_keys` of `root_type` and every relationship in `paths`

        Args:
            root_type: Name of the root entity type
            root_keys: Keys of root entities to load. Must not be empty.
            paths: Relationship paths to load. May be empty: load only the roots.

        Raises:
            EmptyRootKeySet: no root keys given
            InvalidRelationshipPath: a path is empty, or has an empty segment
            UnknownRelationship: a path segment is not declared on its type
        """
        root_keys = frozenset(root_keys)
        if not root_keys:
            raise EmptyRootKeySet(root_type)

        # Validate all paths first: an invalid input never produces a partial plan
        resolved = {
            path: self.registry.resolve(root_type, path)
            for path in sorted({parse_path(p) for p in paths})
        }

        # Merge segments into steps.
        # Every prefix of every path is a (depth, source, relationship) pair; same pairs merge into one step.
        rels: Dict[StepId, Relationship] = {}
        step_sources: Dict[StepId, Set[StepId]] = {}
        step_paths: Dict[StepId, Set[RelationshipPath]] = {}
        for path, relationships in resolved.items():
            previous: StepId = (0, None, None)
            for depth, rel in enumerate(relationships, start=1):
                step_id = (depth, rel.source, rel.name)
                rels[step_id] = rel
                step_sources.setdefault(step_id, set()).add(previous)
                step_paths.setdefault(step_id, set()).add(path[:depth])
                previous = step_id

        # Root step
        steps = [FetchStep(
            depth=0,
            source=None,
            relationship=None,
            target=root_type,
            cardinality=Cardinality.ONE_TO_ONE,
            parent_keys=root_keys,
        )]

        # Relationship steps: ordered by depth, then by (source, relationship)
        for step_id in sorted(rels):
            depth = step_id[0]
            rel = rels[step_id]
            steps.append(FetchStep(
                depth=depth,
                source=rel.source,
                relationship=rel.name,
                target=rel.target,
                cardinality=rel.cardinality,
                # Depth 1 is scoped to the roots; deeper levels depend on what's been loaded
                parent_keys=root_keys if depth == 1 else None,
                sources=tuple(sorted(step_sources[step_id], key=_step_id_sort_key)),
                paths=tuple(sorted(step_paths[step_id])),
            ))

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s: planned %s step(s) for %s root key(s)",
                root_type, len(steps), len(root_keys),
            )

        return BatchPlan(root_type=root_type, steps=tuple(steps))


def plan(registry: RelationshipRegistry, root_type: str, root_keys: AbstractSet[Hashable], paths: Iterable[PathLike] = ()) -> BatchPlan:
    """ Produce a BatchPlan. See FetchPlanner.plan() """
    return FetchPlanner(registry).plan(root_type, root_keys, paths)


def _step_id_sort_key(step_id: StepId):
    # The root step has None in it; None can't be compared with str
    depth, source, relationship = step_id
    return (depth, source or '', relationship or '')
