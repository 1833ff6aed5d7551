""" Execute a BatchPlan against a store, one store call per step """

import logging
from typing import Dict, Hashable, Iterable, List, Optional, Set, Tuple, Union

from .entity import Entity
from .planner import BatchPlan, FetchStep, StepId
from .registry import Cardinality
from .store import Store


logger = logging.getLogger(__name__)


class LoadedGraph:
    """ The result of executing a BatchPlan: entities, and who's related to whom

    Entities are indexed by (type, key).
    Relationships are indexed by (source type, relationship name, parent key).
    """

    def __init__(self, plan: BatchPlan):
        self.plan = plan
        self.roots: List[Entity] = []
        self._entities: Dict[Tuple[str, Hashable], Entity] = {}
        self._related: Dict[Tuple[str, str], Dict[Hashable, List[Entity]]] = {}
        self._cardinality: Dict[Tuple[str, str], Cardinality] = {}
        self._pairs: Set[Tuple[str, str, Hashable, Hashable]] = set()

    def get(self, type_name: str, key: Hashable) -> Entity:
        """ Get a loaded entity """
        return self._entities[type_name, key]

    def related(self, type_name: str, key: Hashable, relationship: str) -> Union[List[Entity], Optional[Entity]]:
        """ Get the entities related to (type, key) through a relationship

        Returns:
            For ONE_TO_MANY relationships: a list, possibly empty
            For ONE_TO_ONE relationships: an Entity, or None

        Raises:
            KeyError: the relationship wasn't part of the plan
        """
        children = self._related[type_name, relationship].get(key, [])
        if self._cardinality[type_name, relationship] is Cardinality.ONE_TO_MANY:
            return list(children)
        else:
            return children[0] if children else None

    def entities(self, type_name: str) -> List[Entity]:
        """ Get all loaded entities of a type """
        return [entity for (t, _), entity in self._entities.items() if t == type_name]

    def __contains__(self, type_and_key: Tuple[str, Hashable]) -> bool:
        return type_and_key in self._entities

    def __len__(self):
        return len(self._entities)

    def _add_roots(self, entities: Iterable[Entity]):
        for entity in entities:
            if (entity.type, entity.key) not in self._entities:
                self.roots.append(entity)
            self._entities[entity.type, entity.key] = entity

    def _add_children(self, step: FetchStep, pairs: Iterable[Tuple[Hashable, Entity]]) -> Set[Hashable]:
        """ Store the children loaded by a step; return their keys """
        index = self._related.setdefault((step.source, step.relationship), {})
        self._cardinality[step.source, step.relationship] = step.cardinality

        child_keys = set()
        for parent_key, child in pairs:
            self._entities[child.type, child.key] = child
            children = index.setdefault(parent_key, [])
            # The same relationship may be loaded at two depths; don't duplicate
            pair = (step.source, step.relationship, parent_key, child.key)
            if pair not in self._pairs:
                self._pairs.add(pair)
                children.append(child)
            child_keys.add(child.key)
        return child_keys


def execute(plan: BatchPlan, store: Store) -> LoadedGraph:
    """ Execute a BatchPlan: make exactly one store call per step

    Steps at depth >= 2 have their parent keys collected from the results of their `sources`.
    A step that ends up with no parent keys is skipped: no call at all.

    Args:
        plan: The plan to execute
        store: The store to fetch from

    Returns:
        LoadedGraph
    """
    graph = LoadedGraph(plan)

    # Keys of entities loaded by every step. They become parent keys at the next depth.
    loaded_keys: Dict[StepId, Set[Hashable]] = {}

    for step in plan:
        # Root fetch
        if step.is_root:
            roots = [child for _, child in store.fetch_by_keys(step.target, None, step.parent_keys)]
            graph._add_roots(roots)
            loaded_keys[step.id] = {entity.key for entity in roots}
            continue

        # Relationship fetch. Bind parent keys if not known in advance.
        if step.parent_keys is None:
            step = step.bind(set().union(*(loaded_keys[source] for source in step.sources)))

        # Nothing to look up: no query
        if not step.parent_keys:
            logger.debug("%s: no parent keys, skipped", step)
            graph._add_children(step, ())
            loaded_keys[step.id] = set()
            continue

        logger.debug("%s: fetching for %s parent(s)", step, len(step.parent_keys))
        pairs = store.fetch_by_keys(step.source, step.relationship, step.parent_keys)
        loaded_keys[step.id] = graph._add_children(step, pairs)

    return graph
