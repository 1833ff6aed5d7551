class BatchPlanError(ValueError):
    """ Base class for all batchplan errors: the input was invalid, no plan was made """


class PlanningError(BatchPlanError):
    """ The Fetch Planner refused to plan """


class UnknownRelationship(PlanningError, KeyError):
    """ A relationship path mentions a relationship that is not declared on its type """

    type_name: str
    relationship_name: str

    def __init__(self, type_name, relationship_name):
        self.type_name = type_name
        self.relationship_name = relationship_name
        super().__init__(f"{self.type_name}.{self.relationship_name} is not a declared relationship")

    # KeyError.__str__() would repr() the message
    __str__ = BatchPlanError.__str__


class InvalidRelationshipPath(PlanningError):
    """ A relationship path is empty, or has an empty segment """

    def __init__(self, path):
        self.path = path
        super().__init__(f"Invalid relationship path: {self.path!r}")


class EmptyRootKeySet(PlanningError):
    """ Nothing to load: the set of root keys is empty """

    def __init__(self, type_name):
        self.type_name = type_name
        super().__init__(f"Cannot plan a fetch of {self.type_name} with no root keys")


class ReconciliationError(BatchPlanError):
    """ The Batch Reconciler refused to reconcile """


class NaturalKeyCollision(ReconciliationError):
    """ Two incoming records share a natural key but disagree on their content """

    def __init__(self, key, first, second):
        self.key = key
        self.first = first
        self.second = second
        super().__init__(f"Incoming records collide on natural key {self.key!r}: {dict(first)!r} != {dict(second)!r}")


class InvalidBatchSize(ReconciliationError):
    """ Batch size must be a positive integer """

    def __init__(self, batch_size):
        self.batch_size = batch_size
        super().__init__(f"Batch size must be a positive integer, got {self.batch_size!r}")


class IncompleteNaturalKey(ReconciliationError):
    """ A record does not have a value for every natural key column """

    def __init__(self, missing, values):
        self.missing = tuple(missing)
        self.values = values
        super().__init__(f"Record is missing natural key column(s) {', '.join(self.missing)}: {dict(values)!r}")
