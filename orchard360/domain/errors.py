"""
Domain error taxonomy.

Every failure is surfaced once to the caller; nothing here is retried.
"""


class OrchardError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrchardError):
    """A write was rejected before touching state (missing scope, bad quantity)."""


class ReferentialIntegrityError(OrchardError):
    """A delete was blocked because dependent records still reference the entity."""

    def __init__(self, message: str, entity: str, entity_id: str, dependents: int):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.dependents = dependents


class ParseError(OrchardError):
    """CSV text could not be split into a header and rows."""


class StorageUnavailable(OrchardError):
    """The storage provider could not load or save a collection."""

    def __init__(self, message: str, collection: str):
        super().__init__(message)
        self.collection = collection
