"""Exceptions for soft delete operations."""

from typing import Any, List, Optional


class SoftDeleteError(Exception):
    """Base exception for soft delete operations."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)


class ConfigurationError(SoftDeleteError):
    """Raised when a soft delete declaration on a mapped class is invalid."""

    def __init__(self, entity_type: str, message: str):
        self.entity_type = entity_type
        super().__init__(f"Invalid soft delete configuration on {entity_type}: {message}")


class TraversalError(SoftDeleteError):
    """Raised when a cascade traversal cannot be completed for a flush."""


class CascadeCycleError(TraversalError):
    """Raised when a cascade re-enters an object already on its own path."""

    def __init__(self, path: List[Any]):
        self.path = path
        chain = " -> ".join(_describe(obj) for obj in path)
        super().__init__(
            f"Cascade cycle detected: {chain}. "
            "Check the cascade declarations of the involved entity types.",
            entity_id=_identity(path[-1]) if path else None,
        )


class AssociationResolutionError(TraversalError):
    """Raised when a cascade relationship cannot be read."""

    def __init__(self, entity: Any, field_name: str, cause: Exception):
        self.field_name = field_name
        super().__init__(
            f"Cannot resolve cascade field '{field_name}' on {_describe(entity)}: {cause}",
            entity_id=_identity(entity),
        )


class HardDeletePolicyError(SoftDeleteError):
    """Raised when a hard delete decider fails while evaluating an entity."""

    def __init__(self, entity: Any, cause: Exception):
        super().__init__(
            f"Hard delete policy failed for {_describe(entity)}: {cause}",
            entity_id=_identity(entity),
        )


def _identity(entity: Any) -> str:
    return str(getattr(entity, "id", "unknown"))


def _describe(entity: Any) -> str:
    return f"{entity.__class__.__name__}({_identity(entity)})"
