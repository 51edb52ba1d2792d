"""
Hard delete policies.

A policy decides whether an entity that is being deleted again may now be
physically removed instead of being stamped as soft deleted.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .adapter import SessionAdapter
    from .models import SoftDeleteConfig


class HardDeletePolicy(ABC):
    """
    Base class for hard delete policies.

    Policies are bound to the persistence adapter of the flush they serve.

    Usage:
        class ApprovedPurge(HardDeletePolicy):
            def hard_delete_allowed(self, entity, config):
                return entity.purge_approved

        class Draft(Base, SoftDeleteMixin):
            __soft_delete__ = {"hard_delete": ApprovedPurge}
    """

    def __init__(self, adapter: "SessionAdapter"):
        self.adapter = adapter

    @abstractmethod
    def hard_delete_allowed(self, entity: Any, config: "SoftDeleteConfig") -> bool:
        """
        Decide whether the entity may be physically deleted.

        Args:
            entity: Entity scheduled for removal
            config: Soft delete configuration of the entity type

        Returns:
            True to let the physical delete proceed
        """


class HardDeleteExpired(HardDeletePolicy):
    """
    Default policy: hard delete once the soft deletion has expired.

    An entity whose deletion timestamp is at or before now is physically
    removed. Live entities and entities whose timestamp lies in the future
    are soft deleted.
    """

    def hard_delete_allowed(self, entity: Any, config: "SoftDeleteConfig") -> bool:
        value = getattr(entity, config.field_name)
        if value is None:
            return False

        entity_type = type(entity)
        dates = self.adapter.dates
        stored = dates.to_instant(entity_type, config.field_name, value)
        now = dates.to_instant(
            entity_type,
            config.field_name,
            dates.value_for(entity_type, config.field_name),
        )
        return stored <= now


def is_policy_class(candidate: Any) -> bool:
    """Whether a value is a concrete HardDeletePolicy subclass."""
    return (
        isinstance(candidate, type)
        and issubclass(candidate, HardDeletePolicy)
        and not getattr(candidate, "__abstractmethods__", None)
    )
