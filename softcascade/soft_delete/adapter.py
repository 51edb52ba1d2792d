"""
SQLAlchemy session adapter for the cascade engine.

Exposes the parts of a Session's unit of work the engine needs during
``before_flush``: scheduled deletions and updates, attribute change sets,
and the primitives to reschedule objects.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from .dates import DateAdapter
from .exceptions import AssociationResolutionError


class SessionAdapter:
    """
    Persistence context backed by a SQLAlchemy Session.

    Change sets come from attribute history. Deletion columns carry active
    history (the SoftDeleteMixin maps it, the registry turns it on for
    custom columns), so their pre-flush value is known even after expiry.
    """

    def __init__(self, session: Session, dates: Optional[DateAdapter] = None):
        self.session = session
        self.dates = dates or DateAdapter()

    def scheduled_deletions(self) -> List[Any]:
        """Objects marked for deletion in the pending flush."""
        return list(self.session.deleted)

    def scheduled_updates(self) -> List[Any]:
        """Persistent objects with pending attribute changes."""
        return [
            obj
            for obj in self.session.dirty
            if self.session.is_modified(obj, include_collections=False)
        ]

    def change_set_for(self, obj: Any) -> Dict[str, Tuple[Any, Any]]:
        """
        Changed column attributes of an object.

        Returns:
            Mapping of attribute name to (old_value, new_value)
        """
        state = inspect(obj)
        changes: Dict[str, Tuple[Any, Any]] = {}

        for attr in state.mapper.column_attrs:
            history = state.attrs[attr.key].history
            if not history.has_changes():
                continue
            old_value = history.deleted[0] if history.deleted else None
            new_value = history.added[0] if history.added else None
            changes[attr.key] = (old_value, new_value)

        return changes

    def mark_field_changed(
        self, obj: Any, field_name: str, old_value: Any, new_value: Any
    ) -> None:
        """Write a new value to a column attribute so the flush persists it."""
        # Attribute instrumentation records old_value in the history
        setattr(obj, field_name, new_value)

    def convert_delete_to_update(self, obj: Any) -> None:
        """Take an object off the deletion list and keep it persistent."""
        if obj in self.session.deleted:
            self.session.add(obj)

    def schedule_removal(self, obj: Any) -> None:
        """Mark an object for deletion if it is not already marked."""
        if obj not in self.session.deleted:
            self.session.delete(obj)

    def related_objects(self, obj: Any, field_name: str) -> Iterable[Any]:
        """
        Objects referenced by a relationship of an entity.

        Returns:
            List of related objects; empty when the relationship is unset
        """
        try:
            relationship = inspect(type(obj)).relationships[field_name]
            value = getattr(obj, field_name)

            if value is None:
                return []
            if relationship.uselist:
                return [item for item in value if item is not None]
            return [value]
        except Exception as e:
            raise AssociationResolutionError(obj, field_name, e) from e
