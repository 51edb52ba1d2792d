"""
SQLAlchemy mixins for soft delete functionality.

These mixins give mapped classes a deletion timestamp column that the cascade
engine stamps instead of physically deleting rows.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Select, select
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, Session, mapped_column


class SoftDeleteMixin:
    """
    Mixin to add soft delete functionality to SQLAlchemy models.

    Provides:
    - A ``deleted_at`` timestamp column with active history
    - An ``is_deleted`` hybrid usable in Python and in queries
    - Query helpers for live and deleted records

    Deleting an instance through ``session.delete()`` stamps ``deleted_at``
    once the soft delete listener is installed. Setting ``deleted_at`` back to
    None undeletes it.

    Usage:
        class MyModel(Base, SoftDeleteMixin):
            __tablename__ = 'my_table'
            __soft_delete_cascade__ = ["children"]
            id = Column(Integer, primary_key=True)
            children = relationship("Child")
    """

    __soft_delete__ = {}
    __soft_delete_cascade__ = []

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True, active_history=True
    )

    @hybrid_property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @is_deleted.inplace.expression
    @classmethod
    def _is_deleted_expression(cls) -> Any:
        return cls.deleted_at.is_not(None)

    def restore(self) -> None:
        """Undelete this record; the next flush cascades the undelete."""
        self.deleted_at = None

    @classmethod
    def select_active(cls) -> Select[Any]:
        """Select statement for live (non-deleted) records only."""
        return select(cls).where(cls.deleted_at.is_(None))

    @classmethod
    def select_deleted(cls) -> Select[Any]:
        """Select statement for soft deleted records only."""
        return select(cls).where(cls.deleted_at.is_not(None))

    @classmethod
    def query_active(cls, session: Session) -> List[Any]:
        """
        Return active (non-deleted) records.

        Args:
            session: SQLAlchemy session

        Returns:
            Records whose deletion timestamp is empty
        """
        return list(session.scalars(cls.select_active()))

    @classmethod
    def query_deleted(cls, session: Session) -> List[Any]:
        """
        Return soft deleted records.

        Args:
            session: SQLAlchemy session

        Returns:
            Records whose deletion timestamp is set
        """
        return list(session.scalars(cls.select_deleted()))

    @classmethod
    def query_all(cls, session: Session) -> List[Any]:
        """Return all records including deleted ones."""
        return list(session.scalars(select(cls)))

    def to_dict(self, include_deleted_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Args:
            include_deleted_fields: Whether to include the deletion timestamp

        Returns:
            Dictionary representation of the model
        """
        result: Dict[str, Any] = {}

        table = getattr(self, "__table__", None)
        if table is None:
            return result

        for column in table.columns:
            if hasattr(self, column.name):
                value = getattr(self, column.name)
                if isinstance(value, datetime):
                    value = value.isoformat()
                result[column.name] = value

        if not include_deleted_fields:
            result.pop("deleted_at", None)

        return result
