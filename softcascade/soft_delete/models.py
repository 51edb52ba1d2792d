"""
Data models for soft delete operations.

These models describe the resolved per-entity configuration, the hard delete
rule attached to it, the value transitions handed to lifecycle listeners and
the summary produced for every flush.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HardDeleteKind(str, Enum):
    """Variants of the hard delete rule."""

    NEVER = "never"  # Always soft delete
    ALWAYS = "always"  # Always let the physical delete proceed
    POLICY = "policy"  # Ask a HardDeletePolicy subclass
    METHOD = "method"  # Ask a no-argument method on the entity


class HardDeleteRule(BaseModel):
    """Resolved hard delete rule of an entity type."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: HardDeleteKind = Field(..., description="Rule variant")
    policy: Optional[Any] = Field(
        None, description="HardDeletePolicy subclass for the POLICY variant"
    )
    method: Optional[str] = Field(
        None, description="Entity method name for the METHOD variant"
    )

    @model_validator(mode="after")
    def check_target(self) -> "HardDeleteRule":
        """Ensure each variant carries exactly the target it needs."""
        if self.kind == HardDeleteKind.POLICY and self.policy is None:
            raise ValueError("POLICY rule requires a policy class")
        if self.kind == HardDeleteKind.METHOD and not self.method:
            raise ValueError("METHOD rule requires a method name")
        return self

    @classmethod
    def never(cls) -> "HardDeleteRule":
        return cls(kind=HardDeleteKind.NEVER)

    @classmethod
    def always(cls) -> "HardDeleteRule":
        return cls(kind=HardDeleteKind.ALWAYS)

    @classmethod
    def for_policy(cls, policy: Any) -> "HardDeleteRule":
        return cls(kind=HardDeleteKind.POLICY, policy=policy)

    @classmethod
    def for_method(cls, method: str) -> "HardDeleteRule":
        return cls(kind=HardDeleteKind.METHOD, method=method)

    @property
    def enabled(self) -> bool:
        return self.kind != HardDeleteKind.NEVER

    def describe(self) -> str:
        """Short human readable form used by reports and the CLI."""
        if self.kind == HardDeleteKind.POLICY:
            return f"policy:{getattr(self.policy, '__name__', self.policy)}"
        if self.kind == HardDeleteKind.METHOD:
            return f"method:{self.method}"
        return self.kind.value


class SoftDeleteConfig(BaseModel):
    """Resolved soft delete configuration of one mapped class."""

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(..., description="Name of the mapped class")
    field_name: str = Field(..., description="Deletion timestamp attribute")
    time_aware: bool = Field(
        False, description="Keep sub-second precision of the undelete window"
    )
    hard_delete: HardDeleteRule = Field(
        default_factory=HardDeleteRule.never, description="Hard delete rule"
    )
    cascade_delete: FrozenSet[str] = Field(
        default_factory=frozenset, description="Relationships to cascade delete to"
    )
    cascade_undelete: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Relationships to cascade undelete to",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a plain, serializable dictionary."""
        return {
            "entity_type": self.entity_type,
            "field_name": self.field_name,
            "time_aware": self.time_aware,
            "hard_delete": self.hard_delete.describe(),
            "cascade_delete": sorted(self.cascade_delete),
            "cascade_undelete": sorted(self.cascade_undelete),
        }


@dataclass(frozen=True)
class Transition:
    """Value change of the deletion field seen by lifecycle listeners."""

    field_name: str
    old_value: Any
    new_value: Any

    @property
    def is_delete(self) -> bool:
        return self.old_value is None and self.new_value is not None

    @property
    def is_undelete(self) -> bool:
        return self.old_value is not None and self.new_value is None


class FlushReport(BaseModel):
    """Summary of the decisions taken during one flush."""

    flush_instant: datetime = Field(..., description="Reference instant of the flush")
    soft_deleted: int = Field(0, description="Objects stamped as deleted")
    hard_deleted: int = Field(0, description="Objects left to be physically deleted")
    undeleted: int = Field(0, description="Objects undeleted")
    cascade_cleared: int = Field(
        0, description="Descendants cleared inside an undelete window"
    )
    by_type: Dict[str, Dict[str, int]] = Field(
        default_factory=dict, description="Decision counts by entity type"
    )

    def add(self, entity_type: str, decision: str) -> None:
        """Count one decision for an entity type."""
        setattr(self, decision, getattr(self, decision) + 1)

        if entity_type not in self.by_type:
            self.by_type[entity_type] = {}
        counts = self.by_type[entity_type]
        counts[decision] = counts.get(decision, 0) + 1

    @property
    def total(self) -> int:
        return self.soft_deleted + self.hard_deleted + self.undeleted
