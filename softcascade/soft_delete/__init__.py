"""
Soft Delete Module - cascading logical deletion for SQLAlchemy.

Provides the mixin, declaration registry, cascade engine, hard delete policies
and lifecycle events that turn ``session.delete()`` into timestamped soft
deletes, and clearing the timestamp into cascaded undeletes.
"""

from .adapter import SessionAdapter
from .dates import DateAdapter
from .engine import CascadeEngine
from .events import LifecycleNotifier, SoftDeleteEvent
from .exceptions import (
    AssociationResolutionError,
    CascadeCycleError,
    ConfigurationError,
    HardDeletePolicyError,
    SoftDeleteError,
    TraversalError,
)
from .listener import SoftDeleteListener, install_soft_delete, last_flush_report
from .mapping import SoftDeleteRegistry, soft_deleteable
from .mixins import SoftDeleteMixin
from .models import (
    FlushReport,
    HardDeleteKind,
    HardDeleteRule,
    SoftDeleteConfig,
    Transition,
)
from .plan import FlushPlan
from .policies import HardDeleteExpired, HardDeletePolicy

__all__ = [
    # Declarations
    "SoftDeleteMixin",
    "soft_deleteable",
    "SoftDeleteRegistry",
    # Engine
    "CascadeEngine",
    "FlushPlan",
    "SessionAdapter",
    "DateAdapter",
    "SoftDeleteListener",
    "install_soft_delete",
    "last_flush_report",
    # Policies
    "HardDeletePolicy",
    "HardDeleteExpired",
    # Events
    "LifecycleNotifier",
    "SoftDeleteEvent",
    # Models
    "SoftDeleteConfig",
    "HardDeleteRule",
    "HardDeleteKind",
    "Transition",
    "FlushReport",
    # Exceptions
    "SoftDeleteError",
    "ConfigurationError",
    "TraversalError",
    "CascadeCycleError",
    "AssociationResolutionError",
    "HardDeletePolicyError",
]
