"""
Cascade engine for soft deletes and undeletes.

Runs once per flush. Walks the objects scheduled for deletion, deciding for
each whether to stamp the deletion field or let the physical delete proceed,
then walks the objects scheduled for update to detect undeletes and cascade
them within the undelete window. Every decision is buffered in a FlushPlan
and applied only when the whole traversal succeeded.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Type

from ..config import SoftCascadeConfig
from .adapter import SessionAdapter
from .events import LifecycleNotifier, SoftDeleteEvent
from .exceptions import (
    CascadeCycleError,
    HardDeletePolicyError,
    SoftDeleteError,
    TraversalError,
    _describe,
)
from .mapping import SoftDeleteRegistry
from .models import FlushReport, HardDeleteKind, SoftDeleteConfig, Transition
from .plan import FlushPlan
from .policies import HardDeletePolicy

logger = logging.getLogger(__name__)

_UNSET = object()


class CascadeEngine:
    """
    Decides soft delete, hard delete and undelete for one flush.

    All timestamps written and all "now" comparisons made during the flush
    use the single flush instant fixed by begin().

    Usage:
        engine = CascadeEngine(registry, SessionAdapter(session), notifier)
        report = engine.process_flush()
    """

    def __init__(
        self,
        registry: SoftDeleteRegistry,
        adapter: SessionAdapter,
        notifier: Optional[LifecycleNotifier] = None,
        settings: Optional[SoftCascadeConfig] = None,
    ):
        self.registry = registry
        self.adapter = adapter
        self.notifier = notifier
        self.settings = settings or registry.settings

        self.flush_instant: Optional[datetime] = None
        self.plan = FlushPlan()
        self.report: Optional[FlushReport] = None

        self._policies: Dict[Type[HardDeletePolicy], HardDeletePolicy] = {}
        self._path: List[Any] = []
        self._on_path: Set[int] = set()
        self._deleted: Set[int] = set()
        self._undeleted: Set[int] = set()

    def begin(self, flush_instant: Optional[datetime] = None) -> FlushPlan:
        """Fix the flush instant and start an empty plan."""
        dates = self.adapter.dates
        self.flush_instant = dates.now() if flush_instant is None else dates.as_utc(
            flush_instant
        )
        self.plan = FlushPlan()
        self.report = FlushReport(flush_instant=self.flush_instant)
        self._policies.clear()
        self._path.clear()
        self._on_path.clear()
        self._deleted.clear()
        self._undeleted.clear()
        return self.plan

    def process_flush(self, flush_instant: Optional[datetime] = None) -> FlushReport:
        """
        Run the delete and undelete traversals for the pending flush.

        Args:
            flush_instant: Reference instant; defaults to the adapter's now

        Returns:
            Summary of the decisions applied to the session

        Raises:
            TraversalError: A cascade could not be completed
            HardDeletePolicyError: A hard delete decider failed
        """
        self.begin(flush_instant)

        try:
            for obj in self.adapter.scheduled_deletions():
                self.process_scheduled_deletion(obj)

            for obj in self.adapter.scheduled_updates():
                self.process_scheduled_update(obj)
        except TraversalError as e:
            logger.error(f"Soft delete cascade aborted, nothing applied: {e}")
            raise

        report = self.apply()
        if report.total:
            logger.info(
                f"Flush at {report.flush_instant.isoformat()}: "
                f"{report.soft_deleted} soft deleted, "
                f"{report.hard_deleted} hard deleted, "
                f"{report.undeleted} undeleted"
            )
        return report

    def apply(self) -> FlushReport:
        """Write the buffered plan to the session and dispatch its events."""
        notifier = self.notifier if self.settings.emit_lifecycle_events else None
        self.plan.apply(self.adapter, notifier)
        return self._require_report()

    def process_scheduled_deletion(self, obj: Any) -> None:
        """Handle one object the session is about to delete."""
        self.soft_delete(obj, cascade_level=0)

    def process_scheduled_update(self, obj: Any) -> None:
        """Handle one object the session is about to update."""
        self.handle_undelete(obj, undelete_start=None, cascade_level=0)

    def soft_delete(self, obj: Any, cascade_level: int = 0) -> None:
        """
        Decide the fate of an object being deleted and cascade to its children.

        Children are decided before the object itself, with the same flush
        instant, so a hard delete of the parent never skips them.
        """
        report = self._require_report()
        config = self.registry.get(type(obj))
        if config is None:
            return

        field_name = config.field_name
        old_value = self._current_value(obj, field_name)

        if cascade_level > 0 and old_value is not None:
            logger.debug(f"{_describe(obj)} already soft deleted, cascade stops")
            return

        self._check_cycle(obj)
        if id(obj) in self._deleted:
            return

        self._enter(obj, cascade_level)
        try:
            if self.settings.cascade_delete_enabled:
                for cascade_field in sorted(config.cascade_delete):
                    for related in self.adapter.related_objects(obj, cascade_field):
                        self.soft_delete(related, cascade_level + 1)
        finally:
            self._leave(obj)
        self._deleted.add(id(obj))

        self.plan.remove(obj)

        if self._hard_delete_allowed(obj, config):
            logger.debug(f"{_describe(obj)} hard deleted")
            report.add(config.entity_type, "hard_deleted")
            return

        stamp = self.adapter.dates.value_for(type(obj), field_name, self.flush_instant)
        transition = Transition(field_name, old_value, stamp)

        self.plan.emit(SoftDeleteEvent.PRE_SOFT_DELETE, obj, transition)
        self.plan.write(obj, field_name, old_value, stamp)
        self.plan.keep(obj)
        self.plan.emit(SoftDeleteEvent.POST_SOFT_DELETE, obj, transition)

        logger.debug(f"{_describe(obj)} soft deleted at level {cascade_level}")
        report.add(config.entity_type, "soft_deleted")

    def handle_undelete(
        self,
        obj: Any,
        undelete_start: Optional[datetime] = None,
        cascade_level: int = 0,
    ) -> None:
        """
        Detect an undelete on an object and cascade it inside the window.

        Descendants are cleared only when they were soft deleted within
        [undelete_start, flush_instant), i.e. together with the root of the
        cascade and not independently before it.
        """
        report = self._require_report()
        config = self.registry.get(type(obj))
        if config is None:
            return

        entity_type = type(obj)
        field_name = config.field_name
        dates = self.adapter.dates
        current_value = self._current_value(obj, field_name)

        if (
            cascade_level > 0
            and current_value is not None
            and undelete_start is not None
        ):
            deleted_at = dates.to_instant(entity_type, field_name, current_value)
            if undelete_start <= deleted_at < self.flush_instant:
                self.plan.write(obj, field_name, current_value, None)
                logger.debug(f"{_describe(obj)} cleared by cascade undelete")
                report.add(config.entity_type, "cascade_cleared")
                current_value = None

        change_set = self._change_set(obj)
        if field_name not in change_set:
            return

        old_value = change_set[field_name][0]
        if old_value is None or current_value is not None:
            return

        # Includes objects on the current path
        if id(obj) in self._undeleted:
            return
        self._undeleted.add(id(obj))

        transition = Transition(field_name, old_value, None)
        self.plan.emit(SoftDeleteEvent.PRE_SOFT_UNDELETE, obj, transition)

        if config.cascade_undelete and self.settings.cascade_undelete_enabled:
            if cascade_level == 0:
                undelete_start = dates.to_instant(
                    entity_type, field_name, old_value, config.time_aware
                )

            self._enter(obj, cascade_level)
            try:
                for cascade_field in sorted(config.cascade_undelete):
                    for related in self.adapter.related_objects(obj, cascade_field):
                        self.handle_undelete(related, undelete_start, cascade_level + 1)
            finally:
                self._leave(obj)

        self.plan.emit(SoftDeleteEvent.POST_SOFT_UNDELETE, obj, transition)

        logger.debug(f"{_describe(obj)} undeleted at level {cascade_level}")
        report.add(config.entity_type, "undeleted")

    def _hard_delete_allowed(self, obj: Any, config: SoftDeleteConfig) -> bool:
        rule = config.hard_delete
        if rule.kind == HardDeleteKind.NEVER:
            return False
        if rule.kind == HardDeleteKind.ALWAYS:
            return True

        try:
            if rule.kind == HardDeleteKind.METHOD:
                return bool(getattr(obj, rule.method)())
            return bool(self._policy(rule.policy).hard_delete_allowed(obj, config))
        except SoftDeleteError:
            raise
        except Exception as e:
            raise HardDeletePolicyError(obj, e) from e

    def _policy(self, policy_class: Type[HardDeletePolicy]) -> HardDeletePolicy:
        if policy_class not in self._policies:
            self._policies[policy_class] = policy_class(self.adapter)
        return self._policies[policy_class]

    def _current_value(self, obj: Any, field_name: str) -> Any:
        value = self.plan.planned_value(obj, field_name, _UNSET)
        if value is _UNSET:
            return getattr(obj, field_name)
        return value

    def _change_set(self, obj: Any) -> Dict[str, Any]:
        changes = self.adapter.change_set_for(obj)
        for field_name, (old_value, new_value) in self.plan.planned_changes(obj).items():
            if field_name in changes:
                old_value = changes[field_name][0]
            changes[field_name] = (old_value, new_value)
        return changes

    def _check_cycle(self, obj: Any) -> None:
        if id(obj) in self._on_path:
            raise CascadeCycleError(self._path + [obj])

    def _enter(self, obj: Any, cascade_level: int) -> None:
        if cascade_level >= self.settings.max_cascade_depth:
            raise TraversalError(
                f"Cascade deeper than {self.settings.max_cascade_depth} levels "
                f"at {_describe(obj)}",
                entity_id=str(getattr(obj, "id", "unknown")),
            )
        self._path.append(obj)
        self._on_path.add(id(obj))

    def _leave(self, obj: Any) -> None:
        self._path.pop()
        self._on_path.discard(id(obj))

    def _require_report(self) -> FlushReport:
        if self.report is None:
            raise SoftDeleteError("CascadeEngine.begin() must be called first")
        return self.report
