"""
Session integration for cascading soft deletes.

Registers the cascade engine on SQLAlchemy's ``before_flush`` event so that
``session.delete()`` stamps soft deleteable objects and clearing a deletion
timestamp cascades the undelete.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Type

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..config import SoftCascadeConfig, get_config
from .adapter import SessionAdapter
from .dates import DateAdapter, utcnow
from .engine import CascadeEngine
from .events import LifecycleNotifier
from .mapping import SoftDeleteRegistry
from .models import FlushReport

logger = logging.getLogger(__name__)


class SoftDeleteListener:
    """
    Runs the cascade engine for every flush of the sessions it is installed on.

    Usage:
        listener = SoftDeleteListener()
        listener.install(SessionLocal)  # a sessionmaker, Session class or session

        @listener.notifier.listens_for(SoftDeleteEvent.POST_SOFT_DELETE)
        def on_deleted(target, transition):
            ...
    """

    def __init__(
        self,
        registry: Optional[SoftDeleteRegistry] = None,
        notifier: Optional[LifecycleNotifier] = None,
        settings: Optional[SoftCascadeConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or (registry.settings if registry else get_config())
        self.registry = registry or SoftDeleteRegistry(self.settings)
        self.notifier = notifier or LifecycleNotifier()
        self.clock = clock or utcnow

    def install(self, target: Any) -> "SoftDeleteListener":
        """
        Listen to flushes of a Session class, sessionmaker or session.

        Args:
            target: Event target accepted by sqlalchemy.event.listen

        Returns:
            The listener, for chaining
        """
        if not event.contains(target, "before_flush", self.before_flush):
            event.listen(target, "before_flush", self.before_flush)
        return self

    def uninstall(self, target: Any) -> None:
        """Stop listening to flushes of a target."""
        if event.contains(target, "before_flush", self.before_flush):
            event.remove(target, "before_flush", self.before_flush)

    def before_flush(
        self, session: Session, flush_context: Any, instances: Optional[Any]
    ) -> None:
        """Event hook: decide and apply soft deletes for the pending flush."""
        if not self.settings.enabled:
            return

        engine = self.create_engine(session)
        report = engine.process_flush(engine.flush_instant)
        session.info[self.settings.report_session_key] = report

    def create_engine(self, session: Session) -> CascadeEngine:
        """Build an engine whose notion of now is frozen to one flush instant."""
        dates = DateAdapter(local_tz=self.settings.get_tzinfo())
        flush_instant = dates.as_utc(self.clock())
        dates.clock = lambda: flush_instant

        engine = CascadeEngine(
            self.registry,
            SessionAdapter(session, dates),
            self.notifier,
            self.settings,
        )
        engine.flush_instant = flush_instant
        return engine


def last_flush_report(
    session: Session, settings: Optional[SoftCascadeConfig] = None
) -> Optional[FlushReport]:
    """Report of the most recent flush processed on a session."""
    settings = settings or get_config()
    return session.info.get(settings.report_session_key)


def install_soft_delete(
    target: Any,
    base: Optional[Type[Any]] = None,
    settings: Optional[SoftCascadeConfig] = None,
    **options: Any,
) -> SoftDeleteListener:
    """
    Install a soft delete listener on a session target.

    Args:
        target: Session class, sessionmaker or session
        base: Declarative base whose classes are validated immediately
        settings: Process settings; defaults to get_config()
        **options: Extra keyword arguments for SoftDeleteListener

    Returns:
        The installed listener

    Raises:
        ConfigurationError: A declaration on the base's classes is invalid
    """
    listener = SoftDeleteListener(settings=settings, **options)
    if base is not None:
        loaded = listener.registry.load_all(base)
        logger.info(f"Soft delete enabled for {len(loaded)} entity types")
    return listener.install(target)
