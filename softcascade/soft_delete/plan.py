"""Buffered decisions of one flush, applied once the traversal succeeded."""

from typing import Any, Dict, List, Optional, Tuple

from .events import LifecycleNotifier, SoftDeleteEvent
from .models import Transition

_MISSING = object()


class FlushPlan:
    """
    Ordered record of the writes, reschedules and events decided for a flush.

    Nothing reaches the session until apply() runs. Planned writes are
    visible through planned_value() so later decisions in the same flush see
    them.
    """

    def __init__(self) -> None:
        self._writes: Dict[int, Dict[str, Tuple[Any, Any]]] = {}
        self._removals: Dict[int, Any] = {}
        self._keeps: Dict[int, Any] = {}
        self._steps: List[Tuple[Any, ...]] = []

    def __len__(self) -> int:
        return len(self._steps) + len(self._removals)

    def planned_value(self, obj: Any, field_name: str, default: Any = _MISSING) -> Any:
        """Planned new value of a field, or default when nothing is planned."""
        entry = self._writes.get(id(obj), {}).get(field_name)
        if entry is None:
            return default
        return entry[1]

    def planned_change(self, obj: Any, field_name: str) -> Optional[Tuple[Any, Any]]:
        """(old_value, new_value) of a planned write, if any."""
        return self._writes.get(id(obj), {}).get(field_name)

    def planned_changes(self, obj: Any) -> Dict[str, Tuple[Any, Any]]:
        return dict(self._writes.get(id(obj), {}))

    def write(self, obj: Any, field_name: str, old_value: Any, new_value: Any) -> None:
        writes = self._writes.setdefault(id(obj), {})
        if field_name in writes:
            # Keep the value seen before the first planned write
            old_value = writes[field_name][0]
        writes[field_name] = (old_value, new_value)
        self._steps.append(("write", obj, field_name, old_value, new_value))

    def remove(self, obj: Any) -> None:
        self._removals.setdefault(id(obj), obj)

    def keep(self, obj: Any) -> None:
        self._keeps[id(obj)] = obj
        self._steps.append(("keep", obj))

    def emit(self, event: SoftDeleteEvent, obj: Any, transition: Transition) -> None:
        self._steps.append(("emit", event, obj, transition))

    def is_kept(self, obj: Any) -> bool:
        return id(obj) in self._keeps

    def apply(self, adapter: Any, notifier: Optional[LifecycleNotifier] = None) -> None:
        """
        Replay the plan against the session.

        Removals go first so that ORM delete cascades triggered by them cannot
        undo a later keep.
        """
        for key, obj in self._removals.items():
            if key not in self._keeps:
                adapter.schedule_removal(obj)

        for step in self._steps:
            kind = step[0]
            if kind == "write":
                _, obj, field_name, old_value, new_value = step
                adapter.mark_field_changed(obj, field_name, old_value, new_value)
            elif kind == "keep":
                adapter.convert_delete_to_update(step[1])
            elif kind == "emit" and notifier is not None:
                _, event, obj, transition = step
                notifier.emit(event, obj, transition)
