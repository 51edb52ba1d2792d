"""
Soft delete declarations on mapped classes.

Reads the ``__soft_delete__`` and ``__soft_delete_cascade__`` class attributes,
validates them against the SQLAlchemy mapper and caches the resolved
configuration per class.

Declaration example:

    class Order(Base, SoftDeleteMixin):
        __tablename__ = "orders"
        __soft_delete__ = {"time_aware": True, "hard_delete": False}
        __soft_delete_cascade__ = {
            "items": {"delete": True, "undelete": True},
            "notes": {"undelete": False},
        }

A plain list of relationship names cascades both delete and undelete.
"""

import importlib
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type

from sqlalchemy import event, inspect
from sqlalchemy.orm import Mapper

from ..config import SoftCascadeConfig, get_config
from .dates import column_type, is_supported_type
from .exceptions import ConfigurationError
from .models import HardDeleteKind, HardDeleteRule, SoftDeleteConfig
from .policies import HardDeleteExpired, HardDeletePolicy, is_policy_class

logger = logging.getLogger(__name__)

DECLARATION_ATTR = "__soft_delete__"
CASCADE_ATTR = "__soft_delete_cascade__"

_DECLARATION_KEYS = {"field_name", "time_aware", "hard_delete"}
_CASCADE_KEYS = {"delete", "undelete"}


def soft_deleteable(
    field_name: Optional[str] = None,
    time_aware: Optional[bool] = None,
    hard_delete: Any = None,
) -> Callable[[Type[Any]], Type[Any]]:
    """
    Class decorator declaring a mapped class soft deleteable.

    Args:
        field_name: Deletion timestamp attribute
        time_aware: Keep sub-second precision of the undelete window
        hard_delete: Hard delete rule (see SoftDeleteRegistry.resolve_hard_delete)

    Returns:
        Decorator that sets the declaration on the class
    """
    declaration: Dict[str, Any] = {}
    if field_name is not None:
        declaration["field_name"] = field_name
    if time_aware is not None:
        declaration["time_aware"] = time_aware
    if hard_delete is not None:
        declaration["hard_delete"] = hard_delete

    def decorate(cls: Type[Any]) -> Type[Any]:
        setattr(cls, DECLARATION_ATTR, declaration)
        return cls

    return decorate


def _keep_previous_value(target, value, oldvalue, initiator):
    """Set listener registered for its active_history flag only."""


def track_previous_value(entity_type: Type[Any], field_name: str) -> None:
    """
    Load the committed value of a deletion field before it is overwritten.

    Undelete detection needs the value the field had before the flush. An
    expired attribute set to None records no previous value unless the
    attribute has active history, which the mixin column declares and custom
    deletion columns get here.
    """
    attribute = getattr(entity_type, field_name)
    if not event.contains(attribute, "set", _keep_previous_value):
        event.listen(
            attribute, "set", _keep_previous_value, active_history=True, propagate=True
        )


@event.listens_for(Mapper, "mapper_configured")
def _track_declared_field(mapper: Mapper, class_: Type[Any]) -> None:
    declaration = getattr(class_, DECLARATION_ATTR, None)
    if not isinstance(declaration, Mapping):
        return

    # Declarations are validated when a registry loads the class
    field_name = declaration.get("field_name") or get_config().default_field_name
    if isinstance(field_name, str) and field_name in mapper.column_attrs:
        track_previous_value(class_, field_name)


class SoftDeleteRegistry:
    """
    Loads, validates and caches soft delete configuration per mapped class.

    Validation happens when a class is loaded, so a broken declaration fails
    before any flush touches it. Use load_all() to validate every mapped
    class of a declarative base up front.
    """

    def __init__(
        self,
        settings: Optional[SoftCascadeConfig] = None,
        default_policy: Type[HardDeletePolicy] = HardDeleteExpired,
    ):
        self.settings = settings or get_config()
        self.default_policy = default_policy
        self._configs: Dict[Type[Any], Optional[SoftDeleteConfig]] = {}

    def get(self, entity_type: Type[Any]) -> Optional[SoftDeleteConfig]:
        """
        Return the configuration of a class, loading it on first access.

        Args:
            entity_type: Mapped class

        Returns:
            Resolved configuration, or None if the class is not soft deleteable
        """
        if entity_type not in self._configs:
            self._configs[entity_type] = self.load(entity_type)
        return self._configs[entity_type]

    def load_all(self, base_class: Type[Any]) -> Dict[Type[Any], SoftDeleteConfig]:
        """
        Load and validate every mapped class of a declarative base.

        Args:
            base_class: Declarative base holding the mapper registry

        Returns:
            Configurations of all soft deleteable classes
        """
        loaded = {}
        for mapper in base_class.registry.mappers:
            config = self.get(mapper.class_)
            if config is not None:
                loaded[mapper.class_] = config

        for cycle in self.cascade_cycles():
            if len(set(cycle)) == 1:
                logger.debug(f"Self-referential cascade on {cycle[0]}")
                continue
            logger.warning(
                f"Cascade cycle between entity types: {' -> '.join(cycle)}"
            )

        return loaded

    def configured(self) -> Dict[Type[Any], SoftDeleteConfig]:
        """All loaded soft deleteable classes and their configuration."""
        return {cls: cfg for cls, cfg in self._configs.items() if cfg is not None}

    def clear(self) -> None:
        """Forget all cached configurations."""
        self._configs.clear()

    def load(self, entity_type: Type[Any]) -> Optional[SoftDeleteConfig]:
        """Build the configuration of a class without caching it."""
        declaration = getattr(entity_type, DECLARATION_ATTR, None)
        if declaration is None:
            return None

        name = entity_type.__name__
        if not isinstance(declaration, Mapping):
            raise ConfigurationError(
                name,
                f"{DECLARATION_ATTR} must be a mapping, "
                f"got {type(declaration).__name__}",
            )

        unknown = set(declaration) - _DECLARATION_KEYS
        if unknown:
            raise ConfigurationError(
                name, f"unknown declaration keys: {', '.join(sorted(unknown))}"
            )

        mapper = inspect(entity_type, raiseerr=False)
        if mapper is None:
            raise ConfigurationError(name, "class is not mapped")

        field_name = declaration.get("field_name", self.settings.default_field_name)
        self._validate_field(entity_type, field_name)
        track_previous_value(entity_type, field_name)

        time_aware = declaration.get("time_aware", self.settings.default_time_aware)
        if not isinstance(time_aware, bool):
            raise ConfigurationError(
                name,
                f"time_aware must be boolean, {type(time_aware).__name__} provided",
            )

        hard_delete = self.resolve_hard_delete(
            entity_type,
            declaration.get("hard_delete", self.settings.default_hard_delete),
        )
        cascade_delete, cascade_undelete = self._read_cascades(entity_type)

        config = SoftDeleteConfig(
            entity_type=name,
            field_name=field_name,
            time_aware=time_aware,
            hard_delete=hard_delete,
            cascade_delete=cascade_delete,
            cascade_undelete=cascade_undelete,
        )
        logger.debug(f"Loaded soft delete configuration for {name}: {config.to_dict()}")
        return config

    def resolve_hard_delete(self, entity_type: Type[Any], value: Any) -> HardDeleteRule:
        """
        Turn a declared hard delete value into a rule.

        Accepted values:
        - True: the registry's default policy
        - False: never hard delete
        - HardDeleteKind.ALWAYS / HardDeleteKind.NEVER
        - a HardDeletePolicy subclass
        - the name of a no-argument method on the class
        - an import path "module:Class" or "module.Class" to a policy class
        """
        name = entity_type.__name__

        if isinstance(value, bool):
            if value:
                return HardDeleteRule.for_policy(self.default_policy)
            return HardDeleteRule.never()

        if isinstance(value, HardDeleteKind):
            if value == HardDeleteKind.ALWAYS:
                return HardDeleteRule.always()
            if value == HardDeleteKind.NEVER:
                return HardDeleteRule.never()
            raise ConfigurationError(
                name, f"hard_delete kind {value.value} needs a policy or method"
            )

        if isinstance(value, type):
            if not is_policy_class(value):
                raise ConfigurationError(
                    name,
                    f"{value.__name__} is not a concrete HardDeletePolicy "
                    "implementing hard_delete_allowed()",
                )
            return HardDeleteRule.for_policy(value)

        if isinstance(value, str) and value:
            if callable(getattr(entity_type, value, None)):
                return HardDeleteRule.for_method(value)
            if "." in value or ":" in value:
                return HardDeleteRule.for_policy(self._import_policy(name, value))
            raise ConfigurationError(
                name, f"hard_delete '{value}' is neither a method nor a policy path"
            )

        raise ConfigurationError(
            name,
            "hard_delete must be a boolean, a policy class, a method name "
            f"or an import path, {type(value).__name__} provided",
        )

    def cascade_cycles(self) -> List[List[str]]:
        """
        Find cycles between entity types in the loaded cascade declarations.

        Self-referential trees show up as single-type cycles. They are legal;
        only object-level cycles abort a flush.
        """
        graph: Dict[str, List[str]] = {}
        for entity_type, config in self.configured().items():
            mapper = inspect(entity_type)
            targets = set()
            for field in config.cascade_delete | config.cascade_undelete:
                targets.add(mapper.relationships[field].mapper.class_.__name__)
            graph[config.entity_type] = sorted(targets)

        cycles: List[List[str]] = []
        seen = set()
        for start in sorted(graph):
            stack: List[Tuple[str, List[str]]] = [(start, [start])]
            while stack:
                node, path = stack.pop()
                for target in graph.get(node, []):
                    if target == start:
                        key = frozenset(path)
                        if key not in seen:
                            seen.add(key)
                            cycles.append(path + [start])
                    elif target not in path and target > start:
                        stack.append((target, path + [target]))
        return cycles

    def _validate_field(self, entity_type: Type[Any], field_name: Any) -> None:
        name = entity_type.__name__
        if not isinstance(field_name, str) or not field_name:
            raise ConfigurationError(name, "field_name must be a non-empty string")

        sql_type = column_type(entity_type, field_name)
        if sql_type is None:
            raise ConfigurationError(
                name, f"field '{field_name}' is not a mapped column"
            )
        if not is_supported_type(sql_type):
            raise ConfigurationError(
                name,
                f"field '{field_name}' has type {sql_type!r}; expected a date, "
                "datetime, integer or numeric column",
            )

    def _read_cascades(
        self, entity_type: Type[Any]
    ) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        name = entity_type.__name__
        declared = getattr(entity_type, CASCADE_ATTR, None) or {}

        if isinstance(declared, (list, tuple, set, frozenset)):
            options: Dict[str, Any] = {field: {} for field in declared}
        elif isinstance(declared, Mapping):
            options = dict(declared)
        else:
            raise ConfigurationError(
                name,
                f"{CASCADE_ATTR} must be a list or a mapping, "
                f"got {type(declared).__name__}",
            )

        relationships = inspect(entity_type).relationships
        delete, undelete = set(), set()

        for field, option in options.items():
            if field not in relationships:
                raise ConfigurationError(
                    name, f"cannot cascade over '{field}': it is not a relationship"
                )
            if option is None:
                option = {}
            if not isinstance(option, Mapping):
                raise ConfigurationError(
                    name, f"cascade options of '{field}' must be a mapping"
                )
            unknown = set(option) - _CASCADE_KEYS
            if unknown:
                raise ConfigurationError(
                    name,
                    f"unknown cascade options on '{field}': "
                    f"{', '.join(sorted(unknown))}",
                )
            for key in _CASCADE_KEYS & set(option):
                if not isinstance(option[key], bool):
                    raise ConfigurationError(
                        name, f"cascade option '{key}' on '{field}' must be boolean"
                    )

            if option.get("delete", True):
                delete.add(field)
            if option.get("undelete", True):
                undelete.add(field)

        return frozenset(delete), frozenset(undelete)

    def _import_policy(self, name: str, path: str) -> Type[HardDeletePolicy]:
        if ":" in path:
            module_name, _, attr = path.partition(":")
        else:
            module_name, _, attr = path.rpartition(".")

        try:
            module = importlib.import_module(module_name)
            policy = getattr(module, attr)
        except (ImportError, AttributeError, ValueError) as e:
            raise ConfigurationError(
                name, f"cannot import hard delete policy '{path}': {e}"
            ) from e

        if not is_policy_class(policy):
            raise ConfigurationError(
                name, f"'{path}' is not a concrete HardDeletePolicy"
            )
        return policy
