"""
Configuration module for softcascade.

Provides process-level defaults for the soft delete engine. Per-entity
declarations on mapped classes override the defaults defined here.
"""

from typing import Any, Dict, Optional

from dateutil import tz
from pydantic import BaseModel, Field, field_validator


class SoftCascadeConfig(BaseModel):
    """Process-wide settings for cascading soft deletes.

    Values can be set programmatically, or loaded from environment variables
    using the ``SOFTCASCADE_`` prefix.

    Example:
        >>> config = SoftCascadeConfig(
        ...     default_field_name="removed_at",
        ...     max_cascade_depth=32,
        ... )

        Loading from environment:

        >>> import os
        >>> os.environ['SOFTCASCADE_CASCADE_UNDELETE_ENABLED'] = 'false'
        >>> config = SoftCascadeConfig.from_env()

    Environment Variables:
        - SOFTCASCADE_ENABLED
        - SOFTCASCADE_DEFAULT_FIELD_NAME
        - SOFTCASCADE_DEFAULT_TIME_AWARE
        - SOFTCASCADE_DEFAULT_HARD_DELETE
        - SOFTCASCADE_CASCADE_DELETE_ENABLED
        - SOFTCASCADE_CASCADE_UNDELETE_ENABLED
        - SOFTCASCADE_EMIT_LIFECYCLE_EVENTS
        - SOFTCASCADE_MAX_CASCADE_DEPTH
        - SOFTCASCADE_TIMEZONE

    Note:
        Declarations are cached by the registry once loaded. Changing the
        defaults after a registry has loaded a class has no effect on it.
    """

    enabled: bool = Field(True, description="Run the engine on every flush")

    # Declaration defaults
    default_field_name: str = Field(
        "deleted_at",
        description="Deletion timestamp attribute when a class does not name one",
        min_length=1,
    )
    default_time_aware: bool = Field(
        False, description="Keep sub-second precision of the undelete window"
    )
    default_hard_delete: bool = Field(
        True, description="Use the default hard delete policy when not declared"
    )

    # Cascades
    cascade_delete_enabled: bool = Field(
        True, description="Follow cascade-delete relationships"
    )
    cascade_undelete_enabled: bool = Field(
        True, description="Follow cascade-undelete relationships"
    )
    max_cascade_depth: int = Field(
        100, description="Deepest cascade level before aborting", gt=0, le=10000
    )

    # Events and reporting
    emit_lifecycle_events: bool = Field(
        True, description="Dispatch pre/post soft delete and undelete events"
    )
    report_session_key: str = Field(
        "softcascade.flush_report",
        description="Key in Session.info holding the last flush report",
    )

    # Timestamps
    timezone: str = Field(
        "UTC", description="Timezone used to read and write naive timestamps"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone name can be resolved."""
        if tz.gettz(v) is None:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("default_field_name")
    @classmethod
    def validate_field_name(cls, v: str) -> str:
        """Ensure the default field name is a valid attribute name."""
        if not v.isidentifier():
            raise ValueError(f"'{v}' is not a valid attribute name")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    def get_tzinfo(self) -> Any:
        """Return the tzinfo object for the configured timezone."""
        return tz.gettz(self.timezone)

    @classmethod
    def from_env(cls, prefix: str = "SOFTCASCADE_") -> "SoftCascadeConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var in os.environ:
                value = os.environ[env_var]

                field_type = field_info.annotation

                try:
                    if field_type == bool:
                        config_dict[field_name] = value.lower() in (
                            "true",
                            "1",
                            "yes",
                            "on",
                        )
                    elif field_type == int:
                        config_dict[field_name] = int(value)
                    else:
                        config_dict[field_name] = value
                except ValueError:
                    # Let model validation report the raw value
                    config_dict[field_name] = value

        return cls.model_validate(config_dict)


# Global configuration instance
_config: Optional[SoftCascadeConfig] = None


def get_config() -> SoftCascadeConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = SoftCascadeConfig.from_env()

    return _config


def set_config(config: Optional[SoftCascadeConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> SoftCascadeConfig:
    """
    Configure softcascade with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = SoftCascadeConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = SoftCascadeConfig(**config_dict)

    return _config
