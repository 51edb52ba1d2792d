"""
Typed timestamp values for deletion fields.

Converts an instant into the value a deletion column expects, and reads stored
values back as comparable, timezone-aware UTC instants.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Type

from dateutil import tz
from sqlalchemy import Date, DateTime, Float, Integer, Numeric, inspect
from sqlalchemy.types import TypeEngine

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def column_type(entity_type: Type[Any], field_name: str) -> Optional[TypeEngine[Any]]:
    """Return the SQL type of a mapped column attribute, or None."""
    mapper = inspect(entity_type, raiseerr=False)
    if mapper is None or field_name not in mapper.column_attrs:
        return None
    return mapper.column_attrs[field_name].columns[0].type


def is_supported_type(sql_type: Optional[TypeEngine[Any]]) -> bool:
    """Whether a column type can hold a deletion timestamp."""
    return isinstance(sql_type, (DateTime, Date, Integer, Float, Numeric))


class DateAdapter:
    """
    Produces correctly typed deletion timestamps.

    Type rules:
    - Integer columns get a Unix timestamp in whole seconds
    - Float and Numeric columns get a Unix timestamp with microseconds
    - DateTime(timezone=True) columns get an aware UTC datetime
    - DateTime(timezone=False) columns get a naive datetime in the local zone
    - Date columns get a date in the local zone

    The clock supplies "now" when no instant is given. Inside a flush the
    listener binds it to the flush instant.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        local_tz: Any = None,
    ):
        self.clock = clock or utcnow
        self.local_tz = local_tz or tz.UTC

    def now(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        return self.as_utc(self.clock())

    def value_for(
        self,
        entity_type: Type[Any],
        field_name: str,
        instant: Optional[datetime] = None,
    ) -> Any:
        """
        Build the value to store in a deletion field.

        Args:
            entity_type: Mapped class owning the field
            field_name: Deletion timestamp attribute
            instant: Source instant, or None for "now"

        Returns:
            Value matching the column type of the field
        """
        source = self.now() if instant is None else self.as_utc(instant)
        sql_type = column_type(entity_type, field_name)

        if isinstance(sql_type, Integer):
            return int((source - _EPOCH) // timedelta(seconds=1))
        # Float is not a Numeric subclass on every SQLAlchemy release
        if isinstance(sql_type, (Float, Numeric)):
            micros = (source - _EPOCH) // timedelta(microseconds=1)
            if isinstance(sql_type, Float) or not sql_type.asdecimal:
                return micros / 1_000_000
            return Decimal(micros).scaleb(-6)
        if isinstance(sql_type, DateTime):
            if sql_type.timezone:
                return source
            return source.astimezone(self.local_tz).replace(tzinfo=None)
        if isinstance(sql_type, Date):
            return source.astimezone(self.local_tz).date()

        # Unmapped attribute: keep the aware instant
        return source

    def to_instant(
        self,
        entity_type: Type[Any],
        field_name: str,
        value: Any,
        time_aware: bool = True,
    ) -> Optional[datetime]:
        """
        Normalize a stored deletion value to an aware UTC datetime.

        Args:
            entity_type: Mapped class owning the field
            field_name: Deletion timestamp attribute
            value: Stored value (datetime, date, number or None)
            time_aware: Keep microseconds; otherwise truncate to whole seconds

        Returns:
            Normalized instant, or None for an empty value
        """
        if value is None:
            return None

        if isinstance(value, datetime):
            instant = self.as_utc(value)
        elif isinstance(value, date):
            instant = self.as_utc(datetime.combine(value, time.min))
        elif isinstance(value, (int, float, Decimal)):
            instant = _EPOCH + timedelta(microseconds=round(Decimal(value) * 1_000_000))
        else:
            raise TypeError(
                f"Unsupported deletion value {value!r} on "
                f"{entity_type.__name__}.{field_name}"
            )

        if not time_aware:
            instant = instant.replace(microsecond=0)
        return instant

    def as_utc(self, value: datetime) -> datetime:
        """Aware UTC form of a datetime; naive values are read in the local zone."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.local_tz)
        return value.astimezone(timezone.utc)
