"""
Time helpers for partition keys.

Partition keys are either integers or timestamps. Internally every key is an
int: integers as-is, timestamps and dates as microseconds since the Unix
epoch (UTC). Intervals are calendar intervals (months, days, microseconds)
so that "1 month" subtracts a calendar month, not 30 days.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Union


class PartitionType(str, Enum):
    """Supported partitioning column types."""

    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    DATE = "date"

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_RANGES


_INTEGER_RANGES = {
    PartitionType.SMALLINT: (-(2 ** 15), 2 ** 15 - 1),
    PartitionType.INTEGER: (-(2 ** 31), 2 ** 31 - 1),
    PartitionType.BIGINT: (-(2 ** 63), 2 ** 63 - 1),
}

# Internal sentinels for -infinity / +infinity on time types
TIME_NOBEGIN = -(2 ** 63)
TIME_NOEND = 2 ** 63 - 1

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
USECS_PER_SEC = 1_000_000
USECS_PER_MINUTE = 60 * USECS_PER_SEC
USECS_PER_HOUR = 60 * USECS_PER_MINUTE
USECS_PER_DAY = 24 * USECS_PER_HOUR


def integer_range(partition_type: PartitionType) -> tuple[int, int]:
    """Return (min, max) for an integer partition type."""
    return _INTEGER_RANGES[partition_type]


def time_min(partition_type: PartitionType) -> int:
    """Smallest internal value of the type (-infinity for time types)."""
    if partition_type.is_integer:
        return _INTEGER_RANGES[partition_type][0]
    return TIME_NOBEGIN


def time_noend_or_max(partition_type: PartitionType) -> int:
    """Largest internal value of the type (+infinity for time types)."""
    if partition_type.is_integer:
        return _INTEGER_RANGES[partition_type][1]
    return TIME_NOEND


# =============================================================================
# Interval
# =============================================================================


_UNIT_ALIASES = {
    "millennium": ("months", 12000), "millennia": ("months", 12000),
    "century": ("months", 1200), "centuries": ("months", 1200),
    "decade": ("months", 120), "decades": ("months", 120),
    "year": ("months", 12), "years": ("months", 12), "yr": ("months", 12),
    "yrs": ("months", 12), "y": ("months", 12),
    "month": ("months", 1), "months": ("months", 1), "mon": ("months", 1),
    "mons": ("months", 1),
    "week": ("days", 7), "weeks": ("days", 7), "w": ("days", 7),
    "day": ("days", 1), "days": ("days", 1), "d": ("days", 1),
    "hour": ("microseconds", USECS_PER_HOUR), "hours": ("microseconds", USECS_PER_HOUR),
    "hr": ("microseconds", USECS_PER_HOUR), "hrs": ("microseconds", USECS_PER_HOUR),
    "h": ("microseconds", USECS_PER_HOUR),
    "minute": ("microseconds", USECS_PER_MINUTE), "minutes": ("microseconds", USECS_PER_MINUTE),
    "min": ("microseconds", USECS_PER_MINUTE), "mins": ("microseconds", USECS_PER_MINUTE),
    "m": ("microseconds", USECS_PER_MINUTE),
    "second": ("microseconds", USECS_PER_SEC), "seconds": ("microseconds", USECS_PER_SEC),
    "sec": ("microseconds", USECS_PER_SEC), "secs": ("microseconds", USECS_PER_SEC),
    "s": ("microseconds", USECS_PER_SEC),
    "millisecond": ("microseconds", 1000), "milliseconds": ("microseconds", 1000),
    "ms": ("microseconds", 1000), "msec": ("microseconds", 1000),
    "msecs": ("microseconds", 1000),
    "microsecond": ("microseconds", 1), "microseconds": ("microseconds", 1),
    "us": ("microseconds", 1), "usec": ("microseconds", 1), "usecs": ("microseconds", 1),
}

_CLOCK_RE = re.compile(r"^([+-]?)(\d+):(\d{1,2})(?::(\d{1,2})(?:\.(\d{1,6}))?)?$")
_ISO_RE = re.compile(
    r"^([+-]?)P(?:(\d+(?:\.\d+)?)Y)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)W)?"
    r"(?:(\d+(?:\.\d+)?)D)?(?:T(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?"
    r"(?:(\d+(?:\.\d+)?)S)?)?$"
)
_TOKEN_RE = re.compile(r"([+-]?\d+(?:\.\d+)?)\s*([a-zA-Z]+)")


@dataclass(frozen=True)
class Interval:
    """
    Calendar interval with the same three fields a database interval has.

    Arithmetic against timestamps applies months first, then days,
    then the sub-day part.
    """

    months: int = 0
    days: int = 0
    microseconds: int = 0

    @classmethod
    def from_timedelta(cls, delta: timedelta) -> "Interval":
        return cls(
            days=delta.days,
            microseconds=delta.seconds * USECS_PER_SEC + delta.microseconds,
        )

    @classmethod
    def parse(cls, text: str) -> "Interval":
        """
        Parse an interval string.

        Accepts database style ("7 days", "1 hour 30 mins", "1 day 02:00:00",
        "3 days ago") and ISO-8601 durations ("P7D", "PT1H30M").

        Raises:
            ValueError: If the text is not a recognizable interval
        """
        raw = text.strip()
        if not raw:
            raise ValueError("empty interval")

        iso = _ISO_RE.match(raw.upper())
        if iso and raw.upper().lstrip("+-") not in ("P", "PT"):
            return cls._from_iso_match(iso)

        negate = False
        body = raw.lower()
        if body.endswith(" ago"):
            negate = True
            body = body[: -len(" ago")]

        months = 0
        days = 0
        usecs = 0
        consumed = False
        remainder = body

        for match in _TOKEN_RE.finditer(body):
            number, unit = match.groups()
            if unit not in _UNIT_ALIASES:
                raise ValueError(f"invalid interval unit: {unit!r}")
            field_name, factor = _UNIT_ALIASES[unit]
            amount = float(number) * factor
            if field_name == "months":
                months += int(amount)
                # fractional months spill into days, as the database does
                days += int(round((amount - int(amount)) * 30))
            elif field_name == "days":
                days += int(amount)
                usecs += int(round((amount - int(amount)) * USECS_PER_DAY))
            else:
                usecs += int(round(amount))
            consumed = True
            remainder = remainder.replace(match.group(0), " ", 1)

        for token in remainder.split():
            clock = _CLOCK_RE.match(token)
            if clock is None:
                raise ValueError(f"invalid interval: {text!r}")
            usecs += _clock_to_usecs(clock)
            consumed = True

        if not consumed:
            raise ValueError(f"invalid interval: {text!r}")

        result = cls(months=months, days=days, microseconds=usecs)
        return -result if negate else result

    @classmethod
    def _from_iso_match(cls, match: re.Match) -> "Interval":
        sign, years, months, weeks, days, hours, minutes, seconds = match.groups()
        factor = -1 if sign == "-" else 1

        def num(value):
            return float(value) if value else 0.0

        total_months = num(years) * 12 + num(months)
        total_days = num(weeks) * 7 + num(days)
        total_usecs = (
            num(hours) * USECS_PER_HOUR
            + num(minutes) * USECS_PER_MINUTE
            + num(seconds) * USECS_PER_SEC
        )
        return cls(
            months=factor * int(total_months),
            days=factor * int(total_days),
            microseconds=factor * int(round(total_usecs)),
        )

    def __neg__(self) -> "Interval":
        return Interval(-self.months, -self.days, -self.microseconds)

    def __bool__(self) -> bool:
        return bool(self.months or self.days or self.microseconds)

    def add_to(self, value: datetime) -> datetime:
        """Return value + self with calendar month arithmetic."""
        result = _add_months(value, self.months)
        return result + timedelta(days=self.days, microseconds=self.microseconds)

    def subtract_from(self, value: datetime) -> datetime:
        """Return value - self with calendar month arithmetic."""
        return (-self).add_to(value)

    def __str__(self) -> str:
        parts = []
        years, months = divmod(abs(self.months), 12)
        sign = "-" if self.months < 0 else ""
        if years:
            parts.append(f"{sign}{years} year{'s' if years != 1 else ''}")
        if months:
            parts.append(f"{sign}{months} mon{'s' if months != 1 else ''}")
        if self.days:
            parts.append(f"{self.days} day{'s' if abs(self.days) != 1 else ''}")
        if self.microseconds or not parts:
            usecs = abs(self.microseconds)
            hours, usecs = divmod(usecs, USECS_PER_HOUR)
            minutes, usecs = divmod(usecs, USECS_PER_MINUTE)
            seconds, usecs = divmod(usecs, USECS_PER_SEC)
            clock = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
            if usecs:
                clock += f".{usecs:06d}".rstrip("0")
            parts.append(("-" if self.microseconds < 0 else "") + clock)
        return " ".join(parts)


def _clock_to_usecs(match: re.Match) -> int:
    sign, hours, minutes, seconds, fraction = match.groups()
    total = int(hours) * USECS_PER_HOUR + int(minutes) * USECS_PER_MINUTE
    if seconds:
        total += int(seconds) * USECS_PER_SEC
    if fraction:
        total += int(fraction.ljust(6, "0"))
    return -total if sign == "-" else total


def _add_months(value: datetime, months: int) -> datetime:
    if months == 0:
        return value
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# =============================================================================
# Internal representation
# =============================================================================


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def time_value_to_internal(
    value: Union[int, date, datetime],
    partition_type: PartitionType,
) -> int:
    """Convert a native partition key value to its internal int."""
    if partition_type.is_integer:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"expected int for {partition_type.value}, got {value!r}")
        return value

    if isinstance(value, datetime):
        moment = to_utc(value)
        if partition_type == PartitionType.DATE:
            moment = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    else:
        raise TypeError(f"expected datetime for {partition_type.value}, got {value!r}")

    delta = moment - EPOCH
    return (delta.days * USECS_PER_DAY) + (delta.seconds * USECS_PER_SEC) + delta.microseconds


def internal_to_datetime(value: int) -> datetime:
    """Convert an internal time value back to an aware UTC datetime."""
    return EPOCH + timedelta(microseconds=value)


def internal_to_time_string(value: int, partition_type: PartitionType) -> str:
    """Human readable rendering of an internal key value."""
    if partition_type.is_integer:
        return str(value)
    if value == TIME_NOBEGIN:
        return "-infinity"
    if value == TIME_NOEND:
        return "infinity"

    moment = internal_to_datetime(value)
    if partition_type == PartitionType.DATE:
        return moment.date().isoformat()
    if partition_type == PartitionType.TIMESTAMP:
        return moment.replace(tzinfo=None).isoformat(sep=" ")
    return moment.isoformat(sep=" ")
