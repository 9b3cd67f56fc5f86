import re
from datetime import datetime, timedelta, timezone
from typing import Literal

from hitport.casters.base_caster import CasterBase, CastError

# RFC 3339: date, "T", time with optional fraction, then "Z" or a numeric offset.
_RFC3339_RE = re.compile(
    r"(?P<year>[0-9]{4})-(?P<month>[0-9]{2})-(?P<day>[0-9]{2})"
    r"T(?P<hour>[0-9]{2}):(?P<minute>[0-9]{2}):(?P<second>[0-9]{2})(?P<fraction>\.[0-9]+)?"
    r"(?P<offset>Z|[+-][0-9]{2}:[0-9]{2})"
)


def _parse_offset(offset: str) -> timezone:
    if offset == "Z":
        return timezone.utc
    sign = -1 if offset[0] == "-" else 1
    hours, minutes = int(offset[1:3]), int(offset[4:6])
    if hours > 23 or minutes > 59:
        raise ValueError(f"offset out of range: {offset}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    stamp = value.strftime("%Y-%m-%dT%H:%M:%S")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return stamp + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    total_minutes = abs(int(offset.total_seconds())) // 60
    return f"{stamp}{sign}{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def parse_rfc3339(raw: str) -> datetime:
    match = _RFC3339_RE.fullmatch(raw)
    if not match:
        raise ValueError(f"not an RFC 3339 timestamp: {raw!r}")

    fraction = match.group("fraction")
    microsecond = int((fraction[1:] + "000000")[:6]) if fraction else 0
    return datetime(
        int(match.group("year")),
        int(match.group("month")),
        int(match.group("day")),
        int(match.group("hour")),
        int(match.group("minute")),
        int(match.group("second")),
        microsecond,
        tzinfo=_parse_offset(match.group("offset")),
    )


class DateTimeCaster(CasterBase):
    """
    Timestamps on the wire are RFC 3339 with second precision. Anything below
    a second is dropped on encode; decode tolerates a fraction.
    """
    output_type: Literal["datetime"] = "datetime"

    def encode(self, value: datetime) -> str:
        return format_rfc3339(value)

    def decode(self, raw: str) -> datetime:
        try:
            return parse_rfc3339(raw)
        except ValueError:
            raise CastError("must be a date in the format 2006-01-02T15:04:05Z07:00")
