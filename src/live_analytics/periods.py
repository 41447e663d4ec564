"""
Period and date resolution for live queries.

Live queries filter visits by their last action time. Callers describe the
window the way reports do, as a period kind ("day", "week", "month", "year",
"range") and a date expression ("2024-01-10", "today", "last7", ...). This
module turns that pair into concrete bounds:

- Calendar math happens in the site's local time
- Bounds are converted to UTC strings, the format timestamps are stored in
- "today" and "now" are shifted back one day, so a live window never shows
  a still-accumulating bucket
- Trailing windows ("now", "today", "yesterdaySameTime", "lastN",
  "previousN") and in-progress periods are left open at the top

The current time is always passed in, never read from a global clock.
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import InvalidPeriodError, InvalidTimezoneError

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

PERIOD_KINDS = ("day", "week", "month", "year", "range")

# Date values that never get an upper bound
OPEN_ENDED_DATES = ("now", "today", "yesterdaySameTime")
RELATIVE_MARKERS = ("last", "previous")

_UTC_OFFSET_RE = re.compile(r"^UTC(?:([+-]\d{1,2}(?:\.\d+)?))?$")
_RELATIVE_RE = re.compile(r"^(last|previous)(\d+)$")


@dataclass(frozen=True)
class Period:
    """
    Boundaries of a resolved period in naive site-local time.

    Attributes:
        kind: Period kind the boundaries were built for
        start: First moment covered by the period
        end: Midnight of the last day covered by the period
    """
    kind: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class TimeRange:
    """
    UTC bounds to compare against stored timestamps.

    Attributes:
        start_utc: Inclusive lower bound ("YYYY-MM-DD HH:MM:SS")
        end_utc: Inclusive upper bound, or None for an open-ended window
    """
    start_utc: str
    end_utc: str | None = None


def get_timezone(name: str | None) -> tzinfo:
    """Resolve a site timezone name.

    Accepts IANA names ("Europe/Paris"), "UTC" and fixed offsets such as
    "UTC+5.5" or "UTC-3".
    """
    if not name:
        return timezone.utc
    match = _UTC_OFFSET_RE.match(name)
    if match:
        hours = float(match.group(1) or 0)
        try:
            return timezone(timedelta(hours=hours))
        except ValueError:
            raise InvalidTimezoneError(f"Unknown timezone '{name}'") from None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTimezoneError(f"Unknown timezone '{name}'") from None


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    """Convert a moment (naive means UTC) to naive local wall time."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).replace(tzinfo=None)


def to_utc_string(local: datetime, tz: tzinfo) -> str:
    """Format naive local wall time as a UTC storage timestamp."""
    return local.replace(tzinfo=tz).astimezone(timezone.utc).strftime(DATETIME_FORMAT)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_date(expression: str, tz: tzinfo, now: datetime) -> tuple[datetime, bool]:
    """Resolve a single date expression to naive local time.

    Returns:
        Tuple of (moment, has_time). has_time is True when the expression
        pins a time of day ("now", "yesterdaySameTime", datetimes and unix
        timestamps) rather than a calendar day.

    Raises:
        InvalidPeriodError: If the expression is not a known keyword or format
    """
    local_now = to_local(now, tz).replace(microsecond=0)

    if expression == "now":
        return local_now, True
    if expression == "today":
        return _midnight(local_now), False
    if expression == "yesterday":
        return _midnight(local_now) - timedelta(days=1), False
    if expression == "yesterdaySameTime":
        return local_now - timedelta(days=1), True

    if expression and expression.isdigit():
        try:
            moment = datetime.fromtimestamp(int(expression), tz=timezone.utc)
            return to_local(moment, tz), True
        except (ValueError, OverflowError, OSError):
            raise InvalidPeriodError(f"Invalid date '{expression}'") from None

    for fmt, has_time in ((DATE_FORMAT, False), (DATETIME_FORMAT, True)):
        try:
            return datetime.strptime(expression, fmt), has_time
        except (TypeError, ValueError):
            continue

    raise InvalidPeriodError(f"Invalid date '{expression}'")


def build_period(kind: str, moment: datetime, has_time: bool = False) -> Period:
    """Build the calendar period of the given kind containing moment.

    A day built from a moment with a time of day starts at that moment,
    which is what makes "yesterdaySameTime" a trailing 24 hour window.
    """
    day = _midnight(moment)

    if kind == "day":
        return Period(kind, moment if has_time else day, day)
    if kind == "week":
        start = day - timedelta(days=day.weekday())
        return Period(kind, start, start + timedelta(days=6))
    if kind == "month":
        last_day = calendar.monthrange(day.year, day.month)[1]
        return Period(kind, day.replace(day=1), day.replace(day=last_day))
    if kind == "year":
        return Period(kind, day.replace(month=1, day=1), day.replace(month=12, day=31))

    raise InvalidPeriodError(f"Invalid period '{kind}'")


def build_relative_period(kind: str, expression: str, tz: tzinfo, now: datetime) -> Period | None:
    """Resolve "lastN" / "previousN" into one period spanning N periods.

    "lastN" ends with the period containing today, "previousN" with the one
    before it. Ranges count in days. Returns None for other expressions.
    """
    match = _RELATIVE_RE.match(expression or "")
    if not match:
        return None

    which, count = match.group(1), int(match.group(2))
    if count < 1:
        raise InvalidPeriodError(f"Invalid date '{expression}'")

    unit = "day" if kind == "range" else kind
    today, _ = parse_date("today", tz, now)

    try:
        last = build_period(unit, today)
        if which == "previous":
            last = build_period(unit, last.start - timedelta(days=1))

        if unit == "day":
            first = build_period(unit, last.start - timedelta(days=count - 1))
        else:
            first = last
            for _ in range(count - 1):
                first = build_period(unit, first.start - timedelta(days=1))
    except OverflowError:
        raise InvalidPeriodError(f"Invalid date '{expression}'") from None

    return Period(kind, first.start, last.end)


def parse_range(expression: str, tz: tzinfo, now: datetime) -> Period:
    """Parse an explicit "start,end" range (or "lastN" / "previousN")."""
    relative = build_relative_period("range", expression, tz, now)
    if relative is not None:
        return relative

    parts = (expression or "").split(",")
    if len(parts) != 2:
        raise InvalidPeriodError(f"Invalid date range '{expression}'")

    start, _ = parse_date(parts[0].strip(), tz, now)
    end, _ = parse_date(parts[1].strip(), tz, now)
    start, end = _midnight(start), _midnight(end)

    if end < start:
        raise InvalidPeriodError(f"Invalid date range '{expression}': end is before start")

    return Period("range", start, end)


def _is_open_ended(expression: str) -> bool:
    if expression in OPEN_ENDED_DATES:
        return True
    return any(marker in expression for marker in RELATIVE_MARKERS)


def resolve_time_range(period: str, date: str, timezone_name: str | None, now: datetime) -> TimeRange:
    """Resolve a period and date expression to UTC bounds for a site.

    Args:
        period: Period kind (day, week, month, year, range)
        date: Date expression (2024-01-10, today, yesterdaySameTime, last7, "a,b", ...)
        timezone_name: Site timezone
        now: Current moment (aware, or naive UTC)

    Returns:
        TimeRange whose end_utc is None when the window stays open

    Raises:
        InvalidPeriodError: If the period kind or date expression is invalid
        InvalidTimezoneError: If the timezone is unknown
    """
    if period not in PERIOD_KINDS:
        raise InvalidPeriodError(f"Invalid period '{period}'")

    tz = get_timezone(timezone_name)
    try:
        time_range = _resolve_bounds(period, date, tz, now)
    except OverflowError:
        # Dates at the edge of the calendar cannot be padded or converted
        raise InvalidPeriodError(f"Invalid date '{date}'") from None

    logger.debug(f"Resolved {period} '{date}' to {time_range}")
    return time_range


def _resolve_bounds(period: str, date: str, tz: tzinfo, now: datetime) -> TimeRange:
    today, _ = parse_date("today", tz, now)

    if period == "range":
        resolved = parse_range(date, tz, now)
        # Literal ranges bound the start only; the parsed end is not applied
        return TimeRange(start_utc=to_utc_string(resolved.start, tz))

    resolved = build_relative_period(period, date, tz, now)
    requested_day = None
    if resolved is None:
        moment, has_time = parse_date(date, tz, now)
        requested_day = moment.date()
        if date in ("today", "now") or requested_day == today.date():
            moment -= timedelta(days=1)
        resolved = build_period(period, moment, has_time)

    end_utc = None
    if (
        not _is_open_ended(date)
        and resolved.end.date() != today.date()
        and requested_day != today.date()
    ):
        end_utc = to_utc_string(resolved.end + timedelta(days=1), tz)

    return TimeRange(start_utc=to_utc_string(resolved.start, tz), end_utc=end_utc)
