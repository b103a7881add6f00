"""
Timeline markers and the time -> x scale.

The distinct milestone deadlines form the timeline markers. They define the
domain of a linear time scale over the content width (rounded outward to
calendar boundaries) and the discrete snap points a dragged milestone lands
on.
"""

import bisect
import calendar
import math
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .models import Milestone

_EPOCH = datetime(1970, 1, 1)

_SECOND = 1.0
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_WEEK = 7 * _DAY
_MONTH = 30 * _DAY
_YEAR = 365 * _DAY

# (unit, step, approximate duration in seconds), ascending by duration
_TICK_INTERVALS: List[Tuple[str, int, float]] = [
    ("second", 1, _SECOND),
    ("second", 5, 5 * _SECOND),
    ("second", 15, 15 * _SECOND),
    ("second", 30, 30 * _SECOND),
    ("minute", 1, _MINUTE),
    ("minute", 5, 5 * _MINUTE),
    ("minute", 15, 15 * _MINUTE),
    ("minute", 30, 30 * _MINUTE),
    ("hour", 1, _HOUR),
    ("hour", 3, 3 * _HOUR),
    ("hour", 6, 6 * _HOUR),
    ("hour", 12, 12 * _HOUR),
    ("day", 1, _DAY),
    ("day", 2, 2 * _DAY),
    ("week", 1, _WEEK),
    ("month", 1, _MONTH),
    ("month", 3, 3 * _MONTH),
    ("year", 1, _YEAR),
]
_DURATIONS = [interval[2] for interval in _TICK_INTERVALS]

DateLike = Union[date, datetime]


def _to_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)


def _seconds(value: datetime) -> float:
    return (value - _EPOCH).total_seconds()


def _tick_step(start: float, stop: float, count: int) -> float:
    step0 = abs(stop - start) / max(1, count)
    step1 = 10 ** math.floor(math.log10(step0)) if step0 > 0 else 1.0
    error = step0 / step1
    if error >= math.sqrt(50):
        step1 *= 10
    elif error >= math.sqrt(10):
        step1 *= 5
    elif error >= math.sqrt(2):
        step1 *= 2
    return step1


def _tick_interval(start: datetime, stop: datetime, count: int) -> Tuple[str, int]:
    """Pick the calendar interval giving roughly ``count`` ticks."""
    target = abs(_seconds(stop) - _seconds(start)) / count
    i = bisect.bisect_right(_DURATIONS, target)
    if i == len(_TICK_INTERVALS):
        step = _tick_step(_seconds(start) / _YEAR, _seconds(stop) / _YEAR, count)
        return "year", max(1, int(round(step)))
    if i == 0:
        return "second", 1
    unit, step, _ = _TICK_INTERVALS[
        i - 1 if target / _DURATIONS[i - 1] < _DURATIONS[i] / target else i
    ]
    return unit, step


def _add_months(value: datetime, months: int) -> datetime:
    total = value.year * 12 + value.month - 1 + months
    year, month = divmod(total, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


def _floor(value: datetime, unit: str, step: int) -> datetime:
    if unit == "second":
        return value.replace(second=value.second - value.second % step, microsecond=0)
    if unit == "minute":
        return value.replace(minute=value.minute - value.minute % step, second=0, microsecond=0)
    if unit == "hour":
        return value.replace(
            hour=value.hour - value.hour % step, minute=0, second=0, microsecond=0
        )
    midnight = value.replace(hour=0, minute=0, second=0, microsecond=0)
    if unit == "day":
        return midnight.replace(day=value.day - (value.day - 1) % step)
    if unit == "week":
        # Weeks start on Sunday
        return midnight - timedelta(days=(value.weekday() + 1) % 7)
    if unit == "month":
        return midnight.replace(month=value.month - (value.month - 1) % step, day=1)
    return midnight.replace(year=value.year - value.year % step, month=1, day=1)


def _offset(value: datetime, unit: str, step: int) -> datetime:
    if unit == "month":
        return _add_months(value, step)
    if unit == "year":
        return value.replace(year=value.year + step)
    seconds = {"second": _SECOND, "minute": _MINUTE, "hour": _HOUR, "day": _DAY, "week": _WEEK}
    return value + timedelta(seconds=seconds[unit] * step)


def _ceil(value: datetime, unit: str, step: int) -> datetime:
    floored = _floor(value, unit, step)
    if floored == value:
        return floored
    return _floor(_offset(floored, unit, step), unit, step)


class TimeScale:
    """
    Linear mapping from datetimes onto a pixel range.

    Attributes:
        start: Domain start (maps to ``range_start``).
        end: Domain end (maps to ``range_end``).
    """

    def __init__(
        self,
        start: DateLike,
        end: DateLike,
        range_start: float = 0.0,
        range_end: float = 1.0,
    ):
        self.start = _to_datetime(start)
        self.end = _to_datetime(end)
        self.range_start = range_start
        self.range_end = range_end

    @classmethod
    def niced(
        cls, start: DateLike, end: DateLike, width: float, count: int = 10
    ) -> "TimeScale":
        """Build a scale whose domain is extended to round calendar boundaries."""
        lo, hi = sorted((_to_datetime(start), _to_datetime(end)))
        unit, step = _tick_interval(lo, hi, count)
        return cls(_floor(lo, unit, step), _ceil(hi, unit, step), 0.0, width)

    @property
    def domain(self) -> Tuple[datetime, datetime]:
        return self.start, self.end

    def __call__(self, value: DateLike) -> float:
        span = _seconds(self.end) - _seconds(self.start)
        if span == 0:
            return (self.range_start + self.range_end) / 2
        t = (_seconds(_to_datetime(value)) - _seconds(self.start)) / span
        return self.range_start + t * (self.range_end - self.range_start)

    def invert(self, x: float) -> datetime:
        """Return the datetime that maps to pixel ``x``."""
        width = self.range_end - self.range_start
        if width == 0:
            return self.start
        t = (x - self.range_start) / width
        return self.start + (self.end - self.start) * t


def placeholder_markers(today: Optional[date] = None) -> List[date]:
    """Three evenly spaced dates (today, +1 month, +2 months)."""
    today = today or date.today()
    base = _to_datetime(today)
    return [today, _add_months(base, 1).date(), _add_months(base, 2).date()]


class TimelineIndex:
    """
    Sorted distinct deadline dates and the scale built over them.

    Example:
        >>> index = TimelineIndex([date(2025, 3, 1), date(2025, 4, 1)], 800)
        >>> index.nearest_marker(index.marker_x(date(2025, 4, 1)) - 3)
        datetime.date(2025, 4, 1)
    """

    def __init__(self, markers: Iterable[date], content_width: float, tick_count: int = 10):
        self._markers: List[date] = sorted(set(markers))
        if not self._markers:
            raise ValueError("TimelineIndex needs at least one marker")

        first, last = self._markers[0], self._markers[-1]
        if first == last:
            first -= timedelta(days=1)
            last += timedelta(days=1)
        self.scale = TimeScale.niced(first, last, content_width, tick_count)

    @classmethod
    def from_milestones(
        cls,
        milestones: Sequence[Milestone],
        content_width: float,
        tick_count: int = 10,
        today: Optional[date] = None,
    ) -> "TimelineIndex":
        """Collect deadlines, falling back to placeholder dates when none exist."""
        deadlines = [m.deadline for m in milestones if m.deadline is not None]
        return cls(deadlines or placeholder_markers(today), content_width, tick_count)

    @property
    def markers(self) -> List[date]:
        return list(self._markers)

    def marker_x(self, marker: date) -> float:
        return self.scale(marker)

    def x_for(self, deadline: Optional[date], undated_x: float) -> float:
        """x of a deadline, or ``undated_x`` when the milestone is undated."""
        if deadline is None:
            return undated_x
        return self.scale(deadline)

    def nearest_marker(self, x: float) -> date:
        """
        Marker whose scaled x is closest to ``x``.

        Ties resolve to the earliest marker in sorted order.
        """
        best = self._markers[0]
        best_distance = abs(self.scale(best) - x)
        for marker in self._markers[1:]:
            distance = abs(self.scale(marker) - x)
            if distance < best_distance:
                best, best_distance = marker, distance
        return best

    def snap(self, x: float) -> Tuple[date, float]:
        """Nearest marker and its scaled x."""
        marker = self.nearest_marker(x)
        return marker, self.scale(marker)
