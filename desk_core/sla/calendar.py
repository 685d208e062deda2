# desk_core/sla/calendar.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, FrozenSet, Iterable, List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

"""
Business calendar value types.

This module is PURE LOGIC + DATA.
- No Django imports
- Safe to import at startup
- A calendar is a weekly schedule of business-hour windows, a set of
  holiday dates and a timezone. All wall-clock values are policy-local.
"""

# ===============================================================
# WEEKDAYS
# ===============================================================
# Python convention: Monday == 0 ... Sunday == 6

WEEKDAYS: Tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

WEEKDAY_ALIASES: Dict[str, int] = {
    **{name: idx for idx, name in enumerate(WEEKDAYS)},
    **{name[:3]: idx for idx, name in enumerate(WEEKDAYS)},
}


def normalize_weekday(value) -> int:
    """
    Accepts 0-6, "monday", "Mon", " FRIDAY " and returns 0-6.
    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Unknown weekday: {value!r}")

    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Unknown weekday: {value!r}")

    key = str(value or "").strip().lower()
    if key.isdigit():
        return normalize_weekday(int(key))

    if key not in WEEKDAY_ALIASES:
        raise ValueError(f"Unknown weekday: {value!r}")
    return WEEKDAY_ALIASES[key]


# A window end of 00:00 closes at the following midnight; clients write it "24:00".
END_OF_DAY = time(0, 0)

_MIDNIGHT_END = ("24:00", "24:00:00")


def parse_time(value, *, end_of_day: bool = False) -> time:
    """
    Parse "HH:MM" / "HH:MM:SS" or pass a time through unchanged.
    With end_of_day=True, "24:00" is accepted and comes back as END_OF_DAY.
    """
    if isinstance(value, time):
        return value
    raw = str(value or "").strip()
    if end_of_day and raw in _MIDNIGHT_END:
        return END_OF_DAY
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


def day_offset(value: time, *, end: bool = False) -> int:
    """
    Seconds since local midnight; an END_OF_DAY end counts as 86400.
    """
    if end and value == END_OF_DAY:
        return 86400
    return value.hour * 3600 + value.minute * 60 + value.second


def format_time(value: time, *, end: bool = False) -> str:
    if end and value == END_OF_DAY:
        return "24:00"
    return value.strftime("%H:%M")


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or "").strip())
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}") from None


def load_timezone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name!r}") from None


# ===============================================================
# VALUE TYPES
# ===============================================================

@dataclass(frozen=True)
class BusinessWindow:
    weekday: int
    start: time
    end: time

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"Weekday out of range: {self.weekday}")
        if day_offset(self.end, end=True) <= day_offset(self.start):
            raise ValueError(
                f"Window end {format_time(self.end, end=True)} must be after start "
                f"{format_time(self.start)}."
            )

    @classmethod
    def parse(cls, weekday, start, end) -> "BusinessWindow":
        return cls(
            weekday=normalize_weekday(weekday),
            start=parse_time(start),
            end=parse_time(end, end_of_day=True),
        )


def merge_windows(windows: Iterable[BusinessWindow]) -> List[Tuple[time, time]]:
    """
    Union the (start, end) spans of one weekday so overlapping or touching
    windows are never counted twice. Result is sorted by start.
    """
    spans = sorted(
        ((w.start, w.end) for w in windows),
        key=lambda span: (day_offset(span[0]), day_offset(span[1], end=True)),
    )
    merged: List[Tuple[time, time]] = []

    for start, end in spans:
        if merged and day_offset(start) <= day_offset(merged[-1][1], end=True):
            prev_start, prev_end = merged[-1]
            if day_offset(end, end=True) > day_offset(prev_end, end=True):
                merged[-1] = (prev_start, end)
        else:
            merged.append((start, end))

    return merged



@dataclass(frozen=True)
class BusinessCalendar:
    """
    Weekly schedule + holiday exceptions in one timezone.

    enforce_business_hours=False turns every instant into an in-hours
    instant; the calculators then degrade to wall-clock arithmetic.
    """

    timezone: str = "UTC"
    windows: Tuple[BusinessWindow, ...] = ()
    holidays: FrozenSet[date] = frozenset()
    enforce_business_hours: bool = True

    _by_weekday: Dict[int, Tuple[Tuple[time, time], ...]] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        load_timezone(self.timezone)

        grouped: Dict[int, List[BusinessWindow]] = {}
        for window in self.windows:
            grouped.setdefault(window.weekday, []).append(window)

        object.__setattr__(
            self,
            "_by_weekday",
            {day: tuple(merge_windows(items)) for day, items in grouped.items()},
        )

    @property
    def tz(self) -> ZoneInfo:
        return load_timezone(self.timezone)

    @property
    def has_windows(self) -> bool:
        return bool(self._by_weekday)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def spans_for(self, day: date) -> Tuple[Tuple[time, time], ...]:
        """
        Merged business spans for a policy-local date; holidays have none.
        """
        if self.is_holiday(day):
            return ()
        return self._by_weekday.get(day.weekday(), ())

    @classmethod
    def build(
        cls,
        *,
        timezone: str = "UTC",
        windows: Iterable = (),
        holidays: Iterable = (),
        enforce_business_hours: bool = True,
    ) -> "BusinessCalendar":
        """
        Build from loosely-typed rows:
          windows:  BusinessWindow | (day, start, end) | {"day"|"weekday", "start", "end"}
          holidays: date | "YYYY-MM-DD" | {"date": ...}
        """
        parsed_windows: List[BusinessWindow] = []
        for w in windows:
            if isinstance(w, BusinessWindow):
                parsed_windows.append(w)
            elif isinstance(w, dict):
                day = w.get("weekday", w.get("day"))
                parsed_windows.append(BusinessWindow.parse(day, w.get("start"), w.get("end")))
            else:
                day, start, end = w
                parsed_windows.append(BusinessWindow.parse(day, start, end))

        parsed_holidays = set()
        for h in holidays:
            if isinstance(h, dict):
                h = h.get("date")
            parsed_holidays.add(parse_date(h))

        return cls(
            timezone=timezone or "UTC",
            windows=tuple(parsed_windows),
            holidays=frozenset(parsed_holidays),
            enforce_business_hours=bool(enforce_business_hours),
        )
