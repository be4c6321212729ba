# domain.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import date, time, datetime, timedelta, timezone
from enum import Enum


class PunchType(str, Enum):
    """The four punches of a working day, in the order they are expected."""
    CLOCK_IN = "clock_in"
    LUNCH_OUT = "lunch_out"
    LUNCH_IN = "lunch_in"
    CLOCK_OUT = "clock_out"


@dataclass
class PunchLocation:
    latitude: float
    longitude: float
    accuracy: float
    recorded_at: datetime
    address: str | None = None


@dataclass
class DayPunchRecord:
    """One user's punches for one calendar date."""
    work_date: date
    clock_in: time | None = None
    lunch_out: time | None = None
    lunch_in: time | None = None
    clock_out: time | None = None
    notes: str | None = None
    total_hours: float | None = None
    regular_hours: float | None = None
    overtime_hours: float | None = None
    user_id: str | None = None
    locations: dict[PunchType, PunchLocation] = field(default_factory=dict)

    @property
    def has_calculated_hours(self) -> bool:
        return (self.total_hours is not None
                and self.regular_hours is not None
                and self.overtime_hours is not None)

    @property
    def iso_year_week(self) -> tuple[int, int]:
        """Returns (ISO year, ISO week number)."""
        iso = self.work_date.isocalendar()
        return (iso[0], iso[1])

    def time_of(self, punch_type: PunchType) -> time | None:
        return getattr(self, PunchType(punch_type).value)

    def without_calculated_hours(self) -> DayPunchRecord:
        return replace(self, total_hours=None, regular_hours=None, overtime_hours=None)


@dataclass(frozen=True)
class WorkHours:
    total: float = 0.0
    regular: float = 0.0
    overtime: float = 0.0


@dataclass(frozen=True)
class HoursComparison:
    stored: WorkHours | None
    computed: WorkHours
    is_consistent: bool


@dataclass(frozen=True)
class MonthlyStats:
    total_hours: float = 0.0
    regular_hours: float = 0.0
    overtime_hours: float = 0.0
    overtime_pay: float = 0.0
    working_days: int = 0
    break_time_used: int = 0


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def _to_millis(value: datetime | None) -> int | None:
    """Whole epoch milliseconds, sub-millisecond part floored; naive values are local time."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - _EPOCH) // _ONE_MS


def _from_millis(value) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + int(value) * _ONE_MS


@dataclass(frozen=True)
class BreakSessionData:
    """Timer flags of a break session.

    `paused_time` is kept in milliseconds, instants are aware datetimes.
    """
    is_active: bool = False
    is_paused: bool = False
    start_time: datetime | None = None
    last_active_time: datetime | None = None
    paused_time: int = 0

    @property
    def is_running(self) -> bool:
        return self.is_active and not self.is_paused

    def to_dict(self) -> dict:
        return {
            "isActive": self.is_active,
            "isPaused": self.is_paused,
            "startTime": _to_millis(self.start_time),
            "lastActiveTime": _to_millis(self.last_active_time),
            "pausedTime": self.paused_time,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> BreakSessionData:
        data = data or {}
        return cls(
            is_active=bool(data.get("isActive", False)),
            is_paused=bool(data.get("isPaused", False)),
            start_time=_from_millis(data.get("startTime")),
            last_active_time=_from_millis(data.get("lastActiveTime")),
            paused_time=int(data.get("pausedTime") or 0),
        )


@dataclass(frozen=True)
class BreakSessionState:
    """Break accounting for one user and one date."""
    work_date: date
    total_time_used: int = 0
    sessions_data: BreakSessionData = field(default_factory=BreakSessionData)
