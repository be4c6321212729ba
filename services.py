# services.py
from __future__ import annotations
import logging
from datetime import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from domain import (
    BreakSessionState,
    DayPunchRecord,
    HoursComparison,
    MonthlyStats,
    PunchType,
    WorkHours,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
CONSISTENCY_TOLERANCE = 0.01


def round_hours(value: float) -> float:
    """Rounds to 2 decimals, halves away from zero (toFixed-style)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def time_to_minutes(t: time) -> float:
    """Minutes since midnight; seconds count as a fraction of a minute."""
    return t.hour * 60 + t.minute + t.second / 60


def overlap_minutes(start: float, end: float, window_start: float, window_end: float) -> float:
    return max(0.0, min(end, window_end) - max(start, window_start))


class WorkHoursCalculator:
    """Company rules for splitting a day's punches into regular and overtime hours.

    Weekdays: time worked between 21:00 and 05:00 (next day) is overtime,
    the rest is regular. Saturdays and Sundays: everything is overtime.
    A missing lunch punch means the mandatory lunch is deducted instead.
    """
    def __init__(
        self,
        overtime_rate: float = 7.0,
        mandatory_lunch_minutes: int = 90,
        overtime_window_start: time = time(21, 0),
        overtime_window_end: time = time(5, 0),
    ):
        self.overtime_rate = overtime_rate
        self.mandatory_lunch_minutes = mandatory_lunch_minutes
        self.overtime_window_start = overtime_window_start
        self.overtime_window_end = overtime_window_end

    @property
    def overtime_window(self) -> tuple[float, float]:
        """Window bounds on the shift timeline, end pushed past midnight."""
        start = time_to_minutes(self.overtime_window_start)
        end = time_to_minutes(self.overtime_window_end)
        if end <= start:
            end += MINUTES_PER_DAY
        return start, end

    def compute(self, record: DayPunchRecord) -> WorkHours:
        """Stored hours win when all three are present, otherwise recompute."""
        if record.has_calculated_hours:
            return WorkHours(
                total=round_hours(record.total_hours),
                regular=round_hours(record.regular_hours),
                overtime=round_hours(record.overtime_hours),
            )
        return self.force_recalculate(record)

    def force_recalculate(self, record: DayPunchRecord) -> WorkHours:
        if record.clock_in is None or record.clock_out is None:
            return WorkHours()

        start = time_to_minutes(record.clock_in)
        end = time_to_minutes(record.clock_out)
        crosses_midnight = end < start
        if crosses_midnight:
            end += MINUTES_PER_DAY

        lunch = self._lunch_interval(record, start, crosses_midnight)
        if lunch is None:
            lunch_minutes = self.mandatory_lunch_minutes
        else:
            lunch_minutes = max(0.0, lunch[1] - lunch[0])

        total_minutes = max(0.0, (end - start) - lunch_minutes)

        if record.work_date.weekday() >= 5:
            overtime_minutes = total_minutes
        else:
            window_start, window_end = self.overtime_window
            overtime_minutes = overlap_minutes(start, end, window_start, window_end)
            if lunch is not None:
                overtime_minutes -= overlap_minutes(lunch[0], lunch[1], window_start, window_end)
            # a long night without a lunch punch can overlap the window by
            # more than the day's total once the mandatory lunch is deducted
            overtime_minutes = min(max(0.0, overtime_minutes), total_minutes)

        total_hours = total_minutes / 60
        overtime_hours = overtime_minutes / 60
        return WorkHours(
            total=round_hours(total_hours),
            regular=round_hours(total_hours - overtime_hours),
            overtime=round_hours(overtime_hours),
        )

    def _lunch_interval(
        self, record: DayPunchRecord, shift_start: float, crosses_midnight: bool
    ) -> tuple[float, float] | None:
        if record.lunch_out is None or record.lunch_in is None:
            return None
        lunch_out = time_to_minutes(record.lunch_out)
        lunch_in = time_to_minutes(record.lunch_in)
        if lunch_in < lunch_out:
            lunch_in += MINUTES_PER_DAY
        if crosses_midnight and lunch_out < shift_start:
            # lunch taken after midnight in a night shift
            lunch_out += MINUTES_PER_DAY
            lunch_in += MINUTES_PER_DAY
        return lunch_out, lunch_in

    def lunch_break_hours(self, record: DayPunchRecord) -> float:
        """Measured lunch length in hours, 0 when a lunch punch is missing."""
        if record.lunch_out is None or record.lunch_in is None:
            return 0.0
        minutes = time_to_minutes(record.lunch_in) - time_to_minutes(record.lunch_out)
        if minutes < 0:
            minutes += MINUTES_PER_DAY
        return round_hours(minutes / 60)

    def compare(self, record: DayPunchRecord) -> HoursComparison:
        """Checks stored hours against a fresh computation from the punches."""
        computed = self.force_recalculate(record)
        if not record.has_calculated_hours:
            return HoursComparison(stored=None, computed=computed, is_consistent=True)

        stored = WorkHours(
            total=record.total_hours,
            regular=record.regular_hours,
            overtime=record.overtime_hours,
        )
        is_consistent = all(
            abs(a - b) < CONSISTENCY_TOLERANCE
            for a, b in (
                (stored.total, computed.total),
                (stored.regular, computed.regular),
                (stored.overtime, computed.overtime),
            )
        )
        if not is_consistent:
            logger.warning(
                "Stored hours for %s (%s) differ from recomputed %s",
                record.work_date, stored, computed,
            )
        return HoursComparison(stored=stored, computed=computed, is_consistent=is_consistent)

    def monthly_stats(
        self,
        records: Iterable[DayPunchRecord],
        break_sessions: Iterable[BreakSessionState] = (),
    ) -> MonthlyStats:
        """Sums the hours of every countable day and prices the overtime."""
        total = regular = overtime = 0.0
        working_days = 0
        for r in records:
            if r.has_calculated_hours:
                total += r.total_hours
                regular += r.regular_hours
                overtime += r.overtime_hours
            elif r.clock_in is not None and r.clock_out is not None:
                hours = self.force_recalculate(r)
                total += hours.total
                regular += hours.regular
                overtime += hours.overtime
            else:
                continue
            working_days += 1

        return MonthlyStats(
            total_hours=round_hours(total),
            regular_hours=round_hours(regular),
            overtime_hours=round_hours(overtime),
            overtime_pay=round_hours(overtime * self.overtime_rate),
            working_days=working_days,
            break_time_used=sum(s.total_time_used for s in break_sessions),
        )


def next_punch_type(record: DayPunchRecord | None) -> PunchType | None:
    """The punch expected next for the day, None once the day is complete."""
    for punch_type in PunchType:
        if record is None or record.time_of(punch_type) is None:
            return punch_type
    return None
