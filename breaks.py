# breaks.py
from __future__ import annotations
import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum

from domain import BreakSessionData, BreakSessionState

logger = logging.getLogger(__name__)

DAILY_BREAK_LIMIT_SECONDS = 30 * 60


class BreakError(ValueError):
    """Base class for break timer errors."""


class InvalidTransition(BreakError):
    def __init__(self, action: str, reason: str):
        super().__init__(f"Cannot {action} break: {reason}")
        self.action = action
        self.reason = reason


class BreakAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    CHECKPOINT = "checkpoint"


class BreakStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    EXHAUSTED = "exhausted"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class BreakDisplay:
    usage: int
    remaining: int
    excess: int
    progress_percent: float
    status: BreakStatus
    clock: str


def _elapsed_seconds(since: datetime | None, now: datetime) -> int:
    if since is None:
        return 0
    return max(0, math.floor((now - since).total_seconds()))


def _advance_anchor(data: BreakSessionData, elapsed: int, now: datetime) -> datetime:
    """Moves `last_active_time` by the whole seconds folded, keeping the remainder pending."""
    if data.last_active_time is None:
        return now
    return data.last_active_time + timedelta(seconds=elapsed)


class BreakAccountant:
    """Accrues break time against the daily allowance.

    While a session runs, the time since `last_active_time` is not yet part
    of `total_time_used`; it is folded in on every transition.
    """
    def __init__(
        self,
        daily_limit_seconds: int = DAILY_BREAK_LIMIT_SECONDS,
        warning_threshold_seconds: int = 5 * 60,
        alert_every_seconds: int = 5 * 60,
    ):
        self.daily_limit_seconds = daily_limit_seconds
        self.warning_threshold_seconds = warning_threshold_seconds
        self.alert_every_seconds = alert_every_seconds

    # -- transitions -------------------------------------------------------

    def start(
        self, state: BreakSessionState | None, now: datetime, work_date: date | None = None
    ) -> BreakSessionState:
        if state is None:
            logger.debug("Starting new break session at %s", now)
            return BreakSessionState(
                work_date=work_date or now.date(),
                total_time_used=0,
                sessions_data=BreakSessionData(
                    is_active=True,
                    is_paused=False,
                    start_time=now,
                    last_active_time=now,
                    paused_time=0,
                ),
            )

        data = state.sessions_data
        anchor = now
        if data.is_running:
            anchor = _advance_anchor(data, _elapsed_seconds(data.last_active_time, now), now)
        return replace(
            state,
            total_time_used=self.current_usage(state, now),
            sessions_data=replace(
                data,
                is_active=True,
                is_paused=False,
                start_time=data.start_time or now,
                last_active_time=anchor,
            ),
        )

    def pause(self, state: BreakSessionState | None, now: datetime) -> BreakSessionState:
        if state is None:
            raise InvalidTransition("pause", "no break session today")
        data = state.sessions_data
        if not data.is_active:
            raise InvalidTransition("pause", "break is not active")
        if data.is_paused:
            raise InvalidTransition("pause", "break is already paused")

        elapsed = _elapsed_seconds(data.last_active_time, now)
        return replace(
            state,
            total_time_used=state.total_time_used + elapsed,
            sessions_data=replace(
                data,
                is_paused=True,
                paused_time=data.paused_time + elapsed * 1000,
                last_active_time=now,
            ),
        )

    def resume(self, state: BreakSessionState | None, now: datetime) -> BreakSessionState:
        if state is None:
            raise InvalidTransition("resume", "no break session today")
        data = state.sessions_data
        if not data.is_active:
            raise InvalidTransition("resume", "break is not active")
        if not data.is_paused:
            raise InvalidTransition("resume", "break is not paused")

        return replace(
            state,
            sessions_data=replace(data, is_paused=False, last_active_time=now),
        )

    def stop(self, state: BreakSessionState | None, now: datetime) -> BreakSessionState:
        if state is None:
            raise InvalidTransition("stop", "no break session today")
        return replace(
            state,
            total_time_used=self.current_usage(state, now),
            sessions_data=replace(
                state.sessions_data,
                is_active=False,
                is_paused=False,
                last_active_time=now,
            ),
        )

    def checkpoint(self, state: BreakSessionState | None, now: datetime) -> BreakSessionState:
        """Folds the running slice so it can be persisted; flags are unchanged."""
        if state is None:
            raise InvalidTransition("checkpoint", "no break session today")
        data = state.sessions_data
        if not data.is_running:
            return state
        elapsed = _elapsed_seconds(data.last_active_time, now)
        return replace(
            state,
            total_time_used=state.total_time_used + elapsed,
            sessions_data=replace(data, last_active_time=_advance_anchor(data, elapsed, now)),
        )

    def transition(
        self, action: BreakAction | str, state: BreakSessionState | None, now: datetime
    ) -> BreakSessionState:
        handler = {
            BreakAction.START: self.start,
            BreakAction.PAUSE: self.pause,
            BreakAction.RESUME: self.resume,
            BreakAction.STOP: self.stop,
            BreakAction.CHECKPOINT: self.checkpoint,
        }[BreakAction(action)]
        return handler(state, now)

    # -- projections -------------------------------------------------------

    def current_usage(self, state: BreakSessionState | None, now: datetime) -> int:
        if state is None:
            return 0
        data = state.sessions_data
        if data.is_running:
            return state.total_time_used + _elapsed_seconds(data.last_active_time, now)
        return state.total_time_used

    def status_for(self, usage: int) -> BreakStatus:
        if usage > self.daily_limit_seconds:
            return BreakStatus.EXCEEDED
        if usage == self.daily_limit_seconds:
            return BreakStatus.EXHAUSTED
        if self.daily_limit_seconds - usage <= self.warning_threshold_seconds:
            return BreakStatus.WARNING
        return BreakStatus.NORMAL

    def display(self, state: BreakSessionState | None, now: datetime) -> BreakDisplay:
        usage = self.current_usage(state, now)
        remaining = max(0, self.daily_limit_seconds - usage)
        excess = max(0, usage - self.daily_limit_seconds)
        progress = min(100.0, max(0.0, usage / self.daily_limit_seconds * 100))
        status = self.status_for(usage)
        if status is BreakStatus.EXCEEDED:
            clock = f"-{format_clock(excess)}"
        else:
            clock = format_clock(remaining)
        return BreakDisplay(
            usage=usage,
            remaining=remaining,
            excess=excess,
            progress_percent=progress,
            status=status,
            clock=clock,
        )

    def alerts_between(self, previous_usage: int, usage: int) -> list[str]:
        """Messages for the limit and every further alert step crossed."""
        alerts = []
        limit = self.daily_limit_seconds
        if previous_usage < limit <= usage:
            alerts.append(f"Your {limit // 60} minutes of break have been used up!")
        for seconds in range(max(previous_usage, limit) + 1, usage + 1):
            extra = seconds - limit
            if extra % self.alert_every_seconds == 0:
                alerts.append(f"You are {extra // 60} minutes over the allowed break!")
        return alerts

    @staticmethod
    def for_day(state: BreakSessionState | None, day: date) -> BreakSessionState | None:
        """A state from another date never carries over."""
        if state is None or state.work_date != day:
            return None
        return state


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"
