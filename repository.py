# repository.py
from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone
from typing import List

from sqlalchemy import JSON, Column, UniqueConstraint, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel, Field, Session, create_engine, select

from breaks import BreakAccountant, BreakAction
from domain import (
    BreakSessionData,
    BreakSessionState,
    DayPunchRecord,
    MonthlyStats,
    PunchLocation,
    PunchType,
)
from services import WorkHoursCalculator

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base class for persistence errors surfaced to the UI."""


class PunchAlreadyRecorded(RepositoryError):
    def __init__(self, punch_type: PunchType, work_date: date):
        super().__init__(f"{PunchType(punch_type).value} already recorded on {work_date.isoformat()}")
        self.punch_type = punch_type
        self.work_date = work_date


class PunchNotSaved(RepositoryError):
    def __init__(self, punch_type: PunchType, work_date: date):
        super().__init__(
            f"Could not save {PunchType(punch_type).value} for {work_date.isoformat()}, reload and retry"
        )
        self.punch_type = punch_type
        self.work_date = work_date


class EntryNotFound(RepositoryError):
    pass


class StaleBreakSession(RepositoryError):
    """The break session changed since it was read; reload and retry."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Punches before this hour may still close the previous day's open shift
OVERNIGHT_CUTOFF = time(12, 0)


class TimeEntryDB(SQLModel, table=True):
    __tablename__ = "time_entries"
    __table_args__ = (UniqueConstraint("user_id", "work_date"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    work_date: date = Field(index=True)
    clock_in: time | None = None
    lunch_out: time | None = None
    lunch_in: time | None = None
    clock_out: time | None = None
    notes: str | None = None
    total_hours: float | None = None
    regular_hours: float | None = None
    overtime_hours: float | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class PunchLocationDB(SQLModel, table=True):
    __tablename__ = "punch_locations"

    id: int | None = Field(default=None, primary_key=True)
    time_entry_id: int = Field(foreign_key="time_entries.id", index=True)
    punch_type: str
    latitude: float
    longitude: float
    accuracy: float
    address: str | None = None
    recorded_at: datetime


class BreakSessionDB(SQLModel, table=True):
    __tablename__ = "break_sessions"
    __table_args__ = (UniqueConstraint("user_id", "work_date"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    work_date: date = Field(index=True)
    total_time_used: int = 0
    sessions_data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


def build_engine(db_url: str, echo: bool = False):
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
        "connect_args": {},
    }
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Serverless PG: no local pool, bounded connect time
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"connect_timeout": 10}
        if "sslmode=" not in db_url:
            db_url += ("&" if "?" in db_url else "?") + "sslmode=require"
    return create_engine(db_url, **kwargs)


def _to_record(row: TimeEntryDB, locations: list[PunchLocationDB] = ()) -> DayPunchRecord:
    return DayPunchRecord(
        work_date=row.work_date,
        clock_in=row.clock_in,
        lunch_out=row.lunch_out,
        lunch_in=row.lunch_in,
        clock_out=row.clock_out,
        notes=row.notes,
        total_hours=row.total_hours,
        regular_hours=row.regular_hours,
        overtime_hours=row.overtime_hours,
        user_id=row.user_id,
        locations={
            PunchType(loc.punch_type): PunchLocation(
                latitude=loc.latitude,
                longitude=loc.longitude,
                accuracy=loc.accuracy,
                recorded_at=loc.recorded_at,
                address=loc.address,
            )
            for loc in locations
        },
    )


def _to_break_state(row: BreakSessionDB) -> BreakSessionState:
    return BreakSessionState(
        work_date=row.work_date,
        total_time_used=row.total_time_used or 0,
        sessions_data=BreakSessionData.from_dict(row.sessions_data),
    )


class TimeTrackerRepository:
    """Punches, punch locations and break sessions. Production never falls back to SQLite."""
    def __init__(
        self,
        url: str = "sqlite:///timetracker.db",
        echo: bool = False,
        calculator: WorkHoursCalculator | None = None,
        accountant: BreakAccountant | None = None,
    ):
        self.primary_url = url
        self.engine = build_engine(url, echo=echo)
        self.calculator = calculator or WorkHoursCalculator()
        self.accountant = accountant or BreakAccountant()

        if not url.startswith("sqlite"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("select 1"))
            except Exception as e:
                raise RuntimeError(f"Could not connect to Postgres: {e}") from e

        SQLModel.metadata.create_all(self.engine)

    # -- time entries ------------------------------------------------------

    def record_punch(
        self,
        user_id: str,
        punch_type: PunchType,
        at: datetime,
        location: PunchLocation | None = None,
        notes: str | None = None,
    ) -> DayPunchRecord:
        """Stores one punch; the entry and its location are committed together.

        A punch other than clock-in taken before OVERNIGHT_CUTOFF goes to the
        previous day's entry when that shift is still open.
        """
        punch_type = PunchType(punch_type)
        punch_time = at.time().replace(microsecond=0)

        with Session(self.engine) as session:
            row = self._punch_row(session, user_id, punch_type, at)
            work_date = row.work_date if row is not None else at.date()
            if row is None:
                row = TimeEntryDB(user_id=user_id, work_date=work_date, notes=notes or None)
            elif getattr(row, punch_type.value) is not None:
                raise PunchAlreadyRecorded(punch_type, work_date)
            elif notes:
                row.notes = notes

            setattr(row, punch_type.value, punch_time)
            row.updated_at = _utcnow()

            if row.clock_in is not None and row.clock_out is not None:
                hours = self.calculator.force_recalculate(_to_record(row))
                row.total_hours = hours.total
                row.regular_hours = hours.regular
                row.overtime_hours = hours.overtime

            try:
                session.add(row)
                session.flush()
                if location is not None:
                    session.add(PunchLocationDB(
                        time_entry_id=row.id,
                        punch_type=punch_type.value,
                        latitude=location.latitude,
                        longitude=location.longitude,
                        accuracy=location.accuracy,
                        address=location.address,
                        recorded_at=location.recorded_at,
                    ))
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning("Could not save %s for %s on %s: %s", punch_type.value, user_id, work_date, e)
                raise PunchNotSaved(punch_type, work_date) from e

            session.refresh(row)
            logger.info("Recorded %s for %s at %s", punch_type.value, user_id, at.isoformat())
            return _to_record(row, self._locations(session, row.id))

    @staticmethod
    def _entry_row(session: Session, user_id: str, day: date) -> TimeEntryDB | None:
        return session.exec(
            select(TimeEntryDB).where(TimeEntryDB.user_id == user_id, TimeEntryDB.work_date == day)
        ).first()

    def _punch_row(
        self, session: Session, user_id: str, punch_type: PunchType, at: datetime
    ) -> TimeEntryDB | None:
        row = self._entry_row(session, user_id, at.date())
        if punch_type is PunchType.CLOCK_IN or (row is not None and row.clock_in is not None):
            return row
        if at.time() >= OVERNIGHT_CUTOFF:
            return row
        previous = self._entry_row(session, user_id, at.date() - timedelta(days=1))
        if previous is not None and previous.clock_in is not None and previous.clock_out is None:
            return previous
        return row

    def get_entry(self, user_id: str, day: date) -> DayPunchRecord | None:
        with Session(self.engine) as session:
            row = self._entry_row(session, user_id, day)
            if row is None:
                return None
            return _to_record(row, self._locations(session, row.id))

    def current_entry(self, user_id: str, at: datetime) -> DayPunchRecord | None:
        """The entry the next non-clock-in punch at `at` would land on."""
        with Session(self.engine) as session:
            row = self._punch_row(session, user_id, PunchType.CLOCK_OUT, at)
            if row is None:
                return None
            return _to_record(row, self._locations(session, row.id))

    def list_entries(self, user_id: str, start: date | None = None, end: date | None = None) -> List[DayPunchRecord]:
        with Session(self.engine) as session:
            query = select(TimeEntryDB).where(TimeEntryDB.user_id == user_id)
            if start is not None:
                query = query.where(TimeEntryDB.work_date >= start)
            if end is not None:
                query = query.where(TimeEntryDB.work_date <= end)
            rows = session.exec(query.order_by(TimeEntryDB.work_date.desc())).all()
            return [_to_record(r, self._locations(session, r.id)) for r in rows]

    def update_notes(self, user_id: str, day: date, notes: str | None) -> DayPunchRecord:
        with Session(self.engine) as session:
            row = self._entry_row(session, user_id, day)
            if row is None:
                raise EntryNotFound(f"No time entry for {user_id} on {day.isoformat()}")
            row.notes = (notes or "").strip() or None
            row.updated_at = _utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(row, self._locations(session, row.id))

    @staticmethod
    def _locations(session: Session, entry_id: int) -> list[PunchLocationDB]:
        return session.exec(
            select(PunchLocationDB)
            .where(PunchLocationDB.time_entry_id == entry_id)
            .order_by(PunchLocationDB.recorded_at)
        ).all()

    # -- break sessions ----------------------------------------------------

    def _break_row(self, session: Session, user_id: str, day: date) -> BreakSessionDB | None:
        return session.exec(
            select(BreakSessionDB).where(BreakSessionDB.user_id == user_id, BreakSessionDB.work_date == day)
        ).first()

    def get_break_session(self, user_id: str, day: date) -> BreakSessionState | None:
        with Session(self.engine) as session:
            row = self._break_row(session, user_id, day)
            return _to_break_state(row) if row else None

    def list_break_sessions(self, user_id: str, start: date, end: date) -> List[BreakSessionState]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(BreakSessionDB)
                .where(
                    BreakSessionDB.user_id == user_id,
                    BreakSessionDB.work_date >= start,
                    BreakSessionDB.work_date <= end,
                )
                .order_by(BreakSessionDB.work_date)
            ).all()
            return [_to_break_state(r) for r in rows]

    def apply_break_action(
        self, user_id: str, day: date, action: BreakAction, now: datetime
    ) -> BreakSessionState:
        """Applies one timer action to the day's session and saves it.

        The save only succeeds if nobody else wrote the session in between.
        """
        action = BreakAction(action)
        with Session(self.engine) as session:
            row = self._break_row(session, user_id, day)
            previous = _to_break_state(row) if row else None
            row_id = row.id if row else None
            version = row.version if row else None

        if previous is None and action is BreakAction.START:
            state = self.accountant.start(None, now, work_date=day)
        else:
            state = self.accountant.transition(action, previous, now)

        if row_id is None:
            try:
                with Session(self.engine) as session:
                    session.add(BreakSessionDB(
                        user_id=user_id,
                        work_date=day,
                        total_time_used=state.total_time_used,
                        sessions_data=state.sessions_data.to_dict(),
                    ))
                    session.commit()
            except IntegrityError as e:
                logger.warning("Concurrent break start for %s on %s", user_id, day)
                raise StaleBreakSession("Break session was created concurrently") from e
        else:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(BreakSessionDB)
                    .where(BreakSessionDB.id == row_id, BreakSessionDB.version == version)
                    .values(
                        total_time_used=state.total_time_used,
                        sessions_data=state.sessions_data.to_dict(),
                        version=version + 1,
                        updated_at=_utcnow(),
                    )
                )
            if result.rowcount != 1:
                logger.warning("Lost break session update for %s on %s (%s)", user_id, day, action.value)
                raise StaleBreakSession("Break session changed, reload and retry")

        logger.info("Break %s for %s: %ss used", action.value, user_id, state.total_time_used)
        return state

    # -- aggregates --------------------------------------------------------

    def monthly_stats(self, user_id: str, year: int, month: int) -> MonthlyStats:
        first = date(year, month, 1)
        last = date(year, month, monthrange(year, month)[1])
        return self.calculator.monthly_stats(
            self.list_entries(user_id, first, last),
            self.list_break_sessions(user_id, first, last),
        )


__all__ = [
    "BreakSessionDB",
    "EntryNotFound",
    "PunchAlreadyRecorded",
    "PunchLocationDB",
    "PunchNotSaved",
    "RepositoryError",
    "StaleBreakSession",
    "TimeEntryDB",
    "TimeTrackerRepository",
    "build_engine",
]
