# app.py
# -----------------------------------------------
# ⏱️ Time tracker (Streamlit)
# -----------------------------------------------
# Punch in/out with location, a 30-minute daily break timer,
# monthly hours with overtime pay, CSV/PDF export.

import re
from calendar import monthrange
from datetime import date, datetime, timedelta

import streamlit as st

import config
from breaks import BreakAccountant, BreakAction, BreakError, BreakStatus
from domain import PunchLocation, PunchType
from locations import LocationNameCache, LocationResolver
from repository import RepositoryError, TimeTrackerRepository
from services import WorkHoursCalculator, next_punch_type
from utils import (
    dataframe_to_pdf,
    entries_to_csv,
    entries_to_dataframe,
    eur,
    format_break_time,
    format_hours,
    format_punch,
    monthly_summary_lines,
)

config.configure_logging()

PUNCH_LABELS = {
    PunchType.CLOCK_IN: "Clock in",
    PunchType.LUNCH_OUT: "Lunch out",
    PunchType.LUNCH_IN: "Lunch in",
    PunchType.CLOCK_OUT: "Clock out",
}
STATUS_COLORS = {
    BreakStatus.NORMAL: "green",
    BreakStatus.WARNING: "orange",
    BreakStatus.EXHAUSTED: "orange",
    BreakStatus.EXCEEDED: "red",
}

calculator = WorkHoursCalculator(overtime_rate=config.OVERTIME_RATE_EUR)
accountant = BreakAccountant(daily_limit_seconds=config.BREAK_LIMIT_MINUTES * 60)


@st.cache_resource
def get_repo(url: str):
    return TimeTrackerRepository(url, calculator=calculator, accountant=accountant)


repo = get_repo(config.DATABASE_URL)


def user_id_for(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def month_range(d: date) -> tuple[date, date]:
    return date(d.year, d.month, 1), date(d.year, d.month, monthrange(d.year, d.month)[1])


def _flash_success_if_any():
    msg = st.session_state.pop("_flash_success", None)
    if msg:
        st.success(msg)


def _location_resolver() -> LocationResolver:
    if "_location_cache" not in st.session_state:
        st.session_state["_location_cache"] = LocationNameCache(config.GEOCODE_CACHE_SIZE)
    return LocationResolver(st.session_state["_location_cache"])


# =========================
# Page
# =========================
st.set_page_config(page_title=config.APP_TITLE, page_icon="⏱️", layout="centered")
st.title(f"⏱️ {config.APP_TITLE}")

employee_name = st.sidebar.text_input("Employee", value=st.session_state.get("employee_name", ""))
if not employee_name.strip():
    st.info("Enter your name in the sidebar to start.")
    st.stop()
st.session_state["employee_name"] = employee_name
user_id = user_id_for(employee_name)

today = config.local_today()
_flash_success_if_any()

# =========================
# 🕘 Punch card
# =========================
st.subheader("🕘 Punch card")
today_entry = repo.current_entry(user_id, config.local_now())
if today_entry is not None and today_entry.work_date != today:
    st.caption(f"Shift started on {today_entry.work_date.strftime('%d/%m/%Y')}")
cols = st.columns(4)
for col, punch_type in zip(cols, PunchType):
    value = today_entry.time_of(punch_type) if today_entry else None
    col.metric(PUNCH_LABELS[punch_type], format_punch(value) or "--:--")

expected = next_punch_type(today_entry)
if expected is None:
    hours = calculator.compute(today_entry)
    st.success(
        f"Day complete: {format_hours(hours.total)} · regular {format_hours(hours.regular)}"
        f" · overtime {format_hours(hours.overtime)}"
    )
else:
    with st.expander("📍 Location (optional)"):
        lat = st.number_input("Latitude", value=0.0, format="%.6f", key="punch_lat")
        lng = st.number_input("Longitude", value=0.0, format="%.6f", key="punch_lng")
        accuracy = st.number_input("Accuracy (m)", min_value=0.0, value=0.0, key="punch_acc")
    notes = st.text_input("Notes (optional)", key="punch_notes")

    if st.button(f"Register {PUNCH_LABELS[expected]}", use_container_width=True):
        now = config.local_now()
        location = None
        if lat or lng:
            location = PunchLocation(latitude=lat, longitude=lng, accuracy=accuracy, recorded_at=now)
        try:
            repo.record_punch(user_id, expected, now, location=location, notes=notes.strip() or None)
        except RepositoryError as e:
            st.warning(str(e))
        else:
            st.session_state["_flash_success"] = f"{PUNCH_LABELS[expected]} registered at {now.strftime('%H:%M')}"
            st.rerun()

# =========================
# ☕ Break timer
# =========================
st.subheader(f"☕ Daily break ({config.BREAK_LIMIT_MINUTES} min)")


def _break_action(action: BreakAction):
    try:
        repo.apply_break_action(user_id, today, action, config.local_now())
    except (BreakError, RepositoryError) as e:
        st.warning(str(e))


@st.fragment(run_every=1)
def break_timer():
    now = config.local_now()
    state = accountant.for_day(repo.get_break_session(user_id, today), today)
    view = accountant.display(state, now)

    data = state.sessions_data if state else None
    if data is not None and data.is_running and data.last_active_time is not None:
        if (now - data.last_active_time) >= timedelta(seconds=config.BREAK_SYNC_SECONDS):
            _break_action(BreakAction.CHECKPOINT)

    previous = st.session_state.get("_break_usage_seen", view.usage)
    for alert in accountant.alerts_between(previous, view.usage):
        st.toast(alert, icon="⏰")
    st.session_state["_break_usage_seen"] = view.usage

    caption = {
        BreakStatus.EXCEEDED: "Time exceeded",
        BreakStatus.EXHAUSTED: "Time used up",
    }.get(view.status, "Time remaining today")
    st.markdown(f"## :{STATUS_COLORS[view.status]}[{view.clock}]")
    st.caption(caption)
    st.progress(int(view.progress_percent))

    if data is None or not data.is_active:
        label = "Continue break" if view.usage > 0 else "Start break"
        action = BreakAction.START
    elif data.is_paused:
        label, action = "Resume", BreakAction.RESUME
    else:
        label, action = "Pause", BreakAction.PAUSE

    left, right = st.columns(2)
    if left.button(label, use_container_width=True, key="break_toggle"):
        _break_action(action)
        st.rerun(scope="fragment")
    if right.button("Stop", use_container_width=True, key="break_stop", disabled=not (data and data.is_active)):
        _break_action(BreakAction.STOP)
        st.rerun(scope="fragment")


break_timer()

# =========================
# 🗓️ History of the month
# =========================
st.subheader("🗓️ History")
month_day = st.date_input("Month", value=today, max_value=today)
first, last = month_range(month_day)
entries = repo.list_entries(user_id, first, last)
break_sessions = repo.list_break_sessions(user_id, first, last)

df = entries_to_dataframe(entries, calculator)
if df.empty:
    st.info("No records this month.")
else:
    st.dataframe(df, use_container_width=True, hide_index=True)

    with st.form("notes_form"):
        note_day = st.selectbox("Day", options=[e.work_date for e in entries],
                                format_func=lambda d: d.strftime("%d/%m/%Y"))
        note_text = st.text_input("Notes")
        if st.form_submit_button("Save notes"):
            try:
                repo.update_notes(user_id, note_day, note_text)
            except RepositoryError as e:
                st.warning(str(e))
            else:
                st.session_state["_flash_success"] = "Notes saved."
                st.rerun()

# =========================
# 📊 Monthly stats
# =========================
st.subheader("📊 Monthly stats")
stats = calculator.monthly_stats(entries, break_sessions)
c1, c2, c3 = st.columns(3)
c1.metric("Total", format_hours(stats.total_hours), help=f"{stats.working_days} working days")
c2.metric("Overtime", format_hours(stats.overtime_hours), help=f"Regular: {format_hours(stats.regular_hours)}")
c3.metric("Overtime pay", f"{eur(stats.overtime_pay)} €")
today_break = accountant.for_day(repo.get_break_session(user_id, today), today)
st.caption(f"Break today: {format_break_time(accountant.current_usage(today_break, config.local_now()))}")

# =========================
# ⬇️ Export
# =========================
st.subheader("⬇️ Export")
yyyy_mm = f"{first.year:04d}-{first.month:02d}"
csv_text = entries_to_csv(entries, employee_name, calculator, break_sessions, resolver=_location_resolver())
st.download_button(
    "Download CSV",
    data=csv_text.encode("utf-8"),
    file_name=f"timesheet_{yyyy_mm}.csv",
    mime="text/csv",
    disabled=not entries,
    use_container_width=True,
)
pdf_bytes = dataframe_to_pdf(
    df, title=f"{config.APP_TITLE} — {employee_name} — {yyyy_mm}", summary=monthly_summary_lines(stats)
)
st.download_button(
    "Download PDF",
    data=pdf_bytes,
    file_name=f"report_{yyyy_mm}.pdf",
    mime="application/pdf",
    disabled=df.empty,
    use_container_width=True,
)
st.caption(f"Generated {datetime.now(config.TZ).strftime('%d/%m/%Y %H:%M')}")
