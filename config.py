# config.py
import logging
import os
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo


def _pick_data_dir() -> Path:
    """First writable of $DATA_DIR, /data, ./data (falls back to the cwd)."""
    candidates = []
    env = os.getenv("DATA_DIR")
    if env:
        candidates.append(Path(env))
    candidates += [Path("/data"), Path.cwd() / "data"]

    for p in candidates:
        try:
            p.mkdir(parents=True, exist_ok=True)
            probe = p / ".rwtest"
            probe.write_text("ok")
            probe.unlink(missing_ok=True)
            return p
        except OSError:
            continue
    return Path.cwd()


DATA_DIR = _pick_data_dir()
DEFAULT_SQLITE = f"sqlite:///{(DATA_DIR / 'timetracker.db').as_posix()}"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE)

APP_TITLE = os.getenv("APP_TITLE", "Time Tracker")
TZ = ZoneInfo(os.getenv("APP_TIMEZONE", "Europe/Lisbon"))

OVERTIME_RATE_EUR = float(os.getenv("OVERTIME_RATE_EUR", "7.0"))
BREAK_LIMIT_MINUTES = int(os.getenv("BREAK_LIMIT_MINUTES", "30"))
BREAK_SYNC_SECONDS = int(os.getenv("BREAK_SYNC_SECONDS", "30"))

NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODE_TIMEOUT = float(os.getenv("GEOCODE_TIMEOUT", "10"))
GEOCODE_CACHE_SIZE = int(os.getenv("GEOCODE_CACHE_SIZE", "512"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def local_now() -> datetime:
    return datetime.now(TZ)


def local_today() -> date:
    return local_now().date()
