"""Cycle timestamps and the once-per-day run guard."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Hong_Kong"
DEFAULT_RUN_HOUR = 6


def cycle_timestamp(timezone: str = DEFAULT_TIMEZONE) -> dt.datetime:
    """Current time in the watch timezone, used as the logical cycle time."""
    return dt.datetime.now(ZoneInfo(timezone)).replace(microsecond=0)


def most_recent_anchor(now: dt.datetime, run_hour: int = DEFAULT_RUN_HOUR) -> dt.datetime:
    """The latest daily anchor (``run_hour``:00 local) at or before ``now``."""
    anchor = now.replace(hour=run_hour, minute=0, second=0, microsecond=0)
    if anchor > now:
        anchor -= dt.timedelta(days=1)
    return anchor


def cycle_due(
    last_run: Optional[str | dt.datetime],
    now: dt.datetime,
    run_hour: int = DEFAULT_RUN_HOUR,
) -> bool:
    """True when no successful cycle has happened since the most recent anchor."""
    if last_run is None:
        return True
    if isinstance(last_run, str):
        last_run = dt.datetime.fromisoformat(last_run)
    if last_run.tzinfo is None and now.tzinfo is not None:
        last_run = last_run.replace(tzinfo=now.tzinfo)
    return last_run < most_recent_anchor(now, run_hour)
