"""
Scheduling helpers for campaign steps - ISO-8601 durations and quiet hours.
Quiet hours are evaluated in the plan's IANA timezone; a send that would land
inside the window is pushed to the window's end.
"""
import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_NUM = r"(\d+(?:\.\d+)?)"
ISO_DURATION_RE = re.compile(
    rf"^P(?:{_NUM}Y)?(?:{_NUM}M)?(?:{_NUM}W)?(?:{_NUM}D)?"
    rf"(?:T(?:{_NUM}H)?(?:{_NUM}M)?(?:{_NUM}S)?)?$"
)
HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# Calendar units are approximated
_UNIT_SECONDS = (
    365.25 * 86400,  # years
    30.44 * 86400,  # months
    7 * 86400,  # weeks
    86400,  # days
    3600,  # hours
    60,  # minutes
    1,  # seconds
)


def parse_iso_duration(value: str) -> timedelta:
    """
    Parse an ISO-8601 duration (PT0S, PT24H, P3D, P1DT12H30M, PT1.5H) into a timedelta.
    Raises ValueError for anything else, including a bare "P" or "PT".
    """
    match = ISO_DURATION_RE.match(value or "")
    if not match or value.endswith(("P", "T")):
        raise ValueError(f"Invalid ISO 8601 duration: {value!r}")

    seconds = 0.0
    for part, unit in zip(match.groups(), _UNIT_SECONDS):
        if part:
            seconds += float(part) * unit
    return timedelta(seconds=seconds)


def is_valid_iso_duration(value: str) -> bool:
    try:
        parse_iso_duration(value)
        return True
    except ValueError:
        return False


def parse_hhmm(value: str) -> time:
    match = HHMM_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid HH:MM time: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def _quiet_bounds(quiet_hours: dict) -> tuple[int, int]:
    start = parse_hhmm(quiet_hours["start"])
    end = parse_hhmm(quiet_hours["end"])
    return start.hour * 60 + start.minute, end.hour * 60 + end.minute


def _in_window(minute_of_day: int, start: int, end: int) -> bool:
    if start == end:
        return False
    if end > start:
        return start <= minute_of_day < end
    # Window spans midnight (e.g. 21:00 -> 07:30)
    return minute_of_day >= start or minute_of_day < end


def is_in_quiet_hours(moment: datetime, tz_name: str, quiet_hours: dict) -> bool:
    """True if the moment falls inside the quiet window, evaluated in tz_name."""
    try:
        local = moment.astimezone(ZoneInfo(tz_name))
        start, end = _quiet_bounds(quiet_hours)
    except (ZoneInfoNotFoundError, ValueError, KeyError) as e:
        logger.warning("Failed to check quiet hours tz=%s: %s", tz_name, str(e))
        return False
    return _in_window(local.hour * 60 + local.minute, start, end)


def apply_quiet_hours(scheduled_at: datetime, tz_name: str, quiet_hours: dict) -> datetime:
    """
    Move scheduled_at to the end of the quiet window if it falls inside it.
    Returns the original time unchanged when outside the window or when the
    timezone / window cannot be parsed.
    """
    try:
        tz = ZoneInfo(tz_name)
        start, end = _quiet_bounds(quiet_hours)
    except (ZoneInfoNotFoundError, ValueError, KeyError) as e:
        logger.warning(
            "Failed to apply quiet hours tz=%s window=%s: %s",
            tz_name, quiet_hours, str(e),
        )
        return scheduled_at

    local = scheduled_at.astimezone(tz)
    current = local.hour * 60 + local.minute
    if not _in_window(current, start, end):
        return scheduled_at

    target_date = local.date()
    if end < start and current >= start:
        # Late-night part of a window that ends tomorrow morning
        target_date = target_date + timedelta(days=1)

    resume_local = datetime(
        target_date.year, target_date.month, target_date.day,
        end // 60, end % 60, tzinfo=tz,
    )
    return resume_local.astimezone(timezone.utc)


def calculate_schedule_time(
    delay: str,
    tz_name: str,
    quiet_hours: Optional[dict] = None,
    base_time: Optional[datetime] = None,
) -> datetime:
    """
    Compute when a step should run: base_time + delay, adjusted for quiet hours.
    An unparseable delay means immediate execution at base_time.
    """
    base = base_time or datetime.now(timezone.utc)
    try:
        scheduled_at = base + parse_iso_duration(delay)
    except ValueError as e:
        logger.warning(
            "Failed to parse schedule delay, using immediate execution: delay=%s tz=%s error=%s",
            delay, tz_name, str(e),
        )
        return base

    if quiet_hours:
        scheduled_at = apply_quiet_hours(scheduled_at, tz_name, quiet_hours)
    return scheduled_at
