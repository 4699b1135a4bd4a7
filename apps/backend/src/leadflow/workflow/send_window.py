"""Send-window policy: may an action node fire at a given moment?"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .schema import SendWindow

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Brussels"

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")


def hhmm_to_minutes(value: str | None) -> int | None:
    """Parse "HH:MM" into minutes after midnight, or None when malformed."""
    match = _HHMM.match(value or "")
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def _zone(name: str | None, default_timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown send window timezone %r, using %s", name, default_timezone)
        return ZoneInfo(default_timezone)


def civil_weekday(moment: datetime) -> int:
    """Weekday with Sunday as 0, matching the builder's allowedDays."""
    return (moment.weekday() + 1) % 7


def is_within_send_window(
    send_window: SendWindow | None,
    now: datetime | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> bool:
    """Return True if an action may fire at ``now`` under ``send_window``.

    A disabled or absent window always allows sending. Equal start and end
    times mean the window is always open; a start after the end wraps past
    midnight.
    """
    if send_window is None or not send_window.enabled:
        return True

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(_zone(send_window.timezone, default_timezone))

    if send_window.allowed_days and civil_weekday(local) not in send_window.allowed_days:
        return False

    start = hhmm_to_minutes(send_window.start_time)
    end = hhmm_to_minutes(send_window.end_time)
    if start is None or end is None:
        return True
    if start == end:
        return True

    current = local.hour * 60 + local.minute
    if start < end:
        return start <= current <= end
    return current >= start or current <= end
