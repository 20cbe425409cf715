from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import Closed, NotYetOpen


class ScheduleStatus(str, Enum):
    OK = "OK"
    NOT_YET_OPEN = "NOT_YET_OPEN"
    CLOSED = "CLOSED"


def utcnow() -> datetime:
    """Naive UTC, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_window(now: datetime, open_at: Optional[datetime], close_at: Optional[datetime]) -> ScheduleStatus:
    if open_at and now < open_at:
        return ScheduleStatus.NOT_YET_OPEN
    if close_at and now > close_at:
        return ScheduleStatus.CLOSED
    return ScheduleStatus.OK


def ensure_window(now: datetime, open_at: Optional[datetime], close_at: Optional[datetime]) -> None:
    status = check_window(now, open_at, close_at)
    if status is ScheduleStatus.NOT_YET_OPEN:
        raise NotYetOpen("This assessment has not opened yet.", open_at=open_at.isoformat())
    if status is ScheduleStatus.CLOSED:
        raise Closed("This assessment has been closed.", close_at=close_at.isoformat())
