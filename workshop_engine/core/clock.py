from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from workshop_engine.config.settings import settings


def academy_now() -> datetime:
    """Timezone-aware now in the academy's local time (slot dates/times are local)."""
    return datetime.now(ZoneInfo(settings.academy_timezone))


def academy_today() -> date:
    return academy_now().date()


def academy_datetime(on_date: date, time_of_day: str) -> datetime:
    """Local datetime of an HH:MM time on on_date. Raises ValueError for a malformed time."""
    hours, minutes = (int(part) for part in time_of_day.split(":"))
    return datetime.combine(on_date, time(hours, minutes), tzinfo=ZoneInfo(settings.academy_timezone))
