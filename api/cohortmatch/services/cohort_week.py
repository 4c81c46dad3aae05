from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo


def get_match_week(now: datetime, weekday: int = 3, tz: str = "UTC") -> date:
    """Most recent occurrence of ``weekday`` (Monday=0) on or before ``now``'s local date."""
    local_now = now.astimezone(ZoneInfo(tz)) if now.tzinfo else now
    today = local_now.date()
    return today - timedelta(days=(today.weekday() - weekday) % 7)
