"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional

DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 string or unix seconds into a datetime.

    Returns None for empty values.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def is_daytime(hour: int) -> bool:
    """Daytime runs from 06:00 to 18:00."""
    return 6 <= hour < 18


def get_meal_time(hour: int) -> str:
    """Meal-time label for a local hour of day."""
    if 6 <= hour < 11:
        return 'breakfast'
    if 11 <= hour < 16:
        return 'lunch'
    if 16 <= hour < 22:
        return 'dinner'
    return 'snack'


def get_meal_time_description(meal_time: str) -> str:
    """Human readable meal-time description for prompts.

    The snack band (22:00 to 06:00) lies wholly outside daytime, so snacks are always late night.
    """
    if meal_time == 'snack':
        return 'late night snack time'
    if meal_time in ('breakfast', 'lunch', 'dinner'):
        return f'{meal_time} time'
    return 'meal time'


def day_of_week(moment: datetime) -> str:
    return DAYS_OF_WEEK[moment.weekday()]


def format_local_time(moment: datetime) -> str:
    """Format as e.g. '2:05 PM'."""
    hour = moment.hour % 12 or 12
    suffix = 'AM' if moment.hour < 12 else 'PM'
    return f'{hour}:{moment.minute:02d} {suffix}'
