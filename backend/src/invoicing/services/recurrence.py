"""Next-occurrence calculation for recurring invoices."""
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar, Union

from dateutil.relativedelta import relativedelta

from invoicing.exceptions import InvalidIntervalError
from invoicing.models.recurring_invoice import RecurringInterval

When = TypeVar("When", date, datetime)


def _sunday_based_weekday(value: date) -> int:
    # Python counts Monday as 0; schedules count Sunday as 0.
    return (value.weekday() + 1) % 7


def get_next_occurrence(
    from_date: When,
    interval: Union[str, RecurringInterval],
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> When:
    """
    Compute the next send date of a schedule.

    Args:
        from_date: Reference date; the result is always strictly later
        interval: day, week, month or year
        day_of_month: Month anchor (1-31), clamped to the month's last day
        day_of_week: Week anchor (0 = Sunday ... 6 = Saturday)

    Returns:
        Next occurrence, keeping the time of day of from_date

    Raises:
        InvalidIntervalError: If the interval or an anchor is out of range
    """
    try:
        interval = RecurringInterval(interval)
    except ValueError:
        raise InvalidIntervalError(f"Unsupported recurrence interval: {interval!r}", field="interval")

    if interval is RecurringInterval.DAY:
        return from_date + timedelta(days=1)

    if interval is RecurringInterval.WEEK:
        if day_of_week is None:
            return from_date + timedelta(days=7)
        if not 0 <= day_of_week <= 6:
            raise InvalidIntervalError(f"day_of_week must be between 0 and 6, got {day_of_week}", field="day_of_week")
        delta = day_of_week - _sunday_based_weekday(from_date)
        if delta <= 0:
            delta += 7
        return from_date + timedelta(days=delta)

    if interval is RecurringInterval.MONTH:
        if day_of_month is None:
            return from_date + relativedelta(months=1)
        if not 1 <= day_of_month <= 31:
            raise InvalidIntervalError(
                f"day_of_month must be between 1 and 31, got {day_of_month}", field="day_of_month"
            )
        # relativedelta clamps an absolute day to the last day of the target month.
        return from_date + relativedelta(months=1, day=day_of_month)

    return from_date + relativedelta(years=1)
