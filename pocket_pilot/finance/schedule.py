import calendar
from datetime import date, datetime

from dateutil.relativedelta import relativedelta


FREQUENCY_STEPS = {
    "weekly": relativedelta(weeks=1),
    "biweekly": relativedelta(weeks=2),
    "monthly": relativedelta(months=1),
    "yearly": relativedelta(years=1),
}


def to_date(value):
    """Accept a ``date``, ``datetime`` or ``YYYY-MM-DD`` string."""
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def advance_date(value, frequency):
    """Next occurrence after *value*; month-end dates clamp (Jan 31 -> Feb 28)."""
    step = FREQUENCY_STEPS.get(frequency)
    if step is None:
        raise ValueError(f"Unknown frequency: {frequency}")
    return to_date(value) + step


def days_in_month(year, month):
    return calendar.monthrange(year, month)[1]


def month_bounds(year, month):
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def shift_month(year, month, offset):
    first = date(year, month, 1) + relativedelta(months=offset)
    return first.year, first.month


def months_between(start, end):
    """Whole calendar months from *start* to *end*, counting partial months as one."""
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def week_bounds(today):
    start = today - relativedelta(days=today.weekday())
    return start, start + relativedelta(days=6)


def iso(value):
    return value.isoformat() if value is not None else None
