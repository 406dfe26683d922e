from .schedule import days_in_month


def month_end_forecast(month_to_date_spending, today):
    """Linear projection of this month's spending from the month-to-date daily average."""
    total_days = days_in_month(today.year, today.month)
    daily_average = month_to_date_spending / today.day
    return {
        "month_to_date_spending": round(month_to_date_spending, 2),
        "daily_average": round(daily_average, 2),
        "projected_month_end_spending": round(daily_average * total_days, 2),
        "days_elapsed": today.day,
        "days_remaining": total_days - today.day,
    }
