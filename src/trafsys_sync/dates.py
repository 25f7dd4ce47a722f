from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

DATE_FORMAT = "%Y-%m-%d"


def yesterday(today: Optional[date] = None) -> str:
    today = today or datetime.now().date()
    return (today - timedelta(days=1)).strftime(DATE_FORMAT)


def check_date_format(value: str) -> str:
    # Format only; ordering and range limits are left to the remote API.
    datetime.strptime(value, DATE_FORMAT)
    return value
