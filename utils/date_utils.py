from datetime import date, datetime
from typing import Optional

import pandas as pd
from dateutil.relativedelta import relativedelta


def add_months(d: date, months: int) -> date:
    """Add N calendar months; Jan 31 + 1 month lands on the last day of February."""
    return d + relativedelta(months=months)


def parse_date(d) -> Optional[date]:
    """Accepts a date, datetime, Timestamp or ISO string."""
    if d is None or (not isinstance(d, str) and pd.isna(d)):
        return None
    if isinstance(d, (datetime, pd.Timestamp)):
        return d.date()
    if isinstance(d, date):
        return d
    if isinstance(d, str):
        return date.fromisoformat(d.strip()[:10])
    return None


def parse_datetime(d) -> Optional[datetime]:
    if d is None or (not isinstance(d, str) and pd.isna(d)):
        return None
    if isinstance(d, pd.Timestamp):
        return d.to_pydatetime()
    if isinstance(d, datetime):
        return d
    if isinstance(d, date):
        return datetime(d.year, d.month, d.day)
    if isinstance(d, str):
        return datetime.fromisoformat(d.strip())
    return None
