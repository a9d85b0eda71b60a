from config.settings import CURRENCY


def fmt_amount(value: float, currency: str = CURRENCY) -> str:
    """1234567.891 -> ZMW 1,234,567.89"""
    return f"{currency} {value:,.2f}"


def fmt_rate(value: float) -> str:
    """15 -> 15.00%"""
    return f"{value:.2f}%"


def fmt_percent(value: float) -> str:
    """0.3456 -> 34.56%"""
    return f"{value * 100:.2f}%"


def fmt_months(months: int) -> str:
    """18 -> 1 year 6 months"""
    years = months // 12
    remain = months % 12
    parts = []
    if years:
        parts.append(f"{years} year{'s' if years != 1 else ''}")
    if remain or not years:
        parts.append(f"{remain} month{'s' if remain != 1 else ''}")
    return " ".join(parts)
