import re
from datetime import date

_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def parse_month(value: str) -> tuple[int, int]:
    match = _MONTH_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def format_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def previous_month(value: str) -> str:
    year, month = parse_month(value)
    if month == 1:
        return format_month(year - 1, 12)
    return format_month(year, month - 1)


def month_of(day: date) -> str:
    return format_month(day.year, day.month)
