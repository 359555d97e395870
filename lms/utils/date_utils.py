"""
Date helpers for leave day counting and fiscal-year arithmetic.

Fiscal year is region dependent: IND runs April–March, everything else
runs January–December.
"""
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

Number = Union[int, float, Decimal]

HALF_DAY = Decimal("0.5")


def calculate_days(start_date: date, end_date: date, is_half_day: bool = False) -> Decimal:
    """
    Inclusive calendar-day span between two dates.

    A half-day request on a single calendar day counts as 0.5.

    >>> calculate_days(date(2025, 4, 1), date(2025, 4, 3))
    Decimal('3')
    >>> calculate_days(date(2025, 4, 1), date(2025, 4, 1), is_half_day=True)
    Decimal('0.5')
    """
    span = (end_date - start_date).days + 1
    if is_half_day and span == 1:
        return HALF_DAY
    return Decimal(span)


def is_weekend(check_date: date) -> bool:
    """Saturday or Sunday"""
    return check_date.weekday() >= 5


def calculate_business_days(
    start_date: date,
    end_date: date,
    holidays: Optional[Iterable[date]] = None,
) -> int:
    """Count days in [start_date, end_date] that are neither weekends nor holidays."""
    holiday_set = set(holidays or [])
    count = 0
    current = start_date
    while current <= end_date:
        if not is_weekend(current) and current not in holiday_set:
            count += 1
        current += timedelta(days=1)
    return count


def do_date_ranges_overlap(start1: date, end1: date, start2: date, end2: date) -> bool:
    return start1 <= end2 and start2 <= end1


def is_half_day_multiple(value: Number) -> bool:
    """True if value is a whole multiple of 0.5"""
    return (Decimal(str(value)) / HALF_DAY) % 1 == 0


def get_fiscal_year(region: str = "IND", today: Optional[date] = None) -> int:
    """Fiscal year label: IND starts in April, other regions follow the calendar year."""
    today = today or date.today()
    if region == "IND":
        return today.year if today.month >= 4 else today.year - 1
    return today.year


def get_fiscal_year_start(year: int, region: str = "IND") -> date:
    if region == "IND":
        return date(year, 4, 1)
    return date(year, 1, 1)


def get_fiscal_year_end(year: int, region: str = "IND") -> date:
    if region == "IND":
        return date(year + 1, 3, 31)
    return date(year, 12, 31)


def calculate_pro_rata_allocation(
    annual_allocation: Number,
    joining_date: date,
    region: str = "IND",
    today: Optional[date] = None,
) -> Decimal:
    """
    Share of annual_allocation for the part of the current fiscal year
    remaining after joining_date, rounded to 2 decimal places.
    """
    annual = Decimal(str(annual_allocation))
    fiscal_year = get_fiscal_year(region, today)
    fy_start = get_fiscal_year_start(fiscal_year, region)
    fy_end = get_fiscal_year_end(fiscal_year, region)

    if joining_date <= fy_start:
        return annual
    if joining_date > fy_end:
        return Decimal("0")

    total_days = Decimal((fy_end - fy_start).days)
    remaining_days = Decimal((fy_end - joining_date).days)
    pro_rata = annual * remaining_days / total_days
    return pro_rata.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_readable_date(value: date) -> str:
    """e.g. Jan 15, 2025"""
    return f"{value.strftime('%b')} {value.day}, {value.year}"
