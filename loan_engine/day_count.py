"""
Day Count Module

Day-count conventions used to turn an annual rate into periodic interest.
All functions are total: unknown conventions fall back to 365 days per year
and 30 days per month, missing dates count as zero days.
"""

from datetime import date
from enum import Enum
from typing import Optional
import calendar
import logging

logger = logging.getLogger("loan_engine.day_count")

DEFAULT_DAYS_IN_YEAR = 365
DEFAULT_DAYS_IN_MONTH = 30


class DaysInYearType(Enum):
    """Days in year conventions"""
    ACTUAL = "ACTUAL"      # 365, or 366 in leap years
    DAYS_360 = "DAYS_360"
    DAYS_364 = "DAYS_364"
    DAYS_365 = "DAYS_365"


class DaysInMonthType(Enum):
    """Days in month conventions"""
    ACTUAL = "ACTUAL"      # Calendar length of the month
    DAYS_30 = "DAYS_30"


def _resolve(enum_type, value):
    """Map an enum member or its value/name onto enum_type, None if unknown"""
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        key = value.strip().upper()
        if key in enum_type.__members__:
            return enum_type[key]
    logger.warning(f"Unknown {enum_type.__name__} {value!r}, using default")
    return None


def resolve_days_in_year_type(convention) -> Optional[DaysInYearType]:
    return _resolve(DaysInYearType, convention)


def resolve_days_in_month_type(convention) -> Optional[DaysInMonthType]:
    return _resolve(DaysInMonthType, convention)


def days_in_year(convention, reference_date: date) -> int:
    """
    Number of days in the year for a convention.

    Args:
        convention: DaysInYearType member or its name
        reference_date: Date whose year decides leap years for ACTUAL

    Returns:
        360, 364, 365 or 366
    """
    convention = resolve_days_in_year_type(convention)
    if convention == DaysInYearType.DAYS_360:
        return 360
    elif convention == DaysInYearType.DAYS_364:
        return 364
    elif convention == DaysInYearType.DAYS_365:
        return 365
    elif convention == DaysInYearType.ACTUAL:
        return 366 if calendar.isleap(reference_date.year) else 365
    return DEFAULT_DAYS_IN_YEAR


def days_in_month(convention, reference_date: date) -> int:
    """Number of days in reference_date's month for a convention"""
    convention = resolve_days_in_month_type(convention)
    if convention == DaysInMonthType.DAYS_30:
        return 30
    elif convention == DaysInMonthType.ACTUAL:
        return calendar.monthrange(reference_date.year, reference_date.month)[1]
    return DEFAULT_DAYS_IN_MONTH


def days_between(start: Optional[date], end: Optional[date]) -> int:
    """Calendar days from start to end; 0 when either date is missing"""
    if start is None or end is None:
        return 0
    return (end - start).days


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)
