"""
Rate Conventions Module

Converts monthly loan terms into the daily quantities every engine
calculation compounds with, plus the calendar helpers they share.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .loans import Loan

ONE = Decimal('1')
ZERO = Decimal('0')
DAYS_PER_YEAR = Decimal('365')
MONTHS_PER_YEAR = Decimal('12')
# Average month length used when weighting investor participation
PARTICIPATION_DAYS_PER_MONTH = Decimal('30.4167')


def daily_rate(monthly_rate: Decimal) -> Decimal:
    """Effective daily rate equivalent to a monthly compounded rate"""
    return (ONE + monthly_rate) ** (MONTHS_PER_YEAR / DAYS_PER_YEAR) - ONE


def daily_fee(monthly_fee: Decimal) -> Decimal:
    """Technology fee accrued per calendar day"""
    return monthly_fee * MONTHS_PER_YEAR / DAYS_PER_YEAR


def participation_daily_rate(monthly_rate: Decimal) -> Decimal:
    """Daily rate used to discount disbursements when weighting participation"""
    return (ONE + monthly_rate) ** (ONE / PARTICIPATION_DAYS_PER_MONTH) - ONE


def monthly_rate_from_percent(percent: Decimal) -> Decimal:
    """2.1 -> 0.021"""
    return Decimal(percent) / Decimal('100')


def growth_factor(rate: Decimal, days: int) -> Decimal:
    """(1 + rate) ** days; negative days discount"""
    return (ONE + rate) ** days


def compound_interest(balance: Decimal, rate: Decimal, days: int) -> Decimal:
    """Interest accrued on balance over days at a daily rate"""
    return balance * (growth_factor(rate, days) - ONE)


def days_between(start: date, end: date) -> int:
    """Signed whole-day difference, end - start"""
    return (end - start).days


def set_day(value: date, day: int) -> date:
    """Same month as value, day clamped to the month length"""
    last_day = calendar.monthrange(value.year, value.month)[1]
    return date(value.year, value.month, min(day, last_day))


def add_months(start_date: date, months: int) -> date:
    """Add months, clamping the day to the target month length"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass(frozen=True)
class LoanRates:
    """Daily quantities derived from a loan's monthly terms"""
    monthly_rate: Decimal
    daily_rate: Decimal
    daily_fee: Decimal
    participation_rate: Decimal

    @classmethod
    def for_loan(cls, loan: 'Loan') -> 'LoanRates':
        monthly = loan.monthly_interest_rate or ZERO
        fee = loan.technology_fee.amount if loan.technology_fee is not None else ZERO
        return cls(
            monthly_rate=monthly,
            daily_rate=daily_rate(monthly),
            daily_fee=daily_fee(fee),
            participation_rate=participation_daily_rate(monthly),
        )
