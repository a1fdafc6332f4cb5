"""
Financial Formulas

Deterministic calculations used by the savings and investment
repositories. Amounts are Decimals rounded to cents.
"""

import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from controlmoney.models.records import CompoundingFrequency, Investment


# Compounding periods per year
COMPOUNDING_PERIODS = {
    CompoundingFrequency.DAILY.value: 365,
    CompoundingFrequency.MONTHLY.value: 12,
    CompoundingFrequency.QUARTERLY.value: 4,
    CompoundingFrequency.SEMI_ANNUAL.value: 2,
    CompoundingFrequency.ANNUAL.value: 1,
}

DAYS_PER_YEAR = 365
DAYS_PER_MONTH = 30

CENTS = Decimal("0.01")


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def compound_interest(
    principal: Decimal,
    annual_rate: Decimal,
    years: float,
    frequency: str = CompoundingFrequency.MONTHLY.value,
) -> Decimal:
    """
    Future value of `principal` after `years`.
    
    Args:
        principal: Starting amount
        annual_rate: Yearly rate in percent (7.5 means 7.5%)
        years: Elapsed time, may be fractional
        frequency: Compounding frequency value
    """
    if years <= 0:
        return _money(float(principal))
    periods = COMPOUNDING_PERIODS.get(frequency, 12)
    rate = float(annual_rate) / 100
    value = float(principal) * (1 + rate / periods) ** (periods * years)
    return _money(value)


def calculate_maturity_date(start_date: datetime, term_months: int) -> datetime:
    return start_date + relativedelta(months=term_months)


def calculate_maturity_value(investment: Investment) -> Decimal:
    """Value at the end of the term."""
    return compound_interest(
        investment.initial_amount,
        investment.annual_rate,
        investment.term_months / 12,
        investment.compounding_frequency,
    )


def calculate_current_value(
    investment: Investment,
    as_of: Optional[datetime] = None,
) -> Decimal:
    """
    Value today. Growth stops at the maturity date.
    
    Inactive investments keep their stored current amount.
    """
    if not investment.is_active:
        return investment.current_amount
    
    as_of = as_of or datetime.now()
    maturity = investment.maturity_date or calculate_maturity_date(
        investment.start_date, investment.term_months
    )
    end = min(as_of, maturity)
    elapsed_days = (end - investment.start_date).days
    if elapsed_days <= 0:
        return _money(float(investment.initial_amount))
    return compound_interest(
        investment.initial_amount,
        investment.annual_rate,
        elapsed_days / DAYS_PER_YEAR,
        investment.compounding_frequency,
    )


def days_to_maturity(investment: Investment, as_of: Optional[datetime] = None) -> int:
    """Days left until maturity, never negative."""
    as_of = as_of or datetime.now()
    maturity = investment.maturity_date or calculate_maturity_date(
        investment.start_date, investment.term_months
    )
    return max(0, (maturity - as_of).days)


def calculate_estimated_completion(
    current_amount: Decimal,
    target_amount: Decimal,
    monthly_contribution: Decimal,
    from_date: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    When a savings goal is reached at the given monthly contribution.
    
    Returns None when there is no contribution to extrapolate from.
    """
    from_date = from_date or datetime.now()
    remaining = target_amount - current_amount
    if remaining <= 0:
        return from_date
    if monthly_contribution <= 0:
        return None
    months = math.ceil(remaining / monthly_contribution)
    return from_date + timedelta(days=months * DAYS_PER_MONTH)


def calculate_monthly_contribution(
    current_amount: Decimal,
    target_amount: Decimal,
    target_date: datetime,
    from_date: Optional[datetime] = None,
) -> Decimal:
    """Contribution per month needed to reach the target by target_date."""
    from_date = from_date or datetime.now()
    remaining = target_amount - current_amount
    if remaining <= 0:
        return Decimal("0.00")
    months = max(1, math.ceil((target_date - from_date).days / DAYS_PER_MONTH))
    return (remaining / months).quantize(CENTS, rounding=ROUND_HALF_UP)
