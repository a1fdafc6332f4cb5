"""Read-side calculations: expense projection and financial formulas."""

from controlmoney.queries.projection import (
    find_payment_record,
    initial_payment_history,
    month_bounds,
    month_diff,
    occurs_in_month,
    project_month,
    record_payment,
    select_upcoming,
)

__all__ = [
    "find_payment_record",
    "initial_payment_history",
    "month_bounds",
    "month_diff",
    "occurs_in_month",
    "project_month",
    "record_payment",
    "select_upcoming",
]
