"""Record builders shared by the test modules."""

from datetime import datetime
from decimal import Decimal

from controlmoney.models.records import Balance, Expense, ExpenseFrequency


def make_expense(**overrides) -> Expense:
    data = {
        "amount": Decimal("100"),
        "category": "housing",
        "description": "Rent",
        "date": datetime(2024, 1, 15),
        "frequency": ExpenseFrequency.MONTHLY,
    }
    data.update(overrides)
    return Expense(**data)


def make_balance(**overrides) -> Balance:
    data = {
        "amount": Decimal("1000"),
        "monthly_income": Decimal("2500"),
        "date": datetime(2024, 1, 1),
    }
    data.update(overrides)
    return Balance(**data)
