"""
Recurring-Expense Projection

DESIGN DECISION: A recurring expense is stored ONCE, with a payment
history keyed by calendar month. "What do I pay in March?" is answered
here, at read time, by projecting every stored expense onto that month.

Both storage backends call project_month; there is exactly one copy of
the inclusion rule.

GUARANTEES:
- Inputs are never mutated (results are deep copies)
- A month's paid status and amount come from payment_history only
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from controlmoney.models.records import Expense, ExpenseFrequency, PaymentRecord


# Months between two occurrences
FREQUENCY_PERIOD_MONTHS = {
    ExpenseFrequency.MONTHLY.value: 1,
    ExpenseFrequency.BI_MONTHLY.value: 2,
    ExpenseFrequency.QUARTERLY.value: 3,
    ExpenseFrequency.ANNUAL.value: 12,
}

INITIAL_HISTORY_MONTHS = 12


def month_bounds(month: datetime) -> tuple[datetime, datetime]:
    """First and last instant of the calendar month containing `month`."""
    start = datetime(month.year, month.month, 1)
    end = start + relativedelta(months=1) - relativedelta(microseconds=1)
    return start, end


def month_diff(start: datetime, target: datetime) -> int:
    """Whole calendar months from start's month to target's month."""
    return (target.year - start.year) * 12 + (target.month - start.month)


def same_month(a: datetime, b: datetime) -> bool:
    return a.year == b.year and a.month == b.month


def occurs_in_month(expense: Expense, month: datetime) -> bool:
    """
    Inclusion rule for one expense and one target month.
    
    One-time: the date falls inside the month.
    Recurring: the month is on or after the start month, within the
    duration cap (if any), and on a period boundary.
    """
    if expense.frequency == ExpenseFrequency.ONE_TIME.value:
        start, end = month_bounds(month)
        return start <= expense.date <= end
    
    diff = month_diff(expense.date, month)
    # A duration of 0 means "no cap"
    if expense.duration and diff >= expense.duration:
        return False
    
    period = FREQUENCY_PERIOD_MONTHS.get(expense.frequency)
    if period is None:
        return False
    return diff >= 0 and diff % period == 0


def find_payment_record(expense: Expense, month: datetime) -> Optional[PaymentRecord]:
    """First payment-history entry dated in the given month."""
    for record in expense.payment_history or []:
        if same_month(record.date, month):
            return record
    return None


def project_expense(expense: Expense, month: datetime) -> Expense:
    """
    Copy of a recurring expense with that month's status applied.
    
    No history entry means unpaid at the template amount. An entry without
    an amount keeps the template amount; an explicit 0 is kept as 0.
    """
    projected = expense.model_copy(deep=True)
    record = find_payment_record(expense, month)
    if record is None:
        projected.is_paid = False
        return projected
    
    projected.is_paid = record.is_paid
    if record.amount is not None:
        projected.amount = record.amount
    return projected


def project_month(expenses: Iterable[Expense], month: datetime) -> list[Expense]:
    """All expenses that occur in `month`, with per-month state applied."""
    result = []
    for expense in expenses:
        if not occurs_in_month(expense, month):
            continue
        if expense.frequency == ExpenseFrequency.ONE_TIME.value:
            result.append(expense.model_copy(deep=True))
        else:
            result.append(project_expense(expense, month))
    return result


def occurrence_date(expense: Expense, month: datetime) -> datetime:
    """The expense's date moved into the target month (day clipped)."""
    return expense.date + relativedelta(months=month_diff(expense.date, month))


def initial_payment_history(
    expense: Expense,
    months: int = INITIAL_HISTORY_MONTHS,
) -> list[PaymentRecord]:
    """Unpaid placeholders for the first `months` monthly occurrences."""
    return [
        PaymentRecord(
            date=expense.date + relativedelta(months=i),
            is_paid=False,
            amount=expense.amount,
        )
        for i in range(months)
    ]


def record_payment(
    expense: Expense,
    month: datetime,
    is_paid: Optional[bool] = None,
    amount: Optional[Decimal] = None,
) -> Expense:
    """
    Set one month's paid status and/or amount.
    
    Updates the history entry for that calendar month, or appends one.
    is_paid=None toggles the current status. The top-level is_paid
    snapshot follows the new value.
    
    Returns:
        A new Expense; the input is not modified.
    """
    updated = expense.model_copy(deep=True)
    
    if updated.frequency == ExpenseFrequency.ONE_TIME.value:
        updated.is_paid = (not updated.is_paid) if is_paid is None else is_paid
        if amount is not None:
            updated.amount = amount
        return updated
    
    history = list(updated.payment_history or [])
    for index, record in enumerate(history):
        if same_month(record.date, month):
            new_status = (not record.is_paid) if is_paid is None else is_paid
            history[index] = record.model_copy(
                update={
                    "is_paid": new_status,
                    "amount": record.amount if amount is None else amount,
                }
            )
            break
    else:
        new_status = True if is_paid is None else is_paid
        history.append(
            PaymentRecord(
                date=occurrence_date(updated, month),
                is_paid=new_status,
                amount=amount,
            )
        )
    
    updated.payment_history = history
    updated.is_paid = new_status
    return updated


def select_upcoming(
    expenses: Iterable[Expense],
    months: int = 3,
    now: Optional[datetime] = None,
) -> list[Expense]:
    """
    Recurring expenses whose next payment falls within `months` from now.
    
    Expenses without a next_payment_date use their start date.
    """
    cutoff = (now or datetime.now()) + relativedelta(months=months)
    upcoming = [
        expense.model_copy(deep=True)
        for expense in expenses
        if expense.frequency != ExpenseFrequency.ONE_TIME.value
        and (expense.next_payment_date or expense.date) <= cutoff
    ]
    upcoming.sort(key=lambda e: e.next_payment_date or e.date)
    return upcoming
