"""
Core Data Models for Control Money

These models define the schemas for every record that crosses the
repository boundary. They are designed to:
1. Enforce type safety at runtime
2. Provide validation error messages that can be shown to the user as-is
3. Dump to plain dicts that both storage backends understand

DESIGN DECISION: Date-valued fields are naive datetimes in local time.
A plain date is promoted to midnight and an aware datetime is converted
to local time, so values coming from either backend compare equal.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# SHARED FIELD TYPES
# =============================================================================

def _coerce_datetime(value):
    """Accept dates, ISO strings and datetimes for date-valued fields."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        # ValueError surfaces as a pydantic validation error
        return date_parser.isoparse(value.strip())
    return value


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


Timestamp = Annotated[
    datetime,
    BeforeValidator(_coerce_datetime),
    AfterValidator(_to_local_naive),
]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseFrequency(str, Enum):
    """
    How often an expense repeats.
    
    DESIGN DECISION: A recurring expense is stored ONCE. Its occurrences in
    a given month are projected at read time (see queries.projection).
    """
    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    BI_MONTHLY = "bi-monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class InvestmentType(str, Enum):
    """Supported investment products."""
    FIXED_DEPOSIT = "fixed-deposit"
    SAVINGS_ACCOUNT = "savings-account"
    GOVERNMENT_BOND = "government-bond"
    MUTUAL_FUND = "mutual-fund"
    OTHER = "other"


class CompoundingFrequency(str, Enum):
    """How often interest is compounded."""
    DAILY = "daily"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi-annual"
    ANNUAL = "annual"


class BackendType(str, Enum):
    """
    Storage backends. Closed set.
    
    The remote backend is tagged "turso" because that is the value users
    put in configuration and that the client state file stores.
    """
    LOCAL = "local"
    TURSO = "turso"


# =============================================================================
# EXPENSES
# =============================================================================

class PaymentRecord(BaseModel):
    """
    Paid status of one occurrence of a recurring expense.
    
    The amount, when present, overrides the expense's template amount
    for that month only.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    date: Timestamp
    is_paid: bool = False
    amount: Optional[Decimal] = None


class Expense(BaseModel):
    """
    A one-time or recurring expense.
    
    CRITICAL: For recurring expenses the top-level is_paid/amount are the
    TEMPLATE values. The state of a specific month lives in
    payment_history and must be read through the projector.
    """
    model_config = ConfigDict(
        use_enum_values=True,
        validate_default=True,
        str_strip_whitespace=True,
    )
    
    id: Optional[int] = None
    amount: Decimal = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    date: Timestamp
    frequency: ExpenseFrequency = ExpenseFrequency.ONE_TIME
    next_payment_date: Optional[Timestamp] = None
    is_paid: bool = False
    payment_history: Optional[list[PaymentRecord]] = None
    duration: Optional[int] = Field(
        default=None,
        ge=0,
        description="Number of months the expense recurs for"
    )
    
    @property
    def is_recurring(self) -> bool:
        return self.frequency != ExpenseFrequency.ONE_TIME


# =============================================================================
# BALANCE
# =============================================================================

class Balance(BaseModel):
    """
    The running balance.
    
    Only one record is meaningful: updates always go into the first
    stored record.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    id: Optional[int] = None
    amount: Decimal = Decimal("0")
    monthly_income: Decimal = Decimal("0")
    date: Timestamp = Field(default_factory=datetime.now)
    projected_amount: Optional[Decimal] = None
    real_amount: Optional[Decimal] = None


class MonthlyBalance(BaseModel):
    """Summary of one month: what goes out against what comes in."""
    
    total_expenses: Decimal
    remaining_balance: Decimal
    monthly_income: Decimal
    current_balance: Decimal


# =============================================================================
# SAVINGS & INVESTMENTS
# =============================================================================

class SavingsGoal(BaseModel):
    """
    A savings target.
    
    completed == current_amount >= target_amount holds only after
    SavingsRepository.update_amount; a generic update stores what it is given.
    """
    model_config = ConfigDict(
        use_enum_values=True,
        validate_default=True,
        str_strip_whitespace=True,
    )
    
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    monthly_contribution: Decimal = Field(default=Decimal("0"), ge=0)
    start_date: Timestamp
    target_date: Optional[Timestamp] = None
    completed: bool = False


class Investment(BaseModel):
    """An interest-bearing investment."""
    model_config = ConfigDict(
        use_enum_values=True,
        validate_default=True,
        str_strip_whitespace=True,
    )
    
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    type: InvestmentType = InvestmentType.OTHER
    initial_amount: Decimal = Field(..., ge=0)
    current_amount: Decimal = Field(..., ge=0)
    annual_rate: Decimal = Field(..., ge=0, description="Percent per year")
    start_date: Timestamp
    term_months: int = Field(..., ge=0)
    maturity_date: Optional[Timestamp] = None
    compounding_frequency: CompoundingFrequency = CompoundingFrequency.MONTHLY
    is_active: bool = True
    notes: Optional[str] = None
    
    @model_validator(mode="after")
    def derive_maturity_date(self) -> "Investment":
        """Maturity is derived once, when the investment is first built."""
        if self.maturity_date is None:
            self.maturity_date = self.start_date + relativedelta(months=self.term_months)
        return self


# =============================================================================
# CONNECTION CONFIGS
# =============================================================================

_SHEET_FIELD_LABELS = {
    "client_id": "Client ID",
    "client_secret": "Client secret",
    "spreadsheet_id": "Spreadsheet ID",
    "sheet_name": "Sheet name",
}


class ExternalSheetConfig(BaseModel):
    """
    Google Sheets connection used by the spreadsheet export/import.
    
    Validation messages are shown directly to the user.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    id: Optional[int] = None
    client_id: str
    client_secret: str
    access_token: str = ""
    refresh_token: str = ""
    token_expiry: Optional[Timestamp] = None
    spreadsheet_id: str
    sheet_name: str = "Control Money"
    last_sync: Optional[Timestamp] = None
    
    @field_validator("client_id", "client_secret", "spreadsheet_id", "sheet_name")
    @classmethod
    def require_text(cls, v: str, info) -> str:
        if not v or not v.strip():
            raise ValueError(f"{_SHEET_FIELD_LABELS[info.field_name]} is required")
        return v.strip()
    
    @property
    def is_token_expired(self) -> bool:
        return self.token_expiry is None or self.token_expiry <= datetime.now()


class CloudBackendConfig(BaseModel):
    """Saved connection details for the remote database."""
    
    provider: Literal["turso"] = "turso"
    url: str = Field(..., min_length=1)
    auth_token: str = Field(..., min_length=1)
    updated_at: Timestamp = Field(default_factory=datetime.now)
