"""Data models package."""

from controlmoney.models.records import (
    BackendType,
    Balance,
    CloudBackendConfig,
    CompoundingFrequency,
    Expense,
    ExpenseFrequency,
    ExternalSheetConfig,
    Investment,
    InvestmentType,
    MonthlyBalance,
    PaymentRecord,
    SavingsGoal,
    Timestamp,
)
from controlmoney.models.sync import (
    SyncConflict,
    SyncMetadata,
    SyncResult,
    SyncStrategy,
)

__all__ = [
    "BackendType",
    "Balance",
    "CloudBackendConfig",
    "CompoundingFrequency",
    "Expense",
    "ExpenseFrequency",
    "ExternalSheetConfig",
    "Investment",
    "InvestmentType",
    "MonthlyBalance",
    "PaymentRecord",
    "SavingsGoal",
    "Timestamp",
    "SyncConflict",
    "SyncMetadata",
    "SyncResult",
    "SyncStrategy",
]
