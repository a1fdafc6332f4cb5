"""
Storage Services Package

Provides the abstract repository contract and its two implementations:
a local embedded object store and a remote libSQL (Turso) database.
"""

from controlmoney.services.storage.interface import (
    BackendConnectionError,
    BalanceRepository,
    ConfigurationError,
    DatabaseRepository,
    ExpenseRepository,
    ExternalSheetRepository,
    InvestmentRepository,
    MigrationError,
    NotFoundError,
    SavingsRepository,
    StorageError,
)
from controlmoney.services.storage.local import LocalRepository, ObjectStore
from controlmoney.services.storage.remote import RemoteRepository
from controlmoney.services.storage.factory import DatabaseConfig, RepositoryFactory
from controlmoney.services.storage.client_state import ClientStateStore

__all__ = [
    # Interfaces
    "BalanceRepository",
    "DatabaseRepository",
    "ExpenseRepository",
    "ExternalSheetRepository",
    "InvestmentRepository",
    "SavingsRepository",
    # Exceptions
    "BackendConnectionError",
    "ConfigurationError",
    "MigrationError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "LocalRepository",
    "ObjectStore",
    "RemoteRepository",
    # Construction
    "ClientStateStore",
    "DatabaseConfig",
    "RepositoryFactory",
]
