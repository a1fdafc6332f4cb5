"""
Abstract Storage Interface

DESIGN DECISION: We define one abstract repository contract and one
concrete implementation per backend (local embedded store, remote
libSQL database). Callers only ever see DatabaseRepository, so the
backend can be swapped at runtime.

Behaviour that does not depend on the storage engine (month projection,
balance upsert, savings completion, investment valuation, backups) is
implemented ONCE on these base classes, so both backends behave the same.

GUARANTEES (every backend):
- create returns a copy carrying the backend-assigned id
- update of an unknown id raises NotFoundError
- delete never raises; it returns False for a missing id or a failure
- find_all returns records in id order
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel

from controlmoney.audit import get_logger
from controlmoney.models.records import (
    BackendType,
    Balance,
    Expense,
    ExternalSheetConfig,
    Investment,
    MonthlyBalance,
    SavingsGoal,
)
from controlmoney.models.sync import SyncMetadata
from controlmoney.queries.finance import (
    calculate_current_value,
    calculate_estimated_completion,
)
from controlmoney.queries.projection import month_bounds, project_month, select_upcoming
from controlmoney.services.storage.serialization import decode_backup, encode_backup


logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Export key -> sub-repository attribute. Order is the import order.
EXPORT_TABLES = ("expenses", "balance", "savings", "investments", "sheet_config")


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class NotFoundError(StorageError):
    """Record not found in storage."""
    pass


class BackendConnectionError(StorageError):
    """Failed to connect to the storage engine."""
    pass


class ConfigurationError(StorageError):
    """Backend requested without the parameters it needs."""
    pass


class MigrationError(StorageError):
    """Local schema upgrade failed; the store must not be used."""
    pass


# =============================================================================
# ENTITY REPOSITORIES
# =============================================================================

class EntityRepository(ABC, Generic[ModelT]):
    """
    CRUD contract shared by every entity type.
    
    Records cross this boundary as copies: mutating a returned model
    never changes stored data.
    """
    
    model: ClassVar[type[BaseModel]]
    
    @abstractmethod
    async def create(self, entity: ModelT) -> ModelT:
        """
        Store a new record.
        
        Args:
            entity: The record to store; its id is ignored
            
        Returns:
            A copy with the assigned id
        """
        pass
    
    @abstractmethod
    async def update(self, entity: ModelT) -> ModelT:
        """
        Overwrite a stored record.
        
        Raises:
            StorageError: If the entity has no id
            NotFoundError: If no record has that id
        """
        pass
    
    @abstractmethod
    async def delete(self, entity_id: int) -> bool:
        """
        Remove a record.
        
        Returns:
            True if a record was removed, False if missing or on failure
        """
        pass
    
    @abstractmethod
    async def find_by_id(self, entity_id: int) -> Optional[ModelT]:
        pass
    
    @abstractmethod
    async def find_all(self) -> list[ModelT]:
        pass
    
    @abstractmethod
    async def clear(self) -> None:
        """Remove every record of this type."""
        pass
    
    @abstractmethod
    async def insert_many(self, records: list[dict]) -> int:
        """
        Bulk insert dumped records, keeping their ids when present.
        
        Returns:
            Number of records inserted
        """
        pass
    
    def _require_id(self, entity: ModelT) -> int:
        entity_id = getattr(entity, "id", None)
        if entity_id is None:
            raise StorageError(f"Cannot update {type(entity).__name__} without an id")
        return entity_id


class ExpenseRepository(EntityRepository[Expense]):
    model = Expense
    
    @abstractmethod
    async def find_by_category(self, category: str) -> list[Expense]:
        pass
    
    @abstractmethod
    async def find_by_frequency(self, frequency: str) -> list[Expense]:
        pass
    
    @abstractmethod
    async def find_by_paid_status(self, is_paid: bool) -> list[Expense]:
        pass
    
    async def find_by_month(self, month: datetime) -> list[Expense]:
        """Expenses occurring in the month, with that month's paid state."""
        return project_month(await self.find_all(), month)
    
    async def get_upcoming(self, months: int = 3) -> list[Expense]:
        """Recurring expenses due within `months` from now."""
        return select_upcoming(await self.find_all(), months)


class BalanceRepository(EntityRepository[Balance]):
    model = Balance
    
    async def get_current(self) -> Optional[Balance]:
        """The first stored balance (lowest id), if any."""
        records = await self.find_all()
        return records[0] if records else None
    
    async def find_by_month(self, month: datetime) -> list[Balance]:
        start, end = month_bounds(month)
        return [b for b in await self.find_all() if start <= b.date <= end]
    
    async def upsert(self, balance: Balance) -> Balance:
        """
        Write into the first existing record, or create one.
        
        CRITICAL: Never creates a second balance record.
        """
        current = await self.get_current()
        if current is None:
            return await self.create(balance)
        return await self.update(balance.model_copy(update={"id": current.id}))


class SavingsRepository(EntityRepository[SavingsGoal]):
    model = SavingsGoal
    
    @abstractmethod
    async def find_by_status(self, completed: bool) -> list[SavingsGoal]:
        pass
    
    async def update_amount(self, goal_id: int, amount: Decimal) -> SavingsGoal:
        """
        Set the saved amount and recompute completion.
        
        An open goal with a monthly contribution gets its target_date
        re-estimated from that contribution.
        
        Raises:
            NotFoundError: If the goal doesn't exist
        """
        goal = await self.find_by_id(goal_id)
        if goal is None:
            raise NotFoundError(f"Savings goal not found: {goal_id}")
        
        goal.current_amount = Decimal(amount)
        goal.completed = goal.current_amount >= goal.target_amount
        if not goal.completed and goal.monthly_contribution > 0:
            goal.target_date = calculate_estimated_completion(
                goal.current_amount,
                goal.target_amount,
                goal.monthly_contribution,
            )
        return await self.update(goal)


class InvestmentRepository(EntityRepository[Investment]):
    model = Investment
    
    @abstractmethod
    async def find_by_type(self, investment_type: str) -> list[Investment]:
        pass
    
    @abstractmethod
    async def find_active(self) -> list[Investment]:
        pass
    
    async def update_current_value(
        self,
        investment_id: int,
        as_of: Optional[datetime] = None,
    ) -> Investment:
        """
        Recompute current_amount from the compounding formula.
        
        Raises:
            NotFoundError: If the investment doesn't exist
        """
        investment = await self.find_by_id(investment_id)
        if investment is None:
            raise NotFoundError(f"Investment not found: {investment_id}")
        investment.current_amount = calculate_current_value(investment, as_of)
        return await self.update(investment)
    
    async def update_all_current_values(
        self,
        as_of: Optional[datetime] = None,
    ) -> list[Investment]:
        updated = []
        for investment in await self.find_active():
            updated.append(await self.update_current_value(investment.id, as_of))
        return updated


class ExternalSheetRepository(EntityRepository[ExternalSheetConfig]):
    model = ExternalSheetConfig
    
    @abstractmethod
    async def find_by_last_sync(self, since: datetime) -> list[ExternalSheetConfig]:
        """Configs synced at or after `since`."""
        pass
    
    async def get_active(self) -> Optional[ExternalSheetConfig]:
        """The first stored config (lowest id), if any."""
        records = await self.find_all()
        return records[0] if records else None
    
    async def update_tokens(
        self,
        config_id: int,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: datetime,
    ) -> ExternalSheetConfig:
        """
        Store refreshed OAuth tokens. A None refresh token keeps the old one.
        
        Raises:
            NotFoundError: If the config doesn't exist
        """
        config = await self.find_by_id(config_id)
        if config is None:
            raise NotFoundError(f"Sheet config not found: {config_id}")
        config.access_token = access_token
        if refresh_token:
            config.refresh_token = refresh_token
        config.token_expiry = token_expiry
        return await self.update(config)


# =============================================================================
# DATABASE
# =============================================================================

class DatabaseRepository(ABC):
    """
    One backend: five entity repositories plus whole-database operations.
    
    Subclasses set backend_type and the five sub-repositories.
    """
    
    backend_type: ClassVar[BackendType]
    
    expenses: ExpenseRepository
    balance: BalanceRepository
    savings: SavingsRepository
    investments: InvestmentRepository
    external_sheets: ExternalSheetRepository
    
    def _table(self, name: str) -> EntityRepository:
        if name == "sheet_config":
            return self.external_sheets
        return getattr(self, name)
    
    async def export_data(self) -> dict[str, list[dict]]:
        """Every entity table as dumped records, in id order."""
        data = {}
        for name in EXPORT_TABLES:
            records = await self._table(name).find_all()
            data[name] = [record.model_dump() for record in records]
        return data
    
    async def import_data(self, data: dict[str, list[dict]]) -> int:
        """
        Overwrite each table present in `data`.
        
        Tables missing from `data` are left alone. Ids are preserved.
        
        Returns:
            Number of records written
        """
        written = 0
        for name in EXPORT_TABLES:
            if name not in data:
                continue
            table = self._table(name)
            await table.clear()
            written += await table.insert_many(list(data[name] or []))
        return written
    
    async def clear_all(self) -> None:
        """Empty every entity table. Sync bookkeeping is kept."""
        for name in EXPORT_TABLES:
            await self._table(name).clear()
    
    async def backup(self) -> str:
        """Full export as backup JSON."""
        return encode_backup(await self.export_data())
    
    async def restore(self, text: str) -> int:
        """
        Overwrite tables from backup JSON.
        
        Raises:
            ValueError: If the backup cannot be parsed
        """
        return await self.import_data(decode_backup(text))
    
    async def calculate_monthly_balance(self, month: datetime) -> Optional[MonthlyBalance]:
        """
        Summary of one month against the current balance.
        
        Returns None when no balance has been recorded yet.
        """
        balance = await self.balance.get_current()
        if balance is None:
            return None
        expenses = await self.expenses.find_by_month(month)
        total = sum((e.amount for e in expenses), Decimal("0"))
        return MonthlyBalance(
            total_expenses=total,
            remaining_balance=balance.amount + balance.monthly_income - total,
            monthly_income=balance.monthly_income,
            current_balance=balance.amount,
        )
    
    @abstractmethod
    async def get_last_sync(self) -> Optional[datetime]:
        """When this backend last took part in a sync, if ever."""
        pass
    
    @abstractmethod
    async def record_sync(self, metadata: SyncMetadata) -> None:
        """Store sync bookkeeping (per-table counts, checksum, time)."""
        pass
    
    @abstractmethod
    async def close(self) -> None:
        pass
