"""
Main Orchestrator for Control Money

This module ties together all the components and defines the
surface a UI consumes:
1. BackendSelector - which backend is active, and swapping it at runtime
2. FinanceService - one coroutine per user-facing operation
3. create_app_components - wiring from settings

DESIGN DECISION: The selector is an explicit object, created once and
passed to whoever needs storage. There is no module-level "current
repository". Swaps are serialized by a lock, and interested parties
subscribe to be told when the backend changes.

Backend resolution:
    preferred type (client state) -> CONTROLMONEY_DB_TYPE -> local
A remote choice without usable connection details, or a remote backend
that fails to construct, degrades to local. Only a local failure is fatal.
"""

import asyncio
import inspect
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from controlmoney.audit import AuditLogger, get_logger
from controlmoney.config import get_settings
from controlmoney.config.settings import RemoteDatabaseSettings, Settings, StorageSettings
from controlmoney.models.records import (
    BackendType,
    Balance,
    CloudBackendConfig,
    Expense,
    ExternalSheetConfig,
    Investment,
    MonthlyBalance,
    SavingsGoal,
)
from controlmoney.models.sync import SyncResult, SyncStrategy
from controlmoney.queries.projection import initial_payment_history, record_payment
from controlmoney.services.sheets import GoogleSheetsSyncService
from controlmoney.services.storage import (
    ClientStateStore,
    DatabaseConfig,
    DatabaseRepository,
    NotFoundError,
    RepositoryFactory,
)
from controlmoney.services.sync import SyncService


logger = get_logger(__name__)

BackendObserver = Callable[[BackendType], Any]


class BackendSelector:
    """
    Owns the active DatabaseRepository.
    
    GUARANTEES:
    - Repeated get_repository calls return the same instance until a swap
    - The type actually running is persisted as the active type
    - Observers are notified after every swap; one failing observer does
      not stop the others
    """
    
    def __init__(
        self,
        factory: RepositoryFactory,
        state: ClientStateStore,
        storage_settings: StorageSettings,
        remote_settings: RemoteDatabaseSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._factory = factory
        self._state = state
        self._storage_settings = storage_settings
        self._remote_settings = remote_settings
        self._audit = audit_logger or AuditLogger()
        self._repository: Optional[DatabaseRepository] = None
        self._lock = asyncio.Lock()
        self._observers: list[BackendObserver] = []
    
    @property
    def sync_enabled(self) -> bool:
        return self._storage_settings.sync_enabled
    
    @property
    def active_backend(self) -> Optional[BackendType]:
        if self._repository is None:
            return None
        return self._repository.backend_type
    
    def requested_backend(self) -> BackendType:
        """Preferred type from client state, then settings, then local."""
        preferred = self._state.get_preferred_backend()
        if preferred is not None:
            return preferred
        try:
            return BackendType(self._storage_settings.db_type)
        except ValueError:
            return BackendType.LOCAL
    
    def remote_credentials(self) -> tuple[Optional[str], Optional[str]]:
        """Saved cloud config first, environment second."""
        cloud = self._state.get_cloud_config()
        if cloud is not None:
            return cloud.url, cloud.auth_token
        return self._remote_settings.database_url, self._remote_settings.auth_token
    
    def local_config(self) -> DatabaseConfig:
        return DatabaseConfig(
            type=BackendType.LOCAL,
            local_path=self._storage_settings.local_db_path,
        )
    
    def remote_config(self) -> Optional[DatabaseConfig]:
        """Remote config, or None when URL or token is missing."""
        url, auth_token = self.remote_credentials()
        if not (url and auth_token):
            return None
        return DatabaseConfig(
            type=BackendType.TURSO,
            local_path=self._storage_settings.local_db_path,
            url=url,
            auth_token=auth_token,
        )
    
    def resolve_config(self) -> DatabaseConfig:
        requested = self.requested_backend()
        if requested == BackendType.TURSO:
            config = self.remote_config()
            if config is not None:
                return config
            self._audit.log_backend_fallback(
                requested.value, "remote URL or auth token not configured"
            )
        return self.local_config()
    
    async def _build(self) -> DatabaseRepository:
        config = self.resolve_config()
        try:
            repository = await self._factory.create(config)
        except Exception as e:
            if config.type == BackendType.LOCAL:
                raise
            self._audit.log_backend_fallback(config.type, str(e))
            repository = await self._factory.create(self.local_config())
        
        self._state.set_active_backend(repository.backend_type)
        self._audit.log_backend_selected(
            self.requested_backend().value, repository.backend_type.value
        )
        return repository
    
    async def get_repository(self) -> DatabaseRepository:
        """The active backend, constructed on first use."""
        if self._repository is not None:
            return self._repository
        async with self._lock:
            if self._repository is None:
                self._repository = await self._build()
            return self._repository
    
    async def refresh(self) -> DatabaseRepository:
        """
        Close the current backend, construct a new one and notify observers.
        
        Reads already holding the previous repository may still finish
        against it.
        """
        async with self._lock:
            previous = self._repository
            previous_type = previous.backend_type.value if previous else None
            self._repository = None
            if previous is not None:
                try:
                    await previous.close()
                except Exception as e:
                    logger.warning("backend_close_failed", backend=previous_type, error=str(e))
            repository = await self._build()
            self._repository = repository
        
        self._audit.log_backend_switched(previous_type, repository.backend_type.value)
        await self._notify(repository.backend_type)
        return repository
    
    async def set_preferred_backend(self, backend: BackendType) -> DatabaseRepository:
        """Persist the user's choice, then swap."""
        self._state.set_preferred_backend(BackendType(backend))
        return await self.refresh()
    
    def subscribe(self, observer: BackendObserver) -> Callable[[], None]:
        """
        Register a backend-change observer (sync or async callable).
        
        Returns:
            A function that unsubscribes the observer
        """
        self._observers.append(observer)
        
        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)
        
        return unsubscribe
    
    async def _notify(self, backend: BackendType) -> None:
        for observer in list(self._observers):
            try:
                result = observer(backend)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._audit.log_observer_failed(
                    getattr(observer, "__name__", repr(observer)), str(e)
                )
    
    async def close(self) -> None:
        async with self._lock:
            if self._repository is not None:
                await self._repository.close()
                self._repository = None


class FinanceService:
    """
    Stable async surface used by the UI.
    
    Every call goes through the selector, so a backend swap takes effect
    on the next call without the UI holding repository references.
    """
    
    def __init__(
        self,
        selector: BackendSelector,
        factory: RepositoryFactory,
        state: ClientStateStore,
        sync_service: Optional[SyncService] = None,
        sheets_service: Optional[GoogleSheetsSyncService] = None,
    ):
        self._selector = selector
        self._factory = factory
        self._state = state
        self._sync = sync_service or SyncService()
        self._sheets = sheets_service or GoogleSheetsSyncService(selector.get_repository)
    
    async def _repo(self) -> DatabaseRepository:
        return await self._selector.get_repository()
    
    # ===== EXPENSES =====
    
    async def add_expense(self, expense: Expense) -> Expense:
        """
        Store a new expense.
        
        A new recurring expense without history gets twelve unpaid monthly
        placeholders at its template amount.
        """
        if expense.is_recurring and not expense.payment_history:
            expense = expense.model_copy(
                update={"payment_history": initial_payment_history(expense)}
            )
        return await (await self._repo()).expenses.create(expense)
    
    async def get_expenses(self) -> list[Expense]:
        return await (await self._repo()).expenses.find_all()
    
    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        return await (await self._repo()).expenses.find_by_id(expense_id)
    
    async def update_expense(self, expense: Expense) -> Expense:
        return await (await self._repo()).expenses.update(expense)
    
    async def delete_expense(self, expense_id: int) -> bool:
        return await (await self._repo()).expenses.delete(expense_id)
    
    async def get_expenses_by_month(self, month: datetime) -> list[Expense]:
        return await (await self._repo()).expenses.find_by_month(month)
    
    async def get_expenses_by_category(self, category: str) -> list[Expense]:
        return await (await self._repo()).expenses.find_by_category(category)
    
    async def get_upcoming_expenses(self, months: int = 3) -> list[Expense]:
        return await (await self._repo()).expenses.get_upcoming(months)
    
    async def set_payment_status(
        self,
        expense_id: int,
        month: datetime,
        is_paid: Optional[bool] = None,
        amount: Optional[Decimal] = None,
    ) -> Expense:
        """
        Set (or toggle, when is_paid is None) one month's paid status.
        
        Raises:
            NotFoundError: If the expense doesn't exist
        """
        repository = await self._repo()
        expense = await repository.expenses.find_by_id(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return await repository.expenses.update(
            record_payment(expense, month, is_paid=is_paid, amount=amount)
        )
    
    # ===== BALANCE =====
    
    async def get_current_balance(self) -> Balance:
        """The current balance, or a zero-valued default."""
        balance = await (await self._repo()).balance.get_current()
        return balance or Balance(amount=Decimal("0"), monthly_income=Decimal("0"))
    
    async def update_balance(self, balance: Balance) -> Balance:
        return await (await self._repo()).balance.upsert(balance)
    
    async def get_monthly_balance(self, month: datetime) -> Optional[MonthlyBalance]:
        return await (await self._repo()).calculate_monthly_balance(month)
    
    # ===== SAVINGS =====
    
    async def add_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        return await (await self._repo()).savings.create(goal)
    
    async def get_savings_goals(self) -> list[SavingsGoal]:
        return await (await self._repo()).savings.find_all()
    
    async def get_savings_goal(self, goal_id: int) -> Optional[SavingsGoal]:
        return await (await self._repo()).savings.find_by_id(goal_id)
    
    async def update_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        return await (await self._repo()).savings.update(goal)
    
    async def delete_savings_goal(self, goal_id: int) -> bool:
        return await (await self._repo()).savings.delete(goal_id)
    
    async def update_savings_amount(self, goal_id: int, amount: Decimal) -> SavingsGoal:
        return await (await self._repo()).savings.update_amount(goal_id, amount)
    
    # ===== INVESTMENTS =====
    
    async def add_investment(self, investment: Investment) -> Investment:
        return await (await self._repo()).investments.create(investment)
    
    async def get_investments(self) -> list[Investment]:
        return await (await self._repo()).investments.find_all()
    
    async def get_investment(self, investment_id: int) -> Optional[Investment]:
        return await (await self._repo()).investments.find_by_id(investment_id)
    
    async def update_investment(self, investment: Investment) -> Investment:
        return await (await self._repo()).investments.update(investment)
    
    async def delete_investment(self, investment_id: int) -> bool:
        return await (await self._repo()).investments.delete(investment_id)
    
    async def refresh_investment_values(self) -> list[Investment]:
        return await (await self._repo()).investments.update_all_current_values()
    
    # ===== GOOGLE SHEETS =====
    
    async def get_sheet_config(self) -> Optional[ExternalSheetConfig]:
        return await (await self._repo()).external_sheets.get_active()
    
    async def save_sheet_config(self, config: ExternalSheetConfig) -> ExternalSheetConfig:
        """Write into the active config, or create the first one."""
        repository = await self._repo()
        current = await repository.external_sheets.get_active()
        if current is None:
            return await repository.external_sheets.create(config)
        return await repository.external_sheets.update(
            config.model_copy(update={"id": current.id})
        )
    
    async def delete_sheet_config(self, config_id: int) -> bool:
        return await (await self._repo()).external_sheets.delete(config_id)
    
    async def export_to_sheet(self):
        return await self._sheets.export_to_sheet()
    
    async def import_from_sheet(self):
        return await self._sheets.import_from_sheet()
    
    # ===== WHOLE DATABASE =====
    
    async def export_data(self) -> dict[str, list[dict]]:
        return await (await self._repo()).export_data()
    
    async def import_data(self, data: dict[str, list[dict]]) -> int:
        return await (await self._repo()).import_data(data)
    
    async def clear_all(self) -> None:
        await (await self._repo()).clear_all()
    
    async def backup(self) -> str:
        return await (await self._repo()).backup()
    
    async def restore(self, text: str) -> int:
        return await (await self._repo()).restore(text)
    
    # ===== BACKENDS =====
    
    @property
    def active_backend(self) -> Optional[BackendType]:
        return self._selector.active_backend
    
    def subscribe(self, observer: BackendObserver) -> Callable[[], None]:
        return self._selector.subscribe(observer)
    
    async def set_preferred_backend(self, backend: BackendType) -> BackendType:
        repository = await self._selector.set_preferred_backend(backend)
        return repository.backend_type
    
    async def switch_backend(self) -> BackendType:
        """Re-resolve and rebuild the backend from the current settings and state."""
        repository = await self._selector.refresh()
        return repository.backend_type
    
    def save_cloud_config(self, url: str, auth_token: str) -> CloudBackendConfig:
        """Remember remote connection details on this client."""
        config = CloudBackendConfig(url=url, auth_token=auth_token)
        self._state.save_cloud_config(config)
        return config
    
    def get_cloud_config(self) -> Optional[CloudBackendConfig]:
        return self._state.get_cloud_config()
    
    def forget_cloud_config(self) -> None:
        """Drop the saved remote connection; environment settings apply again."""
        self._state.clear_cloud_config()
    
    async def sync_cloud(self, direction: Optional[SyncStrategy] = None) -> SyncResult:
        """
        Synchronize the local and remote backends.
        
        Both are built directly by the factory, outside the selector.
        
        Args:
            direction: LOCAL_TO_REMOTE or REMOTE_TO_LOCAL to force a copy;
                       None compares metadata and picks the direction
        """
        if not self._selector.sync_enabled:
            return SyncResult(success=False, error="Cloud sync is disabled")
        remote_config = self._selector.remote_config()
        if remote_config is None:
            return SyncResult(success=False, error="Remote database is not configured")
        if direction is not None:
            direction = SyncStrategy(direction)

        local = remote = None
        try:
            local = await self._factory.create(self._selector.local_config())
            remote = await self._factory.create(remote_config)
            if direction is None:
                return await self._sync.sync(local, remote)
            if direction == SyncStrategy.REMOTE_TO_LOCAL:
                return await self._sync.sync_with_direction(remote, local, direction)
            if direction == SyncStrategy.LOCAL_TO_REMOTE:
                return await self._sync.sync_with_direction(local, remote, direction)
            return await self._sync.sync(local, remote, strategy=direction)
        except Exception as e:
            logger.error("cloud_sync_failed", error=str(e))
            return SyncResult(success=False, strategy=direction, error=str(e))
        finally:
            for repository in (local, remote):
                if repository is not None:
                    await repository.close()


def create_app_components(
    settings: Optional[Settings] = None,
    factory: Optional[RepositoryFactory] = None,
) -> tuple[FinanceService, BackendSelector]:
    """
    Factory function to create all application components.
    
    Args:
        settings: Settings to wire from; loaded from the environment if None
        factory: Backend factory; replaced in tests
        
    Returns:
        (finance_service, backend_selector)
    """
    settings = settings or get_settings()
    storage_settings = settings.storage
    factory = factory or RepositoryFactory()
    state = ClientStateStore(storage_settings.state_path)
    audit_logger = AuditLogger()
    
    selector = BackendSelector(
        factory=factory,
        state=state,
        storage_settings=storage_settings,
        remote_settings=settings.remote,
        audit_logger=audit_logger,
    )
    finance_service = FinanceService(
        selector=selector,
        factory=factory,
        state=state,
        sync_service=SyncService(audit_logger),
    )
    return finance_service, selector
