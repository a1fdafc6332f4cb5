"""Tests for backend selection and the service surface."""

import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

from controlmoney.config.settings import RemoteDatabaseSettings
from controlmoney.models.records import BackendType, CloudBackendConfig, ExpenseFrequency
from controlmoney.models.sync import SyncStrategy
from controlmoney.orchestrator import BackendSelector, FinanceService
from controlmoney.queries.projection import find_payment_record
from controlmoney.services.storage import (
    LocalRepository,
    NotFoundError,
    RemoteRepository,
    RepositoryFactory,
)
from tests.factories import make_balance, make_expense
from tests.fakes import FailingSqlClient


@pytest.fixture
def selector(shared_remote_factory, client_state, storage_settings, remote_settings):
    return BackendSelector(
        factory=shared_remote_factory,
        state=client_state,
        storage_settings=storage_settings,
        remote_settings=remote_settings,
    )


@pytest.fixture
async def service(selector, shared_remote_factory, client_state):
    finance = FinanceService(selector=selector, factory=shared_remote_factory, state=client_state)
    yield finance
    await selector.close()


class TestBackendResolution:
    """Tests for which backend the selector builds."""
    
    async def test_defaults_to_local(self, selector, client_state):
        """Test local when nothing is configured."""
        repository = await selector.get_repository()
        assert isinstance(repository, LocalRepository)
        assert client_state.get_active_backend() == BackendType.LOCAL
        await selector.close()
    
    async def test_remote_without_credentials_falls_back(self, selector, client_state):
        """Test silent degrade when the remote is not configured."""
        client_state.set_preferred_backend(BackendType.TURSO)
        repository = await selector.get_repository()
        assert repository.backend_type == BackendType.LOCAL
        assert client_state.get_active_backend() == BackendType.LOCAL
        await selector.close()
    
    async def test_remote_from_saved_cloud_config(self, selector, client_state, service):
        """Test that a saved cloud config enables the remote."""
        service.save_cloud_config("libsql://db.example.io", "token")
        client_state.set_preferred_backend(BackendType.TURSO)
        repository = await selector.get_repository()
        assert isinstance(repository, RemoteRepository)
        assert client_state.get_active_backend() == BackendType.TURSO
    
    async def test_remote_from_environment(
        self, shared_remote_factory, client_state, storage_settings,
    ):
        """Test settings as the second source of credentials."""
        storage_settings.db_type = "turso"
        selector = BackendSelector(
            factory=shared_remote_factory,
            state=client_state,
            storage_settings=storage_settings,
            remote_settings=RemoteDatabaseSettings(database_url="libsql://env", auth_token="t"),
        )
        assert (await selector.get_repository()).backend_type == BackendType.TURSO
        await selector.close()
    
    async def test_remote_construction_failure_falls_back(
        self, client_state, storage_settings, remote_settings,
    ):
        """Test retry with local when the remote cannot be built."""
        client_state.set_preferred_backend(BackendType.TURSO)
        client_state.save_cloud_config(CloudBackendConfig(url="libsql://down", auth_token="t"))
        selector = BackendSelector(
            factory=RepositoryFactory(client_factory=lambda url, token: FailingSqlClient()),
            state=client_state,
            storage_settings=storage_settings,
            remote_settings=remote_settings,
        )
        assert (await selector.get_repository()).backend_type == BackendType.LOCAL
        assert client_state.get_active_backend() == BackendType.LOCAL
        await selector.close()
    
    async def test_local_failure_propagates(self, client_state, storage_settings, remote_settings):
        """Test that a broken local backend is fatal."""
        factory = RepositoryFactory()
        factory.create = AsyncMock(side_effect=RuntimeError("disk gone"))
        selector = BackendSelector(
            factory=factory,
            state=client_state,
            storage_settings=storage_settings,
            remote_settings=remote_settings,
        )
        with pytest.raises(RuntimeError, match="disk gone"):
            await selector.get_repository()


class TestSwapping:
    """Tests for runtime backend swaps."""
    
    async def test_get_repository_is_cached(self, selector):
        """Test the same instance until a swap."""
        first = await selector.get_repository()
        assert await selector.get_repository() is first
        await selector.close()
    
    async def test_refresh_twice_is_idempotent(self, selector):
        """Test that two refreshes give the same type."""
        first = await selector.refresh()
        second = await selector.refresh()
        assert first.backend_type == second.backend_type
        assert first is not second
        await selector.close()
    
    async def test_observers(self, selector):
        """Test notification, failure isolation and unsubscribe."""
        seen = []
        
        def broken(backend):
            raise ValueError("observer bug")
        
        async def recorder(backend):
            seen.append(backend)
        
        selector.subscribe(broken)
        unsubscribe = selector.subscribe(recorder)
        await selector.refresh()
        unsubscribe()
        await selector.refresh()
        assert seen == [BackendType.LOCAL]
        await selector.close()
    
    async def test_set_preferred_backend(self, service, client_state):
        """Test persisting the preference and swapping."""
        service.save_cloud_config("libsql://db.example.io", "token")
        assert await service.set_preferred_backend(BackendType.TURSO) == BackendType.TURSO
        assert client_state.get_preferred_backend() == BackendType.TURSO
        assert service.active_backend == BackendType.TURSO
        assert await service.set_preferred_backend(BackendType.LOCAL) == BackendType.LOCAL


class TestFinanceService:
    """Tests for the UI-facing operations."""
    
    async def test_add_recurring_expense_gets_placeholders(self, service):
        """Test twelve unpaid monthly placeholders."""
        created = await service.add_expense(make_expense())
        assert len(created.payment_history) == 12
        assert created.payment_history[11].date == datetime(2024, 12, 15)
    
    async def test_add_one_time_expense_has_no_history(self, service):
        """Test one-time expenses are stored as given."""
        created = await service.add_expense(make_expense(frequency=ExpenseFrequency.ONE_TIME))
        assert created.payment_history is None
    
    async def test_payment_scenario(self, service):
        """Test the month paid-status workflow end to end."""
        created = await service.add_expense(make_expense())
        [march] = await service.get_expenses_by_month(datetime(2024, 3, 1))
        assert (march.amount, march.is_paid) == (Decimal("100"), False)
        
        updated = await service.set_payment_status(
            created.id, datetime(2024, 3, 1), is_paid=True, amount=Decimal("120"),
        )
        assert find_payment_record(updated, datetime(2024, 3, 1)).amount == Decimal("120")
        
        [march] = await service.get_expenses_by_month(datetime(2024, 3, 1))
        assert (march.amount, march.is_paid) == (Decimal("120"), True)
        [january] = await service.get_expenses_by_month(datetime(2024, 1, 1))
        assert (january.amount, january.is_paid) == (Decimal("100"), False)
    
    async def test_set_payment_status_missing(self, service):
        """Test NotFoundError for an unknown expense."""
        with pytest.raises(NotFoundError):
            await service.set_payment_status(404, datetime(2024, 3, 1))
    
    async def test_current_balance_default(self, service):
        """Test the zero-valued default."""
        balance = await service.get_current_balance()
        assert balance.id is None
        assert balance.amount == Decimal("0")
    
    async def test_update_balance_twice(self, service):
        """Test that only one balance record exists."""
        await service.update_balance(make_balance(amount=Decimal("1")))
        await service.update_balance(make_balance(amount=Decimal("2")))
        assert (await service.get_current_balance()).amount == Decimal("2")
        assert len((await service.export_data())["balance"]) == 1


class TestCloudSync:
    """Tests for sync_cloud."""
    
    async def test_not_configured(self, service):
        """Test a clear failure without remote credentials."""
        result = await service.sync_cloud(SyncStrategy.LOCAL_TO_REMOTE)
        assert result.success is False
        assert "not configured" in result.error
    
    async def test_disabled(self, service, storage_settings):
        """Test that sync is refused when turned off in settings."""
        storage_settings.sync_enabled = False
        service.save_cloud_config("libsql://db.example.io", "token")
        result = await service.sync_cloud(SyncStrategy.LOCAL_TO_REMOTE)
        assert result.success is False
        assert result.error == "Cloud sync is disabled"
    
    async def test_forget_cloud_config(self, service, selector):
        """Test that a forgotten connection is no longer used."""
        service.save_cloud_config("libsql://db.example.io", "token")
        assert selector.remote_config() is not None
        service.forget_cloud_config()
        assert service.get_cloud_config() is None
        assert selector.remote_config() is None
        result = await service.sync_cloud()
        assert "not configured" in result.error
    
    async def test_push_then_pull(self, service, fake_sql_client):
        """Test both forced directions through the shared remote."""
        service.save_cloud_config("libsql://db.example.io", "token")
        await service.add_expense(make_expense())
        await service.update_balance(make_balance())
        local_before = await service.export_data()
        
        pushed = await service.sync_cloud(SyncStrategy.LOCAL_TO_REMOTE)
        assert pushed.success is True
        assert pushed.records_transferred == 2
        
        await service.clear_all()
        pulled = await service.sync_cloud(SyncStrategy.REMOTE_TO_LOCAL)
        assert pulled.success is True
        assert await service.export_data() == local_before
    
    async def test_automatic_direction(self, service):
        """Test sync without a forced direction."""
        service.save_cloud_config("libsql://db.example.io", "token")
        await service.add_expense(make_expense())
        result = await service.sync_cloud()
        assert result.success is True
        assert result.strategy == SyncStrategy.LOCAL_TO_REMOTE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
