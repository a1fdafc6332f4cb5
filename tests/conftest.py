"""
Shared fixtures.

The remote backend is exercised against FakeSqlClient: an in-memory
SQLite database behind the same async execute() interface as the
libSQL client. No network calls are made in tests.
"""

import pytest

from controlmoney.config.settings import RemoteDatabaseSettings, StorageSettings
from controlmoney.services.storage import (
    ClientStateStore,
    LocalRepository,
    ObjectStore,
    RemoteRepository,
    RepositoryFactory,
)
from controlmoney.services.storage.remote import initialize_remote_schema
from tests.fakes import FakeSqlClient


@pytest.fixture
def fake_sql_client():
    return FakeSqlClient()


@pytest.fixture
def local_repo(tmp_path):
    store = ObjectStore(str(tmp_path / "local.sqlite3")).open()
    yield LocalRepository(store)
    store.close()


@pytest.fixture
async def remote_repo(fake_sql_client):
    await initialize_remote_schema(fake_sql_client)
    return RemoteRepository(fake_sql_client)


@pytest.fixture(params=["local", "turso"])
async def repo(request, tmp_path):
    """Each backend in turn; contract tests run against both."""
    if request.param == "local":
        store = ObjectStore(str(tmp_path / "contract.sqlite3")).open()
        yield LocalRepository(store)
        store.close()
    else:
        client = FakeSqlClient()
        await initialize_remote_schema(client)
        yield RemoteRepository(client)


@pytest.fixture
def shared_remote_factory(fake_sql_client):
    """Factory whose remote backend is always the same fake database."""
    return RepositoryFactory(client_factory=lambda url, token: fake_sql_client)


@pytest.fixture
def storage_settings(tmp_path):
    return StorageSettings(
        db_type="local",
        sync_enabled=True,
        local_db_path=str(tmp_path / "app.sqlite3"),
        state_path=str(tmp_path / "state.json"),
    )


@pytest.fixture
def remote_settings():
    return RemoteDatabaseSettings(database_url=None, auth_token=None)


@pytest.fixture
def client_state(storage_settings):
    return ClientStateStore(storage_settings.state_path)

