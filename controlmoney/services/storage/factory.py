"""
Backend Factory

Builds a ready-to-use DatabaseRepository from a DatabaseConfig:
- local: open the object store (creates stores, runs migrations)
- turso: connect and make sure the schema exists

The factory does NOT fall back; that policy belongs to the selector.
"""

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from controlmoney.audit import get_logger
from controlmoney.models.records import BackendType
from controlmoney.services.storage.interface import ConfigurationError, DatabaseRepository
from controlmoney.services.storage.local import LocalRepository, ObjectStore
from controlmoney.services.storage.remote import (
    RemoteRepository,
    create_remote_client,
    initialize_remote_schema,
)


logger = get_logger(__name__)


class DatabaseConfig(BaseModel):
    """Which backend to build and how to reach it."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    type: BackendType = BackendType.LOCAL
    local_path: str = "ControlMoneyDB.sqlite3"
    url: Optional[str] = None
    auth_token: Optional[str] = None
    
    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.url) and bool(self.auth_token)


class RepositoryFactory:
    """
    Creates backends.
    
    Args:
        client_factory: Callable (url, auth_token) -> async libSQL client.
                        Replaced in tests.
    """
    
    def __init__(self, client_factory: Callable = create_remote_client):
        self._client_factory = client_factory
    
    async def create(self, config: DatabaseConfig) -> DatabaseRepository:
        """
        Build and open a backend.
        
        Raises:
            ConfigurationError: If turso is requested without url and token
            BackendConnectionError: If the engine cannot be reached
            MigrationError: If the local store cannot be upgraded
        """
        if config.type == BackendType.LOCAL.value:
            store = ObjectStore(config.local_path).open()
            logger.info("backend_created", backend="local", path=config.local_path)
            return LocalRepository(store)
        
        if not config.has_remote_credentials:
            raise ConfigurationError("Remote database URL and auth token are required")
        
        client = self._client_factory(config.url, config.auth_token)
        try:
            await initialize_remote_schema(client)
        except Exception:
            await client.close()
            raise
        logger.info("backend_created", backend="turso")
        return RemoteRepository(client)
