"""
Client-Side Persisted State

A small JSON key/value file holding the user's runtime choices:
- preferred_db_type: backend the user asked for
- active_db_type: backend actually running (after any fallback)
- cloud_db_config: saved remote connection details

A missing or unreadable file is treated as empty.
"""

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from controlmoney.audit import get_logger
from controlmoney.models.records import BackendType, CloudBackendConfig


logger = get_logger(__name__)

PREFERRED_DB_TYPE_KEY = "preferred_db_type"
ACTIVE_DB_TYPE_KEY = "active_db_type"
CLOUD_DB_CONFIG_KEY = "cloud_db_config"


class ClientStateStore:
    """Key/value state persisted as one JSON file."""
    
    def __init__(self, path: str):
        self._path = Path(path)
    
    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("client_state_unreadable", path=str(self._path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}
    
    def _save(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    
    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)
    
    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)
    
    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)
    
    def _backend(self, key: str) -> Optional[BackendType]:
        value = self.get(key)
        try:
            return BackendType(value) if value else None
        except ValueError:
            logger.warning("client_state_invalid_backend", key=key, value=value)
            return None
    
    def get_preferred_backend(self) -> Optional[BackendType]:
        return self._backend(PREFERRED_DB_TYPE_KEY)
    
    def set_preferred_backend(self, backend: BackendType) -> None:
        self.set(PREFERRED_DB_TYPE_KEY, BackendType(backend).value)
    
    def get_active_backend(self) -> Optional[BackendType]:
        return self._backend(ACTIVE_DB_TYPE_KEY)
    
    def set_active_backend(self, backend: BackendType) -> None:
        self.set(ACTIVE_DB_TYPE_KEY, BackendType(backend).value)
    
    def get_cloud_config(self) -> Optional[CloudBackendConfig]:
        value = self.get(CLOUD_DB_CONFIG_KEY)
        if not value:
            return None
        try:
            return CloudBackendConfig.model_validate(value)
        except ValidationError as e:
            logger.warning("client_state_invalid_cloud_config", error=str(e))
            return None
    
    def save_cloud_config(self, config: CloudBackendConfig) -> None:
        self.set(CLOUD_DB_CONFIG_KEY, config.model_dump(mode="json"))
    
    def clear_cloud_config(self) -> None:
        self.remove(CLOUD_DB_CONFIG_KEY)
