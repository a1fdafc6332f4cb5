"""Tests for settings and the client state file."""

import pytest

from controlmoney.config import get_settings, validate_all_settings
from controlmoney.config.settings import RemoteDatabaseSettings, StorageSettings
from controlmoney.models.records import BackendType, CloudBackendConfig
from controlmoney.services.storage.client_state import ClientStateStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CONTROLMONEY_DB_TYPE",
        "TURSO_DATABASE_URL",
        "TURSO_AUTH_TOKEN",
        "GOOGLE_SHEETS_CLIENT_ID",
        "GOOGLE_SHEETS_CLIENT_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for environment configuration."""
    
    def test_storage_defaults(self):
        """Test that local is the default backend."""
        settings = StorageSettings()
        assert settings.db_type == "local"
        assert settings.sync_enabled is False
    
    @pytest.mark.parametrize("raw,expected", [
        ("TURSO", "turso"),
        (" local ", "local"),
        ("postgres", "local"),
    ])
    def test_db_type_normalized(self, monkeypatch, raw, expected):
        """Test that unknown backends fall back to local."""
        monkeypatch.setenv("CONTROLMONEY_DB_TYPE", raw)
        assert StorageSettings().db_type == expected
    
    def test_remote_needs_url_and_token(self, monkeypatch):
        """Test is_configured with partial credentials."""
        monkeypatch.setenv("TURSO_DATABASE_URL", "libsql://db.example.io")
        assert not RemoteDatabaseSettings().is_configured
        monkeypatch.setenv("TURSO_AUTH_TOKEN", "token")
        assert RemoteDatabaseSettings().is_configured
    
    def test_validate_all_settings(self, monkeypatch):
        """Test the startup check summary."""
        monkeypatch.setenv("GOOGLE_SHEETS_CLIENT_ID", "id")
        monkeypatch.setenv("GOOGLE_SHEETS_CLIENT_SECRET", "secret")
        results = validate_all_settings()
        assert results == {"storage": True, "remote": False, "google_sheets": True}


class TestClientState:
    """Tests for the persisted client state."""
    
    def test_missing_file_is_empty(self, tmp_path):
        """Test reads before anything was saved."""
        state = ClientStateStore(str(tmp_path / "state.json"))
        assert state.get_preferred_backend() is None
        assert state.get_cloud_config() is None
    
    def test_backend_choices_persist(self, tmp_path):
        """Test that a new store on the same file sees saved values."""
        path = str(tmp_path / "state.json")
        ClientStateStore(path).set_preferred_backend(BackendType.TURSO)
        ClientStateStore(path).set_active_backend(BackendType.LOCAL)
        state = ClientStateStore(path)
        assert state.get_preferred_backend() == BackendType.TURSO
        assert state.get_active_backend() == BackendType.LOCAL
    
    def test_cloud_config_round_trip(self, tmp_path):
        """Test saving and clearing the cloud connection."""
        state = ClientStateStore(str(tmp_path / "state.json"))
        state.save_cloud_config(CloudBackendConfig(url="libsql://db.example.io", auth_token="t"))
        assert state.get_cloud_config().url == "libsql://db.example.io"
        state.clear_cloud_config()
        assert state.get_cloud_config() is None
    
    def test_corrupt_file_is_empty(self, tmp_path):
        """Test that an unreadable file does not break startup."""
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        state = ClientStateStore(str(path))
        assert state.get("anything", "fallback") == "fallback"
    
    def test_unknown_backend_is_ignored(self, tmp_path):
        """Test that a stale backend value reads as unset."""
        state = ClientStateStore(str(tmp_path / "state.json"))
        state.set("preferred_db_type", "postgres")
        assert state.get_preferred_backend() is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
