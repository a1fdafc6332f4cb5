"""Cross-backend synchronization package."""

from controlmoney.services.sync.sync_service import SYNC_TOLERANCE_SECONDS, SyncService

__all__ = ["SYNC_TOLERANCE_SECONDS", "SyncService"]
