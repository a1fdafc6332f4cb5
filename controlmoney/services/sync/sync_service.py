"""
Cross-Backend Synchronization

DESIGN DECISION: Sync is a whole-dataset copy, not a record-level merge.
One side is chosen as the source, the target is cleared, and the source's
export is imported into it (ids preserved). This keeps the protocol
simple enough to reason about for a single-user app.

The service is handed two backends built by the factory; it never goes
through the active-backend selector.

GUARANTEES:
- Never raises: every failure is reported in SyncResult
- CONFLICT transfers nothing
- No rollback: a failure mid-transfer can leave the target partial
"""

from datetime import datetime
from typing import Optional

from controlmoney.audit import AuditLogger, create_correlation_id, get_logger
from controlmoney.models.sync import (
    SyncConflict,
    SyncMetadata,
    SyncResult,
    SyncStrategy,
)
from controlmoney.services.storage.interface import DatabaseRepository
from controlmoney.services.storage.serialization import checksum, table_fingerprint


logger = get_logger(__name__)

# Last syncs closer than this are considered the same sync
SYNC_TOLERANCE_SECONDS = 60


class SyncService:
    """Compares and copies datasets between two backends."""
    
    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit = audit_logger or AuditLogger()
    
    async def get_metadata(self, repository: DatabaseRepository) -> SyncMetadata:
        """
        Fingerprint a backend's dataset.
        
        The checksum covers, per table, the record count and the first
        five records in a backend-neutral encoding.
        """
        data = await repository.export_data()
        table_counts = {table: len(records) for table, records in data.items()}
        parts = [table_fingerprint(table, records) for table, records in data.items()]
        last_sync = await repository.get_last_sync()
        
        return SyncMetadata(
            last_sync=last_sync or datetime.now(),
            source=repository.backend_type.value,
            record_count=sum(table_counts.values()),
            checksum=checksum(parts),
            table_counts=table_counts,
        )
    
    def compare_metadata(self, local: SyncMetadata, remote: SyncMetadata) -> SyncStrategy:
        """
        Decide the direction of a sync.
        
        Order of rules:
        1. Local empty, remote not -> REMOTE_TO_LOCAL
        2. Remote empty, local not -> LOCAL_TO_REMOTE
        3. Both empty -> LOCAL_TO_REMOTE
        4. Last syncs within 60s -> LOCAL_TO_REMOTE (already in step)
        5. Checksums differ -> the side synced more recently
        6. Otherwise -> LOCAL_TO_REMOTE
        
        MERGE and CONFLICT are never returned.
        """
        if local.record_count == 0 and remote.record_count > 0:
            return SyncStrategy.REMOTE_TO_LOCAL
        if remote.record_count == 0 and local.record_count > 0:
            return SyncStrategy.LOCAL_TO_REMOTE
        if local.record_count == 0 and remote.record_count == 0:
            return SyncStrategy.LOCAL_TO_REMOTE
        
        gap = abs((local.last_sync - remote.last_sync).total_seconds())
        if gap < SYNC_TOLERANCE_SECONDS:
            return SyncStrategy.LOCAL_TO_REMOTE
        
        if local.checksum != remote.checksum:
            if remote.last_sync > local.last_sync:
                return SyncStrategy.REMOTE_TO_LOCAL
            return SyncStrategy.LOCAL_TO_REMOTE
        
        return SyncStrategy.LOCAL_TO_REMOTE
    
    def detect_conflicts(
        self,
        local: SyncMetadata,
        remote: SyncMetadata,
    ) -> list[SyncConflict]:
        """Per-table record count mismatches."""
        conflicts = []
        for table in sorted(set(local.table_counts) | set(remote.table_counts)):
            local_count = local.table_counts.get(table, 0)
            remote_count = remote.table_counts.get(table, 0)
            if local_count != remote_count:
                conflicts.append(SyncConflict(
                    table=table,
                    local_count=local_count,
                    remote_count=remote_count,
                    message=(
                        f"Table {table} has {local_count} local and "
                        f"{remote_count} remote records"
                    ),
                ))
        return conflicts
    
    async def sync(
        self,
        local: DatabaseRepository,
        remote: DatabaseRepository,
        strategy: Optional[SyncStrategy] = None,
    ) -> SyncResult:
        """
        Synchronize two backends.
        
        Args:
            local: The local backend
            remote: The remote backend
            strategy: Force a strategy; chosen by compare_metadata if None
        """
        correlation_id = create_correlation_id()
        self._audit.log_sync_started(
            SyncStrategy(strategy).value if strategy else None, correlation_id
        )
        try:
            local_meta = await self.get_metadata(local)
            remote_meta = await self.get_metadata(remote)
            chosen = SyncStrategy(strategy) if strategy else self.compare_metadata(
                local_meta, remote_meta
            )
            
            if chosen == SyncStrategy.CONFLICT:
                conflicts = self.detect_conflicts(local_meta, remote_meta)
                self._audit.log_sync_conflict(len(conflicts), correlation_id)
                return SyncResult(
                    success=False,
                    strategy=chosen,
                    conflicts=conflicts,
                    error="Sync stopped: datasets conflict" if conflicts else None,
                )
            
            if chosen == SyncStrategy.MERGE:
                if remote_meta.last_sync > local_meta.last_sync:
                    source, target = remote, local
                else:
                    source, target = local, remote
            elif chosen == SyncStrategy.REMOTE_TO_LOCAL:
                source, target = remote, local
            else:
                source, target = local, remote
            
            transferred = await self._transfer(source, target)
            self._audit.log_sync_completed(chosen.value, transferred, correlation_id)
            return SyncResult(success=True, strategy=chosen, records_transferred=transferred)
        except Exception as e:
            self._audit.log_sync_failed(str(e), correlation_id)
            return SyncResult(success=False, strategy=strategy, error=str(e))
    
    async def sync_with_direction(
        self,
        source: DatabaseRepository,
        target: DatabaseRepository,
        direction: SyncStrategy,
    ) -> SyncResult:
        """
        Copy source -> target without comparing metadata.
        
        The caller has already put the backends in the right order for
        `direction`; the direction only labels the run.
        """
        correlation_id = create_correlation_id()
        direction = SyncStrategy(direction)
        self._audit.log_sync_started(direction.value, correlation_id)
        try:
            transferred = await self._transfer(source, target)
            self._audit.log_sync_completed(direction.value, transferred, correlation_id)
            return SyncResult(
                success=True,
                strategy=direction,
                records_transferred=transferred,
            )
        except Exception as e:
            self._audit.log_sync_failed(str(e), correlation_id)
            return SyncResult(success=False, strategy=direction, error=str(e))
    
    async def _transfer(
        self,
        source: DatabaseRepository,
        target: DatabaseRepository,
    ) -> int:
        """Export source, clear target, import. Then stamp both sides."""
        data = await source.export_data()
        await target.clear_all()
        transferred = await target.import_data(data)
        
        now = datetime.now()
        for repository in (source, target):
            metadata = await self.get_metadata(repository)
            await repository.record_sync(metadata.model_copy(update={"last_sync": now}))
        
        logger.info(
            "sync_transfer_completed",
            source=source.backend_type.value,
            target=target.backend_type.value,
            records=transferred,
        )
        return transferred
