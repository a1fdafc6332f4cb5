"""
Synchronization Models

Describe one side of a sync (metadata), the decision taken (strategy)
and the outcome of a run (result).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncStrategy(str, Enum):
    """
    Direction of a sync run.
    
    MERGE is never chosen automatically. It copies from whichever side was
    synced more recently; there is no field-level merge.
    """
    LOCAL_TO_REMOTE = "local-to-remote"
    REMOTE_TO_LOCAL = "remote-to-local"
    MERGE = "merge"
    CONFLICT = "conflict"


class SyncMetadata(BaseModel):
    """Fingerprint of one backend's dataset."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    last_sync: datetime
    source: str
    record_count: int = 0
    checksum: str = ""
    table_counts: dict[str, int] = Field(default_factory=dict)


class SyncConflict(BaseModel):
    """A table whose record counts differ between the two sides."""
    
    table: str
    record_id: int = -1
    local_count: int
    remote_count: int
    message: str


class SyncResult(BaseModel):
    """Outcome of a sync run. Failures are reported here, never raised."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)
    
    success: bool
    strategy: Optional[SyncStrategy] = None
    records_transferred: int = 0
    conflicts: list[SyncConflict] = Field(default_factory=list)
    error: Optional[str] = None
