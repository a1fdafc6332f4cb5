"""
Audit Logger

DESIGN DECISION: Every backend decision is logged.
Which backend is running, why a fallback happened, and what a sync run
did are the questions asked when data "goes missing", so each of those
moments produces one named structured event.

The audit logger:
- Never raises (logging must not break the main flow)
- Supports correlation IDs to trace related events (e.g. one sync run)
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: Optional[str] = None):
    """Get a structlog logger bound to a module name."""
    return structlog.get_logger(name)


class AuditLogger:
    """
    Central audit logging service for storage and sync events.
    """
    
    def __init__(self, name: str = "controlmoney.audit"):
        self._logger = structlog.get_logger(name)
    
    def log(self, event: str, severity: str = "info", **fields: Any) -> None:
        """Emit one structured event at the given severity."""
        try:
            if severity == "error":
                self._logger.error(event, **fields)
            elif severity == "warning":
                self._logger.warning(event, **fields)
            else:
                self._logger.info(event, **fields)
        except Exception:
            # Logging must never break the caller
            pass
    
    def log_backend_selected(self, requested: str, active: str) -> None:
        """Log which backend ended up running."""
        self.log("backend_selected", requested=requested, active=active)
    
    def log_backend_fallback(self, requested: str, reason: str) -> None:
        """Log a degrade to the local backend."""
        self.log(
            "backend_fallback",
            severity="warning",
            requested=requested,
            fallback="local",
            reason=reason,
        )
    
    def log_backend_switched(self, previous: Optional[str], active: str) -> None:
        """Log a runtime backend swap."""
        self.log("backend_switched", previous=previous, active=active)
    
    def log_observer_failed(self, observer: str, error: str) -> None:
        """Log a failing backend-change observer."""
        self.log("observer_failed", severity="error", observer=observer, error=error)
    
    def log_sync_started(
        self,
        strategy: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log the start of a sync run."""
        self.log(
            "sync_started",
            strategy=strategy,
            correlation_id=str(correlation_id),
        )
    
    def log_sync_completed(
        self,
        strategy: str,
        records_transferred: int,
        correlation_id: UUID,
    ) -> None:
        """Log a successful sync run."""
        self.log(
            "sync_completed",
            strategy=strategy,
            records_transferred=records_transferred,
            correlation_id=str(correlation_id),
        )
    
    def log_sync_conflict(self, conflicts: int, correlation_id: UUID) -> None:
        """Log a sync run that stopped on conflicts."""
        self.log(
            "sync_conflict",
            severity="warning",
            conflicts=conflicts,
            correlation_id=str(correlation_id),
        )
    
    def log_sync_failed(self, error: str, correlation_id: UUID) -> None:
        """Log a failed sync run."""
        self.log(
            "sync_failed",
            severity="error",
            error=error,
            correlation_id=str(correlation_id),
        )


def create_correlation_id() -> UUID:
    """Create a new correlation ID for tracing related events."""
    return uuid4()
