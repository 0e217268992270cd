"""
Audit Logger

DESIGN DECISION: Every operation that changes the ledger is logged.
This provides:
1. Traceability of balance changes
2. Debugging capability for skipped or blocked scheduled passes
3. A record of destructive operations

The audit logger:
- Writes structured JSON lines through structlog
- Gracefully handles failures (a logging failure never fails a ledger operation)
- Supports correlation IDs to tie the events of one operation together
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


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


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib logging (structlog's sink) at the configured level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level, logging.INFO))
    logging.getLogger("budget_ledger").setLevel(log_level)


class AuditLogger:
    """
    Central audit logging service.

    Emits one structured log line per AuditEvent, at the event's severity.
    """

    def __init__(self, logger_name: str = "budget_ledger.audit"):
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written, False if logging itself failed.
        """
        try:
            log_dict = event.to_log_dict()

            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_logging_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def log_created(
        self,
        entity_type: str,
        entity_id: int,
        label: str,
        correlation_id: UUID,
    ) -> None:
        """Log entity creation."""
        self.log(AuditEventBuilder.entity_created(entity_type, entity_id, label, correlation_id))

    def log_updated(
        self,
        entity_type: str,
        entity_id: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Log entity update."""
        self.log(AuditEventBuilder.entity_updated(entity_type, entity_id, correlation_id, details))

    def log_deleted(
        self,
        entity_type: str,
        entity_id: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Log entity deletion."""
        self.log(AuditEventBuilder.entity_deleted(entity_type, entity_id, correlation_id, details))

    def log_save_failed(
        self,
        operation: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a failed state write."""
        self.log(AuditEventBuilder.save_failed(operation, error_message, correlation_id))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    The engine creates one per public operation.
    """
    return uuid4()
