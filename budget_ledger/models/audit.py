"""
Audit Models for Budget Ledger

Every balance-affecting operation on the ledger is logged for audit purposes.
This provides:
1. Traceability of how a balance got where it is
2. Debugging information when a scheduled pass skips or blocks
3. A record of destructive operations (purge, import, clear)

DESIGN DECISION: Audit events are emitted as structured log lines only.
The ledger's own history (transaction events, processed logs, reduction
logs) lives in the state document; audit events describe operations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_ledger.models.dates import format_timestamp, utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each engine operation family has its own event types.
    """
    # Entity mutations
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"

    # Transfers and income
    TRANSFER_EXECUTED = "transfer_executed"
    TRANSFER_FAILED = "transfer_failed"
    INCOME_EXECUTED = "income_executed"

    # Periodic passes
    SCHEDULED_PROCESSING_COMPLETED = "scheduled_processing_completed"
    SCHEDULED_PROCESSING_BLOCKED = "scheduled_processing_blocked"
    REDUCTION_APPLIED = "reduction_applied"
    EXECUTIONS_PURGED = "executions_purged"

    # Whole-ledger operations
    BALANCES_RESET = "balances_reset"
    STATE_IMPORTED = "state_imported"
    STATE_CLEARED = "state_cleared"
    STATE_LOAD_FAILED = "state_load_failed"

    # Persistence
    SAVE_FAILED = "save_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every engine operation that changes the ledger creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'pot', 'transfer_schedule')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Ledger id of the entity this event relates to"
    )

    # Correlation - one id per engine operation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID correlating the events of one engine operation"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": format_timestamp(self.timestamp),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_created("account", 3, "Joint", correlation_id)
        event = AuditEventBuilder.transfer_executed(schedule, correlation_id)
    """

    @staticmethod
    def entity_created(
        entity_type: str,
        entity_id: int,
        label: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_CREATED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Created {entity_type} #{entity_id}: {label}"[:500],
        )

    @staticmethod
    def entity_updated(
        entity_type: str,
        entity_id: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_UPDATED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Updated {entity_type} #{entity_id}",
            details=details or {},
        )

    @staticmethod
    def entity_deleted(
        entity_type: str,
        entity_id: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_DELETED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Deleted {entity_type} #{entity_id}",
            details=details or {},
        )

    @staticmethod
    def transfer_executed(
        schedule_id: int,
        amount: str,
        from_account_id: int,
        to_account_id: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_EXECUTED,
            entity_type="transfer_schedule",
            entity_id=schedule_id,
            correlation_id=correlation_id,
            description=f"Transfer #{schedule_id} moved {amount}",
            details={
                "amount": amount,
                "from_account_id": from_account_id,
                "to_account_id": to_account_id,
            },
        )

    @staticmethod
    def transfer_failed(
        schedule_id: int,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transfer_schedule",
            entity_id=schedule_id,
            correlation_id=correlation_id,
            description=f"Transfer #{schedule_id} skipped",
            error_message=reason,
        )

    @staticmethod
    def income_executed(
        schedule_id: int,
        amount: str,
        account_id: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_EXECUTED,
            entity_type="income_schedule",
            entity_id=schedule_id,
            correlation_id=correlation_id,
            description=f"Income schedule #{schedule_id} paid {amount}",
            details={
                "amount": amount,
                "account_id": account_id,
            },
        )

    @staticmethod
    def scheduled_processing_completed(
        period: str,
        effective_day: int,
        processed_count: int,
        skipped_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_PROCESSING_COMPLETED,
            correlation_id=correlation_id,
            description=(
                f"Scheduled processing for {period}: "
                f"{processed_count} processed, {skipped_count} skipped"
            ),
            details={
                "period": period,
                "effective_day": effective_day,
                "processed_count": processed_count,
                "skipped_count": skipped_count,
            },
        )

    @staticmethod
    def scheduled_processing_blocked(
        period: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_PROCESSING_BLOCKED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Scheduled processing for {period} blocked",
            details={"period": period, "reason": reason},
        )

    @staticmethod
    def reduction_applied(
        period: str,
        day_of_month: int,
        account_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REDUCTION_APPLIED,
            correlation_id=correlation_id,
            description=f"Monthly reduction applied to {account_count} accounts",
            details={
                "period": period,
                "day_of_month": day_of_month,
                "account_count": account_count,
            },
        )

    @staticmethod
    def executions_purged(
        runs_affected: int,
        executions_removed: int,
        logs_removed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXECUTIONS_PURGED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Purged {executions_removed} executions from {runs_affected} runs",
            details={
                "runs_affected": runs_affected,
                "executions_removed": executions_removed,
                "processed_logs_removed": logs_removed,
            },
        )

    @staticmethod
    def ledger_event(
        event_type: AuditEventType,
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Whole-ledger events: reset, import, clear."""
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def save_failed(
        operation: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Ledger state not saved after {operation}",
            error_type="PersistenceError",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_type=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
