"""
Audit Models for Split Ledger

Every significant ledger mutation produces an AuditEvent. Events are
written to the structured log; they are a trace of what happened, not a
second copy of the data.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity
    USER_REGISTERED = "user_registered"
    USER_LOGGED_IN = "user_logged_in"
    LOGIN_FAILED = "login_failed"

    # Ledger
    TRANSACTION_SAVED = "transaction_saved"
    TRANSACTION_DELETED = "transaction_deleted"

    # Recurrence
    RECURRING_RULE_SAVED = "recurring_rule_saved"
    RECURRING_MATERIALIZED = "recurring_materialized"
    RECURRING_FAILED = "recurring_failed"

    # Splits
    SPLIT_CREATED = "split_created"
    SPLIT_MIRRORED = "split_mirrored"
    SPLIT_MIRROR_FAILED = "split_mirror_failed"
    SPLIT_DELETED = "split_deleted"
    SPLITS_REPLACED = "splits_replaced"
    OWE_LIMIT_UPDATED = "owe_limit_updated"

    # Storage
    LEGACY_IMPORT_COMPLETED = "legacy_import_completed"
    FALLBACK_SERVED = "fallback_served"
    STORE_UNAVAILABLE = "store_unavailable"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Which record and whose partition
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'split', 'user')"
    )
    entity_id: Optional[str] = None
    user_id: Optional[str] = None

    # Ties together the events of one settlement action
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_saved(user_id, transaction_id, amount)
        event = AuditEventBuilder.split_mirror_failed(split_id, counterparty_id, error, correlation_id)
    """

    @staticmethod
    def user_registered(user_id: str, username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"User registered: {username}",
        )

    @staticmethod
    def user_logged_in(user_id: str, username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_LOGGED_IN,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"User logged in: {username}",
        )

    @staticmethod
    def login_failed(username: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            description=f"Login failed for {username}",
            details={"reason": reason},
        )

    @staticmethod
    def transaction_saved(user_id: str, transaction_id: str, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description=f"Transaction saved: {amount}",
            details={"amount": amount},
        )

    @staticmethod
    def transaction_deleted(user_id: str, transaction_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description="Transaction deleted",
        )

    @staticmethod
    def recurring_rule_saved(user_id: str, rule_id: str, rule_type: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_RULE_SAVED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            user_id=user_id,
            description=f"Recurring {rule_type} rule saved",
        )

    @staticmethod
    def recurring_materialized(user_id: str, rule_id: str, transaction_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            user_id=user_id,
            description="Recurring rule materialized",
            details={"transaction_id": transaction_id},
        )

    @staticmethod
    def recurring_failed(user_id: str, rule_id: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="recurring_rule",
            entity_id=rule_id,
            user_id=user_id,
            description="Recurring rule could not be materialized",
            error_message=error_message,
        )

    @staticmethod
    def split_created(
        user_id: str,
        group_id: str,
        split_count: int,
        total: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_CREATED,
            entity_type="split_group",
            entity_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Split of {total} created with {split_count} counterparties",
            details={"split_count": split_count, "total": total},
        )

    @staticmethod
    def split_mirrored(split_id: str, counterparty_id: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_MIRRORED,
            entity_type="split",
            entity_id=split_id,
            user_id=counterparty_id,
            correlation_id=correlation_id,
            description="Mirrored split written to counterparty ledger",
        )

    @staticmethod
    def split_mirror_failed(
        split_id: str,
        counterparty_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_MIRROR_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="split",
            entity_id=split_id,
            user_id=counterparty_id,
            correlation_id=correlation_id,
            description="Mirrored split could not be written",
            error_message=error_message,
        )

    @staticmethod
    def split_deleted(user_id: str, split_id: str, found: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_DELETED,
            severity=AuditSeverity.INFO if found else AuditSeverity.WARNING,
            entity_type="split",
            entity_id=split_id,
            user_id=user_id,
            description="Split deleted" if found else "Split already absent",
        )

    @staticmethod
    def splits_replaced(user_id: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLITS_REPLACED,
            entity_type="split",
            user_id=user_id,
            description=f"Split ledger replaced with {count} records",
            details={"count": count},
        )

    @staticmethod
    def owe_limit_updated(user_id: str, limit: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OWE_LIMIT_UPDATED,
            entity_type="user_settings",
            entity_id=user_id,
            user_id=user_id,
            description="Owe limit cleared" if limit is None else f"Owe limit set to {limit}",
            details={"owe_limit": limit},
        )

    @staticmethod
    def legacy_import_completed(user_id: str, imported: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEGACY_IMPORT_COMPLETED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"Legacy import completed: {imported} transactions",
            details={"imported": imported},
        )

    @staticmethod
    def fallback_served(user_id: str, collection: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FALLBACK_SERVED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            user_id=user_id,
            description=f"Served {count} {collection} from the fallback mirror",
            details={"count": count},
        )

    @staticmethod
    def store_unavailable(operation: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_UNAVAILABLE,
            severity=AuditSeverity.ERROR,
            description=f"Store unavailable during {operation}",
            error_message=error_message,
        )
