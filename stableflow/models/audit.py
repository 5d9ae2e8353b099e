"""
Audit Models for StableFlow

Every significant state change in the system is logged for audit purposes.
This provides:
1. Complete traceability of claim lifecycles
2. Debugging information when reconciliation goes wrong
3. A record of every ledger balance write-back

DESIGN DECISION: Audit events are immutable once built.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from stableflow.models.record import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step in the claim and reconciliation pipelines has its own type.
    """
    # Claim lifecycle
    CLAIM_SUBMITTED = "claim_submitted"
    CLAIM_VALIDATION_FAILED = "claim_validation_failed"
    CLAIM_STATUS_CHANGED = "claim_status_changed"
    CLAIM_CANCELLED = "claim_cancelled"
    RECEIPT_UPLOADED = "receipt_uploaded"

    # Wallet and balances
    WALLET_ADDRESS_SET = "wallet_address_set"
    WALLET_ADDRESS_CLEARED = "wallet_address_cleared"
    BALANCE_REFRESHED = "balance_refreshed"
    BALANCE_REFRESH_FAILED = "balance_refresh_failed"
    BALANCE_SYNC_FAILED = "balance_sync_failed"

    # Subscriptions
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_STOPPED = "subscription_stopped"
    SUBSCRIPTION_FAILED = "subscription_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    This is the core unit of our audit trail.
    Every significant action creates one of these.
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
        description="Type of entity (e.g., 'claim', 'account', 'wallet')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Store key or address of the entity"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one submission flow)"
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
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.claim_submitted(claim_id, owner_id, amount)
        event = AuditEventBuilder.balance_refreshed(address, sol, usdc)
    """

    @staticmethod
    def claim_submitted(
        claim_id: str,
        owner_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_SUBMITTED,
            entity_type="claim",
            entity_id=claim_id,
            correlation_id=correlation_id,
            description=f"Claim submitted: {amount} USDC",
            details={
                "owner_id": owner_id,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def claim_validation_failed(
        owner_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="claim",
            correlation_id=correlation_id,
            description=f"Claim rejected by validation with {len(issues)} issues",
            details={
                "owner_id": owner_id,
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def claim_status_changed(
        claim_id: str,
        from_status: str,
        to_status: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.CLAIM_CANCELLED
            if to_status == "CANCELLED"
            else AuditEventType.CLAIM_STATUS_CHANGED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type="claim",
            entity_id=claim_id,
            correlation_id=correlation_id,
            description=f"Claim moved {from_status} -> {to_status}",
            details={
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor_id,
            },
            is_user_action=actor_id is not None,
        )

    @staticmethod
    def receipt_uploaded(
        owner_id: str,
        url: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOADED,
            entity_type="receipt",
            entity_id=url,
            correlation_id=correlation_id,
            description="Receipt image uploaded",
            details={
                "owner_id": owner_id,
                "size_bytes": size_bytes,
            },
            is_user_action=True,
        )

    @staticmethod
    def wallet_address_set(address: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_ADDRESS_SET,
            entity_type="wallet",
            entity_id=address,
            description="Active wallet address set",
        )

    @staticmethod
    def wallet_address_cleared(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_ADDRESS_CLEARED,
            entity_type="wallet",
            description=f"Active wallet address cleared: {reason}",
        )

    @staticmethod
    def balance_refreshed(
        address: str,
        sol_balance: str,
        usdc_balance: str,
        partial: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REFRESHED,
            severity=AuditSeverity.WARNING if partial else AuditSeverity.INFO,
            entity_type="wallet",
            entity_id=address,
            description=(
                "Wallet balances partially refreshed"
                if partial
                else "Wallet balances refreshed"
            ),
            details={
                "sol_balance": sol_balance,
                "usdc_balance": usdc_balance,
                "partial": partial,
            },
        )

    @staticmethod
    def balance_refresh_failed(address: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REFRESH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="wallet",
            entity_id=address,
            description="Wallet balance refresh failed",
            error_message=error_message,
        )

    @staticmethod
    def balance_sync_failed(
        account_id: str,
        usdc_balance: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description="Could not write reconciled balance to the ledger",
            details={
                "usdc_balance": usdc_balance,
            },
            error_message=error_message,
        )

    @staticmethod
    def subscription_changed(
        key: str,
        started: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.SUBSCRIPTION_STARTED
                if started
                else AuditEventType.SUBSCRIPTION_STOPPED
            ),
            severity=AuditSeverity.DEBUG,
            entity_type="subscription",
            entity_id=key,
            description=f"Subscription {'started' if started else 'stopped'}: {key}",
        )

    @staticmethod
    def subscription_failed(key: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="subscription",
            entity_id=key,
            description=f"Subscription terminated: {key}",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
