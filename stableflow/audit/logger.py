"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A session history the UI can show

The audit logger:
- Is synchronous, because store listeners call it from their own threads
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events

Audit events are not written to the remote store; the only persisted
paths are the account and claim records.
"""

import logging
import threading
from collections import deque
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from stableflow.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


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


def configure_logging(debug: bool = False) -> None:
    """Route structlog output through stdlib logging at the right level."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if debug else logging.INFO,
    )


_SEVERITY_METHODS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Central audit logging service.

    Logs events to:
    1. Structured local log (for debugging)
    2. A bounded in-memory history for the current session
    """

    def __init__(self, history_size: int = 500):
        self._logger = structlog.get_logger("stableflow.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def events(self) -> list[AuditEvent]:
        """Events logged this session, oldest first."""
        with self._lock:
            return list(self._history)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the local log write failed. Never raises.
        """
        with self._lock:
            self._history.append(event)

        try:
            method = getattr(self._logger, _SEVERITY_METHODS[event.severity])
            method("audit_event", **event.to_log_dict())
            return True
        except Exception as e:
            # Audit must never take down the operation it describes
            logging.getLogger(__name__).error("audit_log_failed: %s", e)
            return False

    # =========================================================================
    # CLAIMS
    # =========================================================================

    def log_claim_submitted(
        self,
        claim_id: str,
        owner_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log claim submission."""
        self.log(AuditEventBuilder.claim_submitted(
            claim_id=claim_id,
            owner_id=owner_id,
            amount=str(amount),
            correlation_id=correlation_id,
        ))

    def log_claim_validation_failed(
        self,
        owner_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a draft rejected by validation."""
        self.log(AuditEventBuilder.claim_validation_failed(
            owner_id=owner_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    def log_claim_status_changed(
        self,
        claim_id: str,
        from_status: str,
        to_status: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a claim status transition."""
        self.log(AuditEventBuilder.claim_status_changed(
            claim_id=claim_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    def log_receipt_uploaded(
        self,
        owner_id: str,
        url: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.receipt_uploaded(
            owner_id=owner_id,
            url=url,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # WALLET & BALANCES
    # =========================================================================

    def log_wallet_address_set(self, address: str) -> None:
        self.log(AuditEventBuilder.wallet_address_set(address))

    def log_wallet_address_cleared(self, reason: str) -> None:
        self.log(AuditEventBuilder.wallet_address_cleared(reason))

    def log_balance_refreshed(
        self,
        address: str,
        sol_balance: Decimal,
        usdc_balance: Decimal,
        partial: bool = False,
    ) -> None:
        self.log(AuditEventBuilder.balance_refreshed(
            address=address,
            sol_balance=str(sol_balance),
            usdc_balance=str(usdc_balance),
            partial=partial,
        ))

    def log_balance_refresh_failed(self, address: str, error_message: str) -> None:
        self.log(AuditEventBuilder.balance_refresh_failed(address, error_message))

    def log_balance_sync_failed(
        self,
        account_id: str,
        usdc_balance: Decimal,
        error_message: str,
    ) -> None:
        """Log a failed ledger write-back. The refresh itself still succeeded."""
        self.log(AuditEventBuilder.balance_sync_failed(
            account_id=account_id,
            usdc_balance=str(usdc_balance),
            error_message=error_message,
        ))

    # =========================================================================
    # SUBSCRIPTIONS & ERRORS
    # =========================================================================

    def log_subscription_changed(self, key: str, started: bool) -> None:
        self.log(AuditEventBuilder.subscription_changed(key, started))

    def log_subscription_failed(self, key: str, error_message: str) -> None:
        self.log(AuditEventBuilder.subscription_failed(key, error_message))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., claim submission).
    Pass it through all subsequent operations.
    """
    return uuid4()
