"""
Data Models Package

This package contains all Pydantic models used by StableFlow.
All data flowing through the store and the RPC client conforms to these schemas.
"""

from stableflow.models.account import (
    AccountType,
    UserAccount,
    WalletBalanceSnapshot,
)
from stableflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from stableflow.models.claim import (
    CATEGORY_LABELS,
    CLAIM_CURRENCY,
    MAX_CLAIM_AMOUNT,
    STATUS_LABELS,
    ClaimDraft,
    ClaimStatus,
    ExpenseCategory,
    ExpenseClaim,
    ExpenseStats,
    Geolocation,
    category_label,
    status_label,
)
from stableflow.models.record import StoreRecord, as_utc, utc_now

__all__ = [
    # Account models
    "AccountType",
    "UserAccount",
    "WalletBalanceSnapshot",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Claim models
    "CATEGORY_LABELS",
    "CLAIM_CURRENCY",
    "MAX_CLAIM_AMOUNT",
    "STATUS_LABELS",
    "ClaimDraft",
    "ClaimStatus",
    "ExpenseCategory",
    "ExpenseClaim",
    "ExpenseStats",
    "Geolocation",
    "category_label",
    "status_label",
    # Store records
    "StoreRecord",
    "as_utc",
    "utc_now",
]
