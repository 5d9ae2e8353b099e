"""Claim state machine and submission validation."""

from stableflow.claims.lifecycle import (
    ALLOWED_TRANSITIONS,
    CANCELLABLE_STATUSES,
    REQUIRED_STATUS_FIELDS,
    STATUS_FIELDS,
    ClaimStateError,
    InvalidState,
    InvalidTransition,
    approval_fields,
    can_transition,
    ensure_cancellable,
    ensure_status_fields,
    ensure_transition,
    new_claim,
    payment_fields,
    rejection_fields,
)
from stableflow.claims.validator import (
    ClaimValidator,
    ValidationError,
    ValidationIssue,
    parse_category,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CANCELLABLE_STATUSES",
    "REQUIRED_STATUS_FIELDS",
    "STATUS_FIELDS",
    "ClaimStateError",
    "ClaimValidator",
    "InvalidState",
    "InvalidTransition",
    "ValidationError",
    "ValidationIssue",
    "approval_fields",
    "can_transition",
    "ensure_cancellable",
    "ensure_status_fields",
    "ensure_transition",
    "new_claim",
    "parse_category",
    "payment_fields",
    "rejection_fields",
]
