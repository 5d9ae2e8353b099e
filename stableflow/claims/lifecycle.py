"""
Claim State Machine

    PENDING ──► UNDER_REVIEW ──► APPROVED ──► PAID
       │             │
       ├─────────────┴──► REJECTED
       └─────────────┴──► CANCELLED
    (PENDING may also go straight to APPROVED)

REJECTED, PAID and CANCELLED are terminal. Nothing moves back to
PENDING or UNDER_REVIEW.

The functions here are pure: they decide whether a move is legal and
build the store fields that accompany it. Writing is the sync layer's job.
"""

from datetime import datetime
from typing import Any, Optional

from stableflow.claims.validator import ValidationError, ValidationIssue, parse_category
from stableflow.models.claim import (
    CLAIM_CURRENCY,
    ClaimDraft,
    ClaimStatus,
    ExpenseClaim,
)
from stableflow.models.record import utc_now


ALLOWED_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({
        ClaimStatus.UNDER_REVIEW,
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    }),
    ClaimStatus.UNDER_REVIEW: frozenset({
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    }),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.PAID}),
    ClaimStatus.REJECTED: frozenset(),
    ClaimStatus.PAID: frozenset(),
    ClaimStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({ClaimStatus.PENDING, ClaimStatus.UNDER_REVIEW})


class ClaimStateError(Exception):
    """Base exception for illegal state-machine operations. Never retried."""
    pass


class InvalidTransition(ClaimStateError):
    """The requested status change is not an edge of the state machine."""

    def __init__(self, current: ClaimStatus, requested: ClaimStatus):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move a claim from {current.value} to {requested.value}"
        )


class InvalidState(ClaimStateError):
    """The operation is not allowed in the claim's current status."""

    def __init__(self, status: ClaimStatus, operation: str):
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} a claim that is {status.value}"
        )


def can_transition(current: ClaimStatus, requested: ClaimStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: ClaimStatus, requested: ClaimStatus) -> None:
    """Raise InvalidTransition unless ``current -> requested`` is legal."""
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


def ensure_cancellable(current: ClaimStatus) -> None:
    """Owners may only withdraw claims nobody has decided on yet."""
    if current not in CANCELLABLE_STATUSES:
        raise InvalidState(current, "cancel")


def new_claim(
    draft: ClaimDraft,
    owner_id: str,
    claim_id: str,
    submitted_at: Optional[datetime] = None,
) -> ExpenseClaim:
    """
    Stamp a validated draft into a PENDING claim.

    Status, currency and submission time are set here unconditionally;
    whatever the draft carried for them is discarded.
    """
    location = draft.location
    return ExpenseClaim(
        id=claim_id,
        user_id=owner_id,
        title=(draft.title or "").strip(),
        description=(draft.description or "").strip(),
        amount=draft.amount,
        currency=CLAIM_CURRENCY,
        category=parse_category(draft.category),
        notes=draft.notes,
        receipt_url=draft.receipt_url,
        status=ClaimStatus.PENDING,
        submitted_at=submitted_at or utc_now(),
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        location_address=location.address if location else None,
    )


# =============================================================================
# STATUS PATCH FIELDS
# Wire-format (camelCase) fields that accompany each status change.
# =============================================================================

def approval_fields(approver_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
    if not approver_id:
        raise ValidationError.for_field(
            "approved_by", "missing", "An approver is required"
        )
    return {
        "approvedBy": approver_id,
        "processedAt": (now or utc_now()).isoformat(),
    }


def rejection_fields(
    approver_id: str,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    if not reason or not reason.strip():
        raise ValidationError.for_field(
            "rejection_reason", "missing", "A reason is required to reject a claim"
        )
    fields = approval_fields(approver_id, now)
    fields["rejectionReason"] = reason.strip()
    return fields


def payment_fields(
    tx_signature: str,
    tx_explorer_url: str,
    payer_address: str,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    if not tx_signature:
        raise ValidationError.for_field(
            "tx_signature", "missing", "A transaction signature is required"
        )
    return {
        "txSignature": tx_signature,
        "txExplorerUrl": tx_explorer_url,
        "payerAddress": payer_address,
        "paidAt": (now or utc_now()).isoformat(),
    }


# Store keys a status patch may carry, per target status. Identity,
# amount, currency and submission time are never patchable.
STATUS_FIELDS: dict[ClaimStatus, frozenset[str]] = {
    ClaimStatus.PENDING: frozenset(),
    ClaimStatus.UNDER_REVIEW: frozenset(),
    ClaimStatus.APPROVED: frozenset({"approvedBy", "processedAt"}),
    ClaimStatus.REJECTED: frozenset({"approvedBy", "processedAt", "rejectionReason"}),
    ClaimStatus.PAID: frozenset({"txSignature", "txExplorerUrl", "payerAddress", "paidAt"}),
    ClaimStatus.CANCELLED: frozenset(),
}

REQUIRED_STATUS_FIELDS: dict[ClaimStatus, tuple[str, ...]] = {
    ClaimStatus.REJECTED: ("rejectionReason",),
    ClaimStatus.PAID: ("txSignature",),
}


def ensure_status_fields(status: ClaimStatus, fields: dict[str, Any]) -> None:
    """
    Check the fields accompanying a move to ``status``.

    Raises:
        ValidationError: A key is not allowed for ``status``, or a
            required key is missing or blank
    """
    issues = []
    allowed = STATUS_FIELDS[status]
    for key in fields:
        if key not in allowed:
            issues.append(ValidationIssue(
                field=key,
                issue_type="not_allowed",
                message=f"{key} cannot be set when moving a claim to {status.value}",
            ))

    for key in REQUIRED_STATUS_FIELDS.get(status, ()):
        value = fields.get(key)
        if not isinstance(value, str) or not value.strip():
            issues.append(ValidationIssue(
                field=key,
                issue_type="missing",
                message=f"{key} is required to move a claim to {status.value}",
            ))

    if issues:
        raise ValidationError(issues)
