"""
Expense Claim Models

An expense claim is a reimbursement request paid out in USDC.

DESIGN DECISION: Status and category are closed enums rather than free
strings. Display text is a separate pure mapping (``status_label``,
``category_label``) so translations can be supplied from outside.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_serializer

from stableflow.models.record import StoreRecord


CLAIM_CURRENCY = "USDC"
MAX_CLAIM_AMOUNT = Decimal("100000")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """Supported expense categories."""
    TRAVEL = "TRAVEL"
    MEALS = "MEALS"
    SUPPLIES = "SUPPLIES"
    EQUIPMENT = "EQUIPMENT"
    SOFTWARE = "SOFTWARE"
    TRAINING = "TRAINING"
    ENTERTAINMENT = "ENTERTAINMENT"
    UTILITIES = "UTILITIES"
    OTHER = "OTHER"


class ClaimStatus(str, Enum):
    """
    Claim lifecycle status.

    CRITICAL: Status only moves forward. REJECTED, PAID and CANCELLED
    are terminal; nothing ever returns to PENDING or UNDER_REVIEW.
    """
    PENDING = "PENDING"            # Submitted, awaiting an approver
    UNDER_REVIEW = "UNDER_REVIEW"  # An approver has picked it up
    APPROVED = "APPROVED"          # Approved, awaiting payment
    REJECTED = "REJECTED"          # Declined with a reason
    PAID = "PAID"                  # USDC transfer recorded
    CANCELLED = "CANCELLED"        # Withdrawn by the owner

    @property
    def is_pending(self) -> bool:
        return self in (ClaimStatus.PENDING, ClaimStatus.UNDER_REVIEW)

    @property
    def is_terminal(self) -> bool:
        return self in (ClaimStatus.REJECTED, ClaimStatus.PAID, ClaimStatus.CANCELLED)


# =============================================================================
# DISPLAY LABELS
# =============================================================================

STATUS_LABELS: dict[ClaimStatus, str] = {
    ClaimStatus.PENDING: "Pending",
    ClaimStatus.UNDER_REVIEW: "Under review",
    ClaimStatus.APPROVED: "Approved",
    ClaimStatus.REJECTED: "Rejected",
    ClaimStatus.PAID: "Paid",
    ClaimStatus.CANCELLED: "Cancelled",
}

CATEGORY_LABELS: dict[ExpenseCategory, str] = {
    ExpenseCategory.TRAVEL: "Business travel",
    ExpenseCategory.MEALS: "Meals & drinks",
    ExpenseCategory.SUPPLIES: "Office supplies",
    ExpenseCategory.EQUIPMENT: "Equipment",
    ExpenseCategory.SOFTWARE: "Software & licenses",
    ExpenseCategory.TRAINING: "Training & certification",
    ExpenseCategory.ENTERTAINMENT: "Client entertainment",
    ExpenseCategory.UTILITIES: "Utilities",
    ExpenseCategory.OTHER: "Other",
}


def status_label(
    status: ClaimStatus,
    labels: Optional[Mapping[ClaimStatus, str]] = None,
) -> str:
    """Display text for a status. Pass ``labels`` to localize."""
    return (labels or STATUS_LABELS).get(status, status.value)


def category_label(
    category: ExpenseCategory,
    labels: Optional[Mapping[ExpenseCategory, str]] = None,
) -> str:
    """Display text for a category. Pass ``labels`` to localize."""
    return (labels or CATEGORY_LABELS).get(category, category.value)


# =============================================================================
# CLAIM MODELS
# =============================================================================

class Geolocation(BaseModel):
    """Where the expense was incurred, as captured by the client."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class ClaimDraft(BaseModel):
    """
    Unvalidated claim input from the submitter.

    Fields are deliberately loose: ``ClaimValidator`` turns bad input into
    field-specific messages instead of pydantic's generic ones.

    ``status``, ``currency`` and ``submitted_at`` may be present (for
    instance when a client re-sends a stored claim) but are always
    overwritten on submission.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Geolocation] = None

    status: Optional[ClaimStatus] = None
    currency: Optional[str] = None
    submitted_at: Optional[datetime] = None


class ExpenseClaim(StoreRecord):
    """
    A persisted expense claim, stored at ``expenses/{id}``.

    CRITICAL: ``id`` and ``user_id`` never change once written.
    Claims are never deleted - REJECTED and CANCELLED are soft end states.
    """

    # Identity
    id: Optional[str] = Field(
        default=None,
        description="Store-assigned key"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner (claimant) account id"
    )

    # What is being claimed
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., max_length=2000)
    amount: Decimal = Field(
        ...,
        gt=0,
        le=MAX_CLAIM_AMOUNT,
        description="Requested amount in USDC"
    )
    currency: Literal["USDC"] = CLAIM_CURRENCY
    category: ExpenseCategory
    notes: Optional[str] = Field(default=None, max_length=1000)
    receipt_url: Optional[str] = None

    # Lifecycle
    status: ClaimStatus = ClaimStatus.PENDING
    submitted_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Payment (populated only once PAID)
    tx_signature: Optional[str] = None
    tx_explorer_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    payer_address: Optional[str] = None

    # Optional geolocation
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location_address: Optional[str] = None

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)

    @property
    def is_pending(self) -> bool:
        return self.status.is_pending

    @property
    def location(self) -> Optional[Geolocation]:
        if self.latitude is None or self.longitude is None:
            return None
        return Geolocation(
            latitude=self.latitude,
            longitude=self.longitude,
            address=self.location_address,
        )

    @property
    def status_label(self) -> str:
        return status_label(self.status)

    @property
    def category_label(self) -> str:
        return category_label(self.category)


class ExpenseStats(BaseModel):
    """
    Aggregate view of a claim snapshot.

    The pending bucket covers both PENDING and UNDER_REVIEW.
    ``total_amount`` sums every claim regardless of status.
    """

    pending: int = 0
    approved: int = 0
    paid: int = 0
    rejected: int = 0
    pending_amount: Decimal = Decimal("0")
    approved_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    rejected_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")

    @property
    def total_count(self) -> int:
        return self.pending + self.approved + self.paid + self.rejected
