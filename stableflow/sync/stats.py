"""Aggregate statistics over a claim snapshot."""

from decimal import Decimal
from typing import Iterable

from stableflow.models.claim import ClaimStatus, ExpenseClaim, ExpenseStats


def compute_stats(claims: Iterable[ExpenseClaim]) -> ExpenseStats:
    """
    Fold a claim list into bucket counts and sums.

    PENDING and UNDER_REVIEW share the pending bucket. CANCELLED claims
    have no bucket but still count towards ``total_amount``.
    """
    counts = {"pending": 0, "approved": 0, "paid": 0, "rejected": 0}
    amounts = {bucket: Decimal("0") for bucket in counts}
    total = Decimal("0")

    for claim in claims:
        total += claim.amount
        if claim.status in (ClaimStatus.PENDING, ClaimStatus.UNDER_REVIEW):
            bucket = "pending"
        elif claim.status == ClaimStatus.APPROVED:
            bucket = "approved"
        elif claim.status == ClaimStatus.PAID:
            bucket = "paid"
        elif claim.status == ClaimStatus.REJECTED:
            bucket = "rejected"
        else:
            continue
        counts[bucket] += 1
        amounts[bucket] += claim.amount

    return ExpenseStats(
        **counts,
        pending_amount=amounts["pending"],
        approved_amount=amounts["approved"],
        paid_amount=amounts["paid"],
        rejected_amount=amounts["rejected"],
        total_amount=total,
    )
