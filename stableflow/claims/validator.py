"""
Claim Submission Validation

Runs before a claim is persisted. A draft either passes every check or
nothing is written at all.

Checks:
- Submitter is authenticated (has an account id)
- Title at least 3 characters after trimming
- Description at least 10 characters after trimming
- 0 < amount <= 100,000 USDC
- Category present and one of the known categories

IMPORTANT: Validation NEVER silently fixes issues (beyond trimming
whitespace). It reports them so the submitter can correct the form.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from stableflow.models.claim import MAX_CLAIM_AMOUNT, ClaimDraft, ExpenseCategory


MIN_TITLE_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 10


class ValidationIssue(BaseModel):
    """A single problem found in a claim draft."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'too_short', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


class ValidationError(Exception):
    """
    Caller input was rejected. Never retried.

    ``str(error)`` is the message of the first issue found; every issue
    is available on ``issues``.
    """

    def __init__(self, issues: list[ValidationIssue]):
        if not issues:
            raise ValueError("ValidationError requires at least one issue")
        self.issues = issues
        super().__init__(issues[0].message)

    @property
    def field(self) -> str:
        return self.issues[0].field

    @classmethod
    def for_field(cls, field: str, issue_type: str, message: str) -> "ValidationError":
        return cls([ValidationIssue(field=field, issue_type=issue_type, message=message)])


def parse_category(value) -> Optional[ExpenseCategory]:
    """Map raw input onto a category, or None if it is not one we know."""
    if isinstance(value, ExpenseCategory):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ExpenseCategory(value.strip().upper())
    except ValueError:
        return None


class ClaimValidator:
    """
    Validates claim drafts before submission.

    The same validator instance is safe to share; it holds no per-claim
    state.
    """

    def __init__(self, max_amount: Decimal = MAX_CLAIM_AMOUNT):
        # The stored model caps amounts at MAX_CLAIM_AMOUNT, so a looser
        # configured limit can never be honoured
        self._max_amount = min(max_amount, MAX_CLAIM_AMOUNT)

    def collect_issues(
        self,
        draft: ClaimDraft,
        owner_id: Optional[str],
    ) -> list[ValidationIssue]:
        """Run every check and return all issues found, in field order."""
        issues = []

        if not owner_id or not owner_id.strip():
            issues.append(ValidationIssue(
                field="user_id",
                issue_type="unauthenticated",
                message="You must be signed in to submit a claim",
            ))

        title = (draft.title or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            issues.append(ValidationIssue(
                field="title",
                issue_type="too_short",
                message=f"Title must be at least {MIN_TITLE_LENGTH} characters",
            ))

        description = (draft.description or "").strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_short",
                message=f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters",
            ))

        amount = draft.amount
        if amount is None or not amount.is_finite() or amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message="Amount must be greater than 0",
            ))
        elif amount > self._max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Amount cannot exceed {self._max_amount:,.0f} USDC",
            ))

        if draft.category is None or not str(draft.category).strip():
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Please choose a category",
            ))
        elif parse_category(draft.category) is None:
            issues.append(ValidationIssue(
                field="category",
                issue_type="unknown",
                message=f"Unknown category: {draft.category}",
            ))

        return issues

    def validate(self, draft: ClaimDraft, owner_id: Optional[str]) -> None:
        """
        Validate a draft for submission.

        Raises:
            ValidationError: on the first failing field (all issues attached)
        """
        issues = self.collect_issues(draft, owner_id)
        if issues:
            raise ValidationError(issues)
