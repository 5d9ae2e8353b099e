"""
Tests for StableFlow

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with mocked external services)
3. No real API calls in tests (use mocks)
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

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
    ClaimStatus,
    ExpenseCategory,
    ExpenseClaim,
    ExpenseStats,
    category_label,
    status_label,
)
from stableflow.models.record import as_utc


class TestClaimModels:
    """Tests for claim-related Pydantic models."""

    def test_claim_round_trips_camel_case_record(self):
        """Test that a stored record is read with its key as id."""
        claim = ExpenseClaim.from_record("-Nabc", {
            "userId": "alice",
            "title": "Hotel",
            "description": "Two nights for the Berlin summit",
            "amount": 320.5,
            "currency": "USDC",
            "category": "TRAVEL",
            "status": "APPROVED",
            "submittedAt": "2024-03-01T09:00:00+00:00",
            "approvedBy": "manager-1",
        })
        assert claim.id == "-Nabc"
        assert claim.user_id == "alice"
        assert claim.amount == Decimal("320.5")
        assert claim.status == ClaimStatus.APPROVED
        assert claim.approved_by == "manager-1"

    def test_to_record_uses_wire_keys(self):
        """Test that serialization emits camelCase and plain numbers."""
        claim = ExpenseClaim(
            id="c1",
            user_id="alice",
            title="Lunch",
            description="Team lunch after release",
            amount=Decimal("18.75"),
            category=ExpenseCategory.MEALS,
            submitted_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            latitude=1.3,
            longitude=103.8,
        )
        record = claim.to_record()
        assert record["userId"] == "alice"
        assert record["amount"] == 18.75
        assert record["submittedAt"].startswith("2024-01-01T00:00:00")
        assert "txSignature" not in record
        assert "user_id" not in record

    def test_claim_rejects_amount_over_limit(self):
        """Test that amounts above 100,000 are rejected."""
        with pytest.raises(ValueError):
            ExpenseClaim(
                user_id="alice",
                title="Car",
                description="Company car purchase",
                amount=Decimal("100000.01"),
                category=ExpenseCategory.EQUIPMENT,
            )

    def test_claim_rejects_other_currency(self):
        """Test that currency is fixed to USDC."""
        with pytest.raises(ValueError):
            ExpenseClaim(
                user_id="alice",
                title="Lunch",
                description="Team lunch after release",
                amount=Decimal("10"),
                currency="EUR",
                category=ExpenseCategory.MEALS,
            )

    def test_location_requires_both_coordinates(self):
        """Test that a location is only reported when complete."""
        claim = ExpenseClaim(
            user_id="alice",
            title="Lunch",
            description="Team lunch after release",
            amount=Decimal("10"),
            category=ExpenseCategory.MEALS,
            latitude=1.3,
        )
        assert claim.location is None

    def test_status_helpers(self):
        """Test pending and terminal classification."""
        assert ClaimStatus.UNDER_REVIEW.is_pending
        assert not ClaimStatus.APPROVED.is_pending
        assert ClaimStatus.CANCELLED.is_terminal
        assert not ClaimStatus.APPROVED.is_terminal


class TestLabels:
    """Tests for display label mapping."""

    def test_default_labels(self):
        """Test the built-in English labels."""
        assert status_label(ClaimStatus.UNDER_REVIEW) == "Under review"
        assert category_label(ExpenseCategory.MEALS) == "Meals & drinks"

    def test_labels_can_be_overridden(self):
        """Test that callers can supply translated labels."""
        labels = {ClaimStatus.PAID: "Payé"}
        assert status_label(ClaimStatus.PAID, labels) == "Payé"
        # Missing entries fall back to the enum value
        assert status_label(ClaimStatus.PENDING, labels) == "PENDING"


class TestAccountModels:
    """Tests for account and wallet models."""

    def test_account_from_record(self):
        """Test reading a profile stored by the mobile client."""
        account = UserAccount.from_record("u1", {
            "email": "ana@example.com",
            "displayName": "Ana Lima",
            "balance": 100.0,
            "walletAddress": "11111111111111111111111111111111",
            "verified": True,
            "accountType": "GOOGLE",
        })
        assert account.id == "u1"
        assert account.balance == Decimal("100.0")
        assert account.is_verified is True
        assert account.account_type == AccountType.GOOGLE
        assert account.has_wallet
        assert account.initials == "AL"

    def test_account_record_keeps_verified_key(self):
        """Test that the verified flag is written under its stored name."""
        record = UserAccount(id="u1", is_verified=True).to_record()
        assert record["verified"] is True
        assert record["balance"] == 0.0

    def test_initials_fall_back_to_email(self):
        """Test initials without a display name."""
        assert UserAccount(id="u1", email="bob@example.com").initials == "B"
        assert UserAccount(id="u1").initials == "?"

    def test_zero_snapshot(self):
        """Test the zeroed wallet snapshot."""
        snapshot = WalletBalanceSnapshot.zero()
        assert snapshot.sol_balance == Decimal("0")
        assert snapshot.usdc_balance == Decimal("0")

    def test_as_utc_marks_naive_timestamps(self):
        """Test that naive timestamps are treated as UTC."""
        assert as_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc
        assert as_utc(None) is None


class TestExpenseStats:
    """Tests for the stats model."""

    def test_total_count(self):
        """Test that bucket counts add up."""
        stats = ExpenseStats(pending=2, approved=1, paid=3, rejected=1)
        assert stats.total_count == 7


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.CLAIM_SUBMITTED,
            description="Claim submitted",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_cancellation_has_its_own_event_type(self):
        """Test that moving to CANCELLED is audited as a cancellation."""
        event = AuditEventBuilder.claim_status_changed(
            claim_id="c1",
            from_status="PENDING",
            to_status="CANCELLED",
            actor_id="alice",
        )
        assert event.event_type == AuditEventType.CLAIM_CANCELLED
        assert event.is_user_action

    def test_partial_refresh_is_a_warning(self):
        """Test that a partial balance refresh is flagged."""
        event = AuditEventBuilder.balance_refreshed(
            address="addr", sol_balance="1", usdc_balance="2", partial=True
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details["partial"] is True

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.balance_sync_failed(
            account_id="u1",
            usdc_balance="14.75",
            error_message="permission denied",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "balance_sync_failed"
        assert log_dict["entity_id"] == "u1"
        assert log_dict["error_message"] == "permission denied"
        assert isinstance(log_dict["event_id"], str)
