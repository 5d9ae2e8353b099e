"""Tests for the synchronization layer against the in-memory store."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stableflow.claims import InvalidState, InvalidTransition, ValidationError
from stableflow.models.account import AccountType
from stableflow.models.audit import AuditEventType
from stableflow.models.claim import ClaimStatus, ExpenseClaim, ExpenseCategory
from stableflow.services.solana import InvalidAddress
from stableflow.services.store import NotFoundError, SubscriptionError, WriteError
from stableflow.sync import Observable, compute_stats, sort_claims
from tests.conftest import WALLET_A, make_draft


def claim_record(owner, submitted_at=None, status="PENDING", amount=10.0):
    record = {
        "userId": owner,
        "title": "Lunch",
        "description": "Lunch with the audit team",
        "amount": amount,
        "currency": "USDC",
        "category": "MEALS",
        "status": status,
    }
    if submitted_at:
        record["submittedAt"] = submitted_at
    return record


class TestObservable:
    """Tests for observable values."""

    def test_observe_emits_current_and_updates(self):
        """Test registration, publish and removal."""
        value = Observable(0)
        seen = []
        remove = value.observe(seen.append)
        value.publish(1)
        remove()
        value.publish(2)
        assert seen == [0, 1]
        assert value.value == 2

    def test_failing_observer_does_not_block_others(self):
        """Test that one broken observer is isolated."""
        value = Observable(0)
        seen = []

        def broken(v):
            raise RuntimeError("boom")

        value.observe(broken, emit_current=False)
        value.observe(seen.append, emit_current=False)
        value.publish(5)
        assert seen == [5]


class TestStats:
    """Tests for the stats fold."""

    def _claim(self, status, amount):
        return ExpenseClaim(
            user_id="alice",
            title="Lunch",
            description="Lunch with the audit team",
            amount=Decimal(amount),
            category=ExpenseCategory.MEALS,
            status=status,
        )

    def test_buckets_and_total(self):
        """Test that PENDING and UNDER_REVIEW share a bucket and total covers all."""
        stats = compute_stats([
            self._claim(ClaimStatus.PENDING, "10"),
            self._claim(ClaimStatus.UNDER_REVIEW, "5"),
            self._claim(ClaimStatus.APPROVED, "20"),
            self._claim(ClaimStatus.PAID, "30"),
            self._claim(ClaimStatus.REJECTED, "1"),
            self._claim(ClaimStatus.CANCELLED, "2"),
        ])
        assert stats.pending == 2
        assert stats.pending_amount == Decimal("15")
        assert stats.approved_amount == Decimal("20")
        assert stats.paid == 1
        assert stats.rejected_amount == Decimal("1")
        assert stats.total_amount == Decimal("68")
        assert stats.total_count == 5

    def test_empty(self):
        """Test an empty snapshot."""
        assert compute_stats([]).total_amount == Decimal("0")


class TestClaimOrdering:
    """Tests for claim list ordering."""

    def test_descending_with_missing_dates_last(self):
        """Test 2024-03-01, 2024-01-01, then the undated claim."""
        claims = [
            ExpenseClaim.from_record(key, claim_record("alice", submitted))
            for key, submitted in [
                ("a", "2024-01-01T00:00:00Z"),
                ("b", "2024-03-01T00:00:00Z"),
                ("c", None),
            ]
        ]
        assert [c.id for c in sort_claims(claims)] == ["b", "a", "c"]

    def test_naive_and_aware_timestamps_compare(self):
        """Test that naive timestamps are treated as UTC."""
        claims = [
            ExpenseClaim.from_record("naive", claim_record("alice", "2024-02-01T00:00:00")),
            ExpenseClaim.from_record("aware", claim_record("alice", "2024-02-02T00:00:00+00:00")),
        ]
        assert [c.id for c in sort_claims(claims)] == ["aware", "naive"]


class TestSubmitClaim:
    """Tests for claim submission."""

    def test_submission_is_stamped(self, sync, store):
        """Test id, status, currency and time regardless of caller input."""
        draft = make_draft(
            status=ClaimStatus.PAID,
            currency="EUR",
            submitted_at=datetime(2001, 1, 1, tzinfo=timezone.utc),
        )
        before = datetime.now(timezone.utc)
        claim_id = asyncio.run(sync.submit_claim(draft, "alice"))

        assert claim_id
        record = store.dump()["expenses"][claim_id]
        assert record["status"] == "PENDING"
        assert record["currency"] == "USDC"
        assert record["userId"] == "alice"
        submitted = datetime.fromisoformat(record["submittedAt"].replace("Z", "+00:00"))
        assert abs(submitted - before) < timedelta(seconds=5)

    def test_invalid_draft_writes_nothing(self, sync, store, audit):
        """Test that validation failure leaves the store untouched."""
        with pytest.raises(ValidationError):
            asyncio.run(sync.submit_claim(make_draft(title="x"), "alice"))
        assert store.dump() is None
        assert audit.events[-1].event_type == AuditEventType.CLAIM_VALIDATION_FAILED

    def test_store_rejection_is_write_error(self, sync, store):
        """Test that a rejected write surfaces as WriteError."""
        store.fail_writes(RuntimeError("permission denied"))
        with pytest.raises(WriteError):
            asyncio.run(sync.submit_claim(make_draft(), "alice"))

    def test_overlong_title_is_validation_error(self, sync, store):
        """Test that model limits surface as ValidationError."""
        with pytest.raises(ValidationError) as exc:
            asyncio.run(sync.submit_claim(make_draft(title="t" * 201), "alice"))
        assert exc.value.field == "title"
        assert store.dump() is None


class TestStatusChanges:
    """Tests for status patches and cancellation."""

    def _submit(self, sync):
        return asyncio.run(sync.submit_claim(make_draft(), "alice"))

    def test_patch_writes_only_named_fields(self, sync, store):
        """Test a partial update of one claim."""
        claim_id = self._submit(sync)
        asyncio.run(sync.patch_claim_status(
            claim_id, ClaimStatus.APPROVED, {"approvedBy": "m1"}, actor_id="m1"
        ))
        record = store.dump()["expenses"][claim_id]
        assert record["status"] == "APPROVED"
        assert record["approvedBy"] == "m1"
        assert record["title"] == "Taxi to airport"

    def test_illegal_patch_rejected(self, sync, store):
        """Test that PENDING cannot jump to PAID."""
        claim_id = self._submit(sync)
        with pytest.raises(InvalidTransition):
            asyncio.run(sync.patch_claim_status(claim_id, ClaimStatus.PAID))
        assert store.dump()["expenses"][claim_id]["status"] == "PENDING"

    def test_identity_fields_cannot_be_patched(self, sync, store):
        """Test that owner, amount and currency survive a status patch."""
        claim_id = self._submit(sync)
        with pytest.raises(ValidationError) as exc:
            asyncio.run(sync.patch_claim_status(
                claim_id,
                ClaimStatus.APPROVED,
                {"approvedBy": "m1", "userId": "mallory", "amount": 99999, "currency": "IDR"},
            ))
        assert [issue.field for issue in exc.value.issues] == ["userId", "amount", "currency"]

        record = store.dump()["expenses"][claim_id]
        assert record["userId"] == "alice"
        assert record["amount"] == 42.5
        assert record["currency"] == "USDC"
        assert record["status"] == "PENDING"
        assert "approvedBy" not in record

    def test_review_patch_carries_no_fields(self, sync):
        """Test that submittedAt cannot be removed through a patch."""
        claim_id = self._submit(sync)
        with pytest.raises(ValidationError) as exc:
            asyncio.run(sync.patch_claim_status(
                claim_id, ClaimStatus.UNDER_REVIEW, {"submittedAt": None}
            ))
        assert exc.value.field == "submittedAt"

        claim = asyncio.run(sync.get_claim(claim_id))
        assert claim.submitted_at is not None
        assert claim.status == ClaimStatus.PENDING

    @pytest.mark.parametrize("fields", [None, {"rejectionReason": "   "}])
    def test_rejection_requires_reason(self, sync, store, fields):
        """Test that REJECTED is never written without a reason."""
        claim_id = self._submit(sync)
        with pytest.raises(ValidationError) as exc:
            asyncio.run(sync.patch_claim_status(claim_id, ClaimStatus.REJECTED, fields))
        assert exc.value.field == "rejectionReason"
        assert store.dump()["expenses"][claim_id]["status"] == "PENDING"

    def test_payment_fields_only_when_paid(self, sync, store):
        """Test that payment data cannot ride along with an approval."""
        claim_id = self._submit(sync)
        with pytest.raises(ValidationError) as exc:
            asyncio.run(sync.patch_claim_status(
                claim_id, ClaimStatus.APPROVED, {"txSignature": "sig"}
            ))
        assert exc.value.field == "txSignature"
        assert "txSignature" not in store.dump()["expenses"][claim_id]

    def test_paid_requires_signature(self, sync, store):
        """Test that APPROVED to PAID needs a transaction signature."""
        claim_id = self._submit(sync)
        asyncio.run(sync.patch_claim_status(claim_id, ClaimStatus.APPROVED, {"approvedBy": "m1"}))
        with pytest.raises(ValidationError):
            asyncio.run(sync.patch_claim_status(claim_id, ClaimStatus.PAID, {"payerAddress": "p"}))
        assert store.dump()["expenses"][claim_id]["status"] == "APPROVED"

    def test_cancel_pending_claim(self, sync, store, audit):
        """Test that a PENDING claim can be cancelled."""
        claim_id = self._submit(sync)
        previous = asyncio.run(sync.cancel_claim(claim_id, actor_id="alice"))
        assert previous == ClaimStatus.PENDING
        assert store.dump()["expenses"][claim_id]["status"] == "CANCELLED"
        assert audit.events[-1].event_type == AuditEventType.CLAIM_CANCELLED

    def test_cancel_paid_claim_fails(self, sync, store):
        """Test that a PAID claim cannot be cancelled."""
        asyncio.run(store.write("expenses/c1", claim_record("alice", status="PAID")))
        with pytest.raises(InvalidState):
            asyncio.run(sync.cancel_claim("c1"))
        assert store.dump()["expenses"]["c1"]["status"] == "PAID"

    def test_unknown_claim(self, sync):
        """Test NotFoundError for a missing claim."""
        with pytest.raises(NotFoundError):
            asyncio.run(sync.get_claim("missing"))


class TestClaimSubscription:
    """Tests for the owner-filtered claim stream."""

    def test_filters_by_owner_and_sorts(self, sync, store):
        """Test filtering, ordering and stats publication."""
        asyncio.run(store.write("expenses", {
            "a": claim_record("alice", "2024-01-01T00:00:00Z"),
            "b": claim_record("alice", "2024-03-01T00:00:00Z", status="APPROVED"),
            "c": claim_record("alice"),
            "d": claim_record("bob", "2024-05-01T00:00:00Z"),
        }))
        snapshots = []
        sync.subscribe_claims("alice", on_snapshot=snapshots.append)

        assert [c.id for c in snapshots[-1]] == ["b", "a", "c"]
        assert [c.id for c in sync.claims.value] == ["b", "a", "c"]
        assert sync.stats.value.approved == 1
        assert sync.stats.value.pending == 2

    def test_other_owners_changes_re_emit(self, sync, store):
        """Test that any change in the collection re-emits the list."""
        snapshots = []
        sync.subscribe_claims("alice", on_snapshot=snapshots.append)
        asyncio.run(store.write("expenses/x", claim_record("bob")))
        assert len(snapshots) == 2
        assert snapshots[-1] == []

    def test_malformed_record_is_skipped(self, sync, store):
        """Test that one bad record does not hide the others."""
        bad = claim_record("alice", "2024-01-01T00:00:00Z", amount=-3)
        asyncio.run(store.write("expenses", {
            "good": claim_record("alice", "2024-01-02T00:00:00Z"),
            "bad": bad,
        }))
        sync.subscribe_claims("alice")
        assert [c.id for c in sync.claims.value] == ["good"]

    def test_no_delivery_after_stop(self, sync, store):
        """Test that stop is immediate and idempotent."""
        snapshots = []
        handle = sync.subscribe_claims("alice", on_snapshot=snapshots.append)
        assert handle.stop() is True
        assert handle.stop() is False
        asyncio.run(sync.submit_claim(make_draft(), "alice"))
        assert len(snapshots) == 1
        assert store.listener_count == 0

    def test_async_snapshots(self, sync):
        """Test iterating snapshots from asyncio."""
        async def scenario():
            handle = sync.subscribe_claims("alice")
            seen = []

            async def consume():
                async for claims in handle.snapshots():
                    seen.append(len(claims))
                    if len(seen) == 2:
                        handle.stop()

            task = asyncio.create_task(consume())
            await asyncio.sleep(0)
            await sync.submit_claim(make_draft(), "alice")
            await asyncio.wait_for(task, timeout=2)
            return seen

        assert asyncio.run(scenario()) == [0, 1]

    def test_failure_stops_handle_and_reports(self, sync, store, audit):
        """Test that a store error terminates the subscription."""
        errors = []
        handle = sync.subscribe_claims("alice", on_error=errors.append)
        store.fail_listeners("expenses", RuntimeError("permission denied"))

        assert not handle.is_active
        assert isinstance(errors[0], SubscriptionError)
        assert any(
            e.event_type == AuditEventType.SUBSCRIPTION_FAILED for e in audit.events
        )
        assert store.listener_count == 0


class TestAccountSubscription:
    """Tests for account snapshots."""

    def test_resubscribe_replaces_previous(self, sync, store):
        """Test at most one active subscription per account."""
        first, second = [], []
        old = sync.subscribe_account("u1", on_snapshot=first.append)
        sync.subscribe_account("u1", on_snapshot=second.append)

        assert not old.is_active
        assert store.listener_count == 1
        assert sync.active_keys == ["account:u1"]

        asyncio.run(store.write("users/u1", {"email": "a@example.com"}))
        assert len(first) == 1
        assert second[-1].email == "a@example.com"

    def test_full_snapshot_on_field_change(self, sync, store):
        """Test that a balance write emits the whole account."""
        asyncio.run(store.write("users/u1", {"email": "a@example.com", "balance": 1.0}))
        sync.subscribe_account("u1")
        asyncio.run(sync.update_balance("u1", Decimal("14.75")))

        account = sync.account.value
        assert account.balance == Decimal("14.75")
        assert account.email == "a@example.com"

    def test_stop_all_is_idempotent(self, sync, store):
        """Test sign-out teardown."""
        sync.subscribe_account("u1")
        sync.subscribe_claims("u1")
        sync.stop_all()
        sync.stop_all()
        assert store.listener_count == 0
        assert sync.active_keys == []

    def test_requires_account_id(self, sync):
        """Test that anonymous subscriptions are refused."""
        with pytest.raises(ValidationError):
            sync.subscribe_account("")


class TestAccountWrites:
    """Tests for account creation and wallet writes."""

    def test_ensure_account_creates_once(self, sync, store):
        """Test first sign-in creates the profile, later ones keep it."""
        created = asyncio.run(sync.ensure_account(
            "u1", email="a@example.com", account_type=AccountType.GOOGLE
        ))
        assert created.is_verified
        asyncio.run(store.write("users/u1/department", "Finance"))

        again = asyncio.run(sync.ensure_account("u1", email="other@example.com"))
        assert again.email == "a@example.com"
        assert again.department == "Finance"
        assert again.account_type == AccountType.GOOGLE

    def test_wallet_address_written_and_removed(self, sync, store):
        """Test writing and clearing the wallet address."""
        asyncio.run(sync.update_wallet_address("u1", WALLET_A))
        assert store.dump()["users"]["u1"]["walletAddress"] == WALLET_A
        asyncio.run(sync.update_wallet_address("u1", None))
        assert store.dump() is None

    def test_invalid_wallet_address_not_written(self, sync, store):
        """Test that malformed addresses never reach the store."""
        with pytest.raises(InvalidAddress):
            asyncio.run(sync.update_wallet_address("u1", "0OIl"))
        assert store.dump() is None
