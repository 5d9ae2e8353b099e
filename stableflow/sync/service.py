"""
Synchronization Service

The only component that reads, writes or listens to the remote store.
It turns store notifications into typed snapshots published through
observables, and owns every subscription handle for the session.

Store layout:
    users/{id}                  UserAccount
    users/{id}/walletAddress    active wallet address
    users/{id}/balance          ledger balance (written by reconciliation)
    expenses/{id}               ExpenseClaim
    expenses/{id}/status        ClaimStatus

DESIGN DECISION: Claims are filtered by owner here, not by the store.
The whole ``expenses`` collection is watched, so a change to anyone's
claim re-emits the (unchanged) list for this owner. Correctness over
bandwidth: it never depends on indexes being configured server-side.
"""

import threading
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from stableflow.audit.logger import AuditLogger
from stableflow.claims.lifecycle import (
    ensure_cancellable,
    ensure_status_fields,
    ensure_transition,
    new_claim,
)
from stableflow.claims.validator import ClaimValidator, ValidationError
from stableflow.models.account import AccountType, UserAccount
from stableflow.models.claim import (
    ClaimDraft,
    ClaimStatus,
    ExpenseClaim,
    ExpenseStats,
)
from stableflow.models.record import as_utc, utc_now
from stableflow.services.solana.client import ensure_address
from stableflow.services.store.interface import (
    NotFoundError,
    RemoteStoreInterface,
    StorageError,
    SubscriptionError,
    WriteError,
)
from stableflow.sync.observable import Observable
from stableflow.sync.stats import compute_stats
from stableflow.sync.subscription import SnapshotSubscription


logger = structlog.get_logger(__name__)

USERS = "users"
EXPENSES = "expenses"


def account_path(account_id: str) -> str:
    return f"{USERS}/{account_id}"


def claim_path(claim_id: str) -> str:
    return f"{EXPENSES}/{claim_id}"


def sort_claims(claims: list[ExpenseClaim]) -> list[ExpenseClaim]:
    """Newest first by submission time; claims without one go last."""
    def sort_key(claim: ExpenseClaim):
        submitted = as_utc(claim.submitted_at)
        if submitted is None:
            return (1, 0.0)
        return (0, -submitted.timestamp())

    return sorted(claims, key=sort_key)


def parse_claims(raw: Any, owner_id: str) -> list[ExpenseClaim]:
    """
    Turn the raw ``expenses`` collection into the owner's sorted claims.

    Malformed records are logged and left out; one bad record must not
    hide the rest of the list.
    """
    if not isinstance(raw, dict):
        return []

    claims = []
    for key, record in raw.items():
        if not isinstance(record, dict) or record.get("userId") != owner_id:
            continue
        try:
            claims.append(ExpenseClaim.from_record(key, record))
        except PydanticValidationError as e:
            logger.warning("claim_record_skipped", claim_id=key, errors=e.error_count())
    return sort_claims(claims)


def parse_account(raw: Any, account_id: str) -> Optional[UserAccount]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"Account record {account_id} is not an object")
    return UserAccount.from_record(account_id, raw)


class SyncService:
    """
    Session-scoped bridge between the remote store and observers.

    Observables:
        account: latest UserAccount snapshot (None until loaded or if missing)
        claims: latest sorted claim list for the subscribed owner
        stats: ExpenseStats folded from ``claims``
    """

    def __init__(
        self,
        store: RemoteStoreInterface,
        validator: Optional[ClaimValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator or ClaimValidator()
        self._audit = audit_logger or AuditLogger()

        self._handles: dict[str, SnapshotSubscription] = {}
        self._handles_lock = threading.RLock()

        self.account: Observable[Optional[UserAccount]] = Observable(None, name="account")
        self.claims: Observable[list[ExpenseClaim]] = Observable([], name="claims")
        self.stats: Observable[ExpenseStats] = Observable(ExpenseStats(), name="stats")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    @property
    def active_keys(self) -> list[str]:
        with self._handles_lock:
            return [key for key, handle in self._handles.items() if handle.is_active]

    def handle(self, key: str) -> Optional[SnapshotSubscription]:
        with self._handles_lock:
            return self._handles.get(key)

    def subscribe_account(
        self,
        account_id: str,
        on_snapshot: Optional[Callable[[Optional[UserAccount]], None]] = None,
        on_error: Optional[Callable[[SubscriptionError], None]] = None,
    ) -> SnapshotSubscription[Optional[UserAccount]]:
        """
        Stream full UserAccount snapshots for one account.

        Any existing subscription for the same account is stopped before
        the new one attaches.
        """
        if not account_id:
            raise ValidationError.for_field(
                "account_id", "unauthenticated", "You must be signed in"
            )

        def deliver(account: Optional[UserAccount]) -> None:
            self.account.publish(account)
            if on_snapshot:
                on_snapshot(account)

        handle = SnapshotSubscription(
            key=f"account:{account_id}",
            store=self._store,
            path=account_path(account_id),
            transform=lambda raw: parse_account(raw, account_id),
            on_snapshot=deliver,
            on_error=on_error,
            audit_logger=self._audit,
        )
        return self._replace(handle)

    def subscribe_claims(
        self,
        owner_id: str,
        on_snapshot: Optional[Callable[[list[ExpenseClaim]], None]] = None,
        on_error: Optional[Callable[[SubscriptionError], None]] = None,
    ) -> SnapshotSubscription[list[ExpenseClaim]]:
        """
        Stream the owner's claims, newest first, re-emitted on every
        change anywhere in the ``expenses`` collection.
        """
        if not owner_id:
            raise ValidationError.for_field(
                "owner_id", "unauthenticated", "You must be signed in"
            )

        def deliver(claims: list[ExpenseClaim]) -> None:
            self.claims.publish(claims)
            self.stats.publish(compute_stats(claims))
            if on_snapshot:
                on_snapshot(claims)

        handle = SnapshotSubscription(
            key=f"claims:{owner_id}",
            store=self._store,
            path=EXPENSES,
            transform=lambda raw: parse_claims(raw, owner_id),
            on_snapshot=deliver,
            on_error=on_error,
            audit_logger=self._audit,
        )
        return self._replace(handle)

    def _replace(self, handle: SnapshotSubscription) -> SnapshotSubscription:
        with self._handles_lock:
            previous = self._handles.pop(handle.key, None)
            if previous is not None:
                # Fully detached before the replacement attaches
                previous.stop()
            self._handles[handle.key] = handle
            try:
                handle.start()
            except SubscriptionError:
                self._handles.pop(handle.key, None)
                raise
        return handle

    def unsubscribe(self, key: str) -> bool:
        """Stop and forget one subscription. Unknown keys are a no-op."""
        with self._handles_lock:
            handle = self._handles.pop(key, None)
        if handle is None:
            return False
        return handle.stop()

    def stop_all(self) -> None:
        """Stop every subscription (sign-out). Safe to call repeatedly."""
        with self._handles_lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.stop()

    # =========================================================================
    # CLAIMS
    # =========================================================================

    async def submit_claim(
        self,
        draft: ClaimDraft,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Validate, stamp and write a new claim.

        Status, currency and submission time are set here whatever the
        draft says. Nothing is written unless validation passes, and the
        record is written in one operation.

        Returns:
            The new claim id

        Raises:
            ValidationError: If the draft is rejected
            WriteError: If the store rejects the write
        """
        try:
            self._validator.validate(draft, owner_id)
        except ValidationError as e:
            self._audit.log_claim_validation_failed(
                owner_id=owner_id,
                issues=[issue.model_dump() for issue in e.issues],
                correlation_id=correlation_id,
            )
            raise

        claim_id = await self._store.reserve_id(EXPENSES)
        try:
            claim = new_claim(draft, owner_id, claim_id)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else "claim"
            raise ValidationError.for_field(field, "invalid", error["msg"])

        try:
            await self._store.write(claim_path(claim_id), claim.to_record())
        except WriteError:
            raise
        except StorageError as e:
            raise WriteError(f"Failed to save claim: {e}")

        self._audit.log_claim_submitted(
            claim_id=claim_id,
            owner_id=owner_id,
            amount=claim.amount,
            correlation_id=correlation_id,
        )
        return claim_id

    async def get_claim(self, claim_id: str) -> ExpenseClaim:
        """
        Raises:
            NotFoundError: If no claim is stored under ``claim_id``
        """
        raw = await self._store.read(claim_path(claim_id))
        if not isinstance(raw, dict):
            raise NotFoundError(f"Claim not found: {claim_id}")
        return ExpenseClaim.from_record(claim_id, raw)

    async def patch_claim_status(
        self,
        claim_id: str,
        new_status: ClaimStatus,
        fields: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ClaimStatus:
        """
        Move a claim to ``new_status`` and set the accompanying fields.

        Only the named children of ``expenses/{id}`` are written.

        Returns:
            The status the claim moved from

        Raises:
            NotFoundError: If the claim does not exist
            InvalidTransition: If the move is not allowed
            ValidationError: If ``fields`` holds a key the new status does
                not allow, or lacks one it requires
            WriteError: If the store rejects the write
        """
        claim = await self.get_claim(claim_id)
        ensure_transition(claim.status, new_status)
        ensure_status_fields(new_status, fields or {})
        return await self._write_status(
            claim, new_status, fields, actor_id, correlation_id
        )

    async def cancel_claim(
        self,
        claim_id: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ClaimStatus:
        """
        Withdraw a claim nobody has decided on yet.

        Raises:
            InvalidState: If the claim is past PENDING / UNDER_REVIEW
        """
        claim = await self.get_claim(claim_id)
        ensure_cancellable(claim.status)
        return await self._write_status(
            claim, ClaimStatus.CANCELLED, None, actor_id, correlation_id
        )

    async def _write_status(
        self,
        claim: ExpenseClaim,
        new_status: ClaimStatus,
        fields: Optional[dict[str, Any]],
        actor_id: Optional[str],
        correlation_id: Optional[UUID],
    ) -> ClaimStatus:
        patch = {**(fields or {}), "status": new_status.value}
        try:
            await self._store.update(claim_path(claim.id), patch)
        except WriteError:
            raise
        except StorageError as e:
            raise WriteError(f"Failed to update claim: {e}")

        self._audit.log_claim_status_changed(
            claim_id=claim.id,
            from_status=claim.status.value,
            to_status=new_status.value,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        return claim.status

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def ensure_account(
        self,
        account_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
        account_type: AccountType = AccountType.PERSONAL,
    ) -> UserAccount:
        """
        Load the profile, creating it on first sign-in.

        An existing profile only gets its ``lastLoginAt`` bumped; nothing
        else the user may have edited is overwritten.
        """
        now = utc_now()
        raw = await self._store.read(account_path(account_id))

        if isinstance(raw, dict):
            await self._store.update(
                account_path(account_id), {"lastLoginAt": now.isoformat()}
            )
            return UserAccount.from_record(account_id, {**raw, "lastLoginAt": now.isoformat()})

        account = UserAccount(
            id=account_id,
            email=email,
            display_name=display_name,
            photo_url=photo_url,
            account_type=account_type,
            is_verified=account_type == AccountType.GOOGLE,
            created_at=now,
            last_login_at=now,
        )
        try:
            await self._store.write(account_path(account_id), account.to_record())
        except StorageError as e:
            raise WriteError(f"Failed to create account: {e}")
        logger.info("account_created", account_id=account_id, account_type=account_type.value)
        return account

    async def update_wallet_address(
        self,
        account_id: str,
        address: Optional[str],
    ) -> None:
        """
        Store (or with None, remove) the account's wallet address.

        Raises:
            InvalidAddress: If the address is malformed. Nothing is written.
        """
        if address is not None:
            address = ensure_address(address)
        try:
            await self._store.write(f"{account_path(account_id)}/walletAddress", address)
        except WriteError:
            raise
        except StorageError as e:
            raise WriteError(f"Failed to save wallet address: {e}")

    async def update_balance(self, account_id: str, balance: Decimal) -> None:
        """Write the ledger balance. Only the reconciliation coordinator calls this."""
        try:
            await self._store.write(f"{account_path(account_id)}/balance", float(balance))
        except WriteError:
            raise
        except StorageError as e:
            raise WriteError(f"Failed to save balance: {e}")
