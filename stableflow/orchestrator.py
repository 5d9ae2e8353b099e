"""
Main Orchestrator for StableFlow

This module ties together all the components and defines the
end-to-end flows for:
1. Claim submission (validate → upload receipt → stamp → write)
2. Claim review (review → approve/reject → mark paid)
3. Account session (sign in → subscribe → reconcile wallet → sign out)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No receipt is uploaded for a draft that fails validation
- No claim is marked paid without a confirmed on-chain signature
- Every step is audited

Nothing here moves funds. Payment happens in the user's wallet app via
a Solana Pay link; we only record the resulting signature.
"""

import asyncio
from concurrent.futures import Future
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from stableflow.audit import AuditLogger, configure_logging, create_correlation_id
from stableflow.claims.lifecycle import (
    approval_fields,
    payment_fields,
    rejection_fields,
)
from stableflow.claims.validator import ClaimValidator, ValidationError
from stableflow.config import get_settings
from stableflow.config.settings import Settings
from stableflow.models.account import AccountType, UserAccount, WalletBalanceSnapshot
from stableflow.models.claim import ClaimDraft, ClaimStatus
from stableflow.reconciliation import BalanceReconciler
from stableflow.services.receipts import (
    CloudinaryReceiptStorage,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from stableflow.services.solana import (
    InvalidAddress,
    SignatureStatus,
    SolanaError,
    SolanaRpcClient,
    ensure_address,
    is_valid_address,
)
from stableflow.services.store import RemoteStoreInterface, StorageError
from stableflow.sync import SyncService


logger = structlog.get_logger(__name__)


class PaymentNotConfirmedError(Exception):
    """The payment signature is not (yet) confirmed on-chain."""

    def __init__(self, status: SignatureStatus):
        self.status = status
        if status.raw_status:
            detail = f"still {status.raw_status}"
        else:
            detail = status.state.value.replace("_", " ")
        super().__init__(f"Payment transaction is not confirmed ({detail})")


class ClaimSubmissionFlow:
    """
    Orchestrates claim submission by the claimant.

    Flow:
    1. Validate → the draft is checked before anything leaves the device
    2. Upload → receipt bytes go to the blob store (optional)
    3. Submit → stamped PENDING claim written in one operation
    """

    def __init__(
        self,
        sync_service: SyncService,
        receipt_storage: Optional[ReceiptStorageInterface] = None,
        validator: Optional[ClaimValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._sync = sync_service
        self._receipts = receipt_storage
        self._validator = validator or ClaimValidator()
        self._audit_logger = audit_logger

    async def submit(
        self,
        draft: ClaimDraft,
        owner_id: str,
        receipt: Optional[bytes] = None,
        receipt_filename: str = "receipt.jpg",
        on_progress: Optional[Callable[[float], None]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Submit a claim, uploading its receipt first if one is given.

        Returns:
            The new claim id

        Raises:
            ValidationError: Draft rejected; nothing uploaded or written
            ReceiptUploadError: Receipt upload failed; no claim written
            WriteError: Store rejected the claim
        """
        correlation_id = correlation_id or create_correlation_id()

        # Fail before spending an upload on a draft that cannot be saved
        self._validator.validate(draft, owner_id)

        if receipt is not None:
            if self._receipts is None:
                raise ReceiptUploadError("Receipt uploads are not configured")
            try:
                url = await self._receipts.upload_receipt(
                    owner_id, receipt, receipt_filename, on_progress
                )
            except ReceiptUploadError as e:
                if self._audit_logger:
                    self._audit_logger.log_external_service_error(
                        service="receipts",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
                raise

            if self._audit_logger:
                self._audit_logger.log_receipt_uploaded(
                    owner_id=owner_id,
                    url=url,
                    size_bytes=len(receipt),
                    correlation_id=correlation_id,
                )
            draft = draft.model_copy(update={"receipt_url": url})

        return await self._sync.submit_claim(draft, owner_id, correlation_id=correlation_id)

    async def cancel(self, claim_id: str, owner_id: str) -> None:
        """Withdraw a PENDING or UNDER_REVIEW claim."""
        await self._sync.cancel_claim(claim_id, actor_id=owner_id)


class ClaimReviewFlow:
    """
    Orchestrates review and payment by an approver.

    Flow:
    1. Review → PENDING to UNDER_REVIEW (optional)
    2. Decide → APPROVED, or REJECTED with a reason
    3. Pay → approver pays from their wallet app, then we record the
       confirmed signature and mark the claim PAID
    """

    def __init__(
        self,
        sync_service: SyncService,
        rpc_client: SolanaRpcClient,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._sync = sync_service
        self._rpc = rpc_client
        self._audit_logger = audit_logger

    async def start_review(self, claim_id: str, reviewer_id: str) -> None:
        await self._sync.patch_claim_status(
            claim_id, ClaimStatus.UNDER_REVIEW, actor_id=reviewer_id
        )

    async def approve(self, claim_id: str, approver_id: str) -> None:
        await self._sync.patch_claim_status(
            claim_id,
            ClaimStatus.APPROVED,
            approval_fields(approver_id),
            actor_id=approver_id,
        )

    async def reject(self, claim_id: str, approver_id: str, reason: str) -> None:
        """
        Raises:
            ValidationError: If no reason is given
        """
        await self._sync.patch_claim_status(
            claim_id,
            ClaimStatus.REJECTED,
            rejection_fields(approver_id, reason),
            actor_id=approver_id,
        )

    async def mark_paid(
        self,
        claim_id: str,
        tx_signature: str,
        payer_address: str,
        verify: bool = True,
    ) -> None:
        """
        Record the payment of an APPROVED claim.

        Raises:
            InvalidAddress: If the payer address is malformed
            PaymentNotConfirmedError: If ``verify`` and the signature is
                not confirmed on-chain
            SolanaError: If the confirmation lookup fails
        """
        payer_address = ensure_address(payer_address)

        if verify:
            try:
                status = await self._rpc.is_transaction_confirmed(tx_signature)
            except SolanaError as e:
                if self._audit_logger:
                    self._audit_logger.log_external_service_error(
                        service="solana_rpc",
                        error_message=str(e),
                    )
                raise
            if not status.is_confirmed:
                raise PaymentNotConfirmedError(status)

        await self._sync.patch_claim_status(
            claim_id,
            ClaimStatus.PAID,
            payment_fields(
                tx_signature,
                self._rpc.explorer_url(tx_signature),
                payer_address,
            ),
            actor_id=payer_address,
        )


class AccountSession:
    """
    One signed-in user: their account stream, their claims stream and
    their wallet balances.

    The account's stored ``walletAddress`` drives the reconciler. When it
    changes remotely (another device), the new address is reconciled
    here too.
    """

    def __init__(
        self,
        sync_service: SyncService,
        reconciler: BalanceReconciler,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.sync = sync_service
        self.reconciler = reconciler
        self._audit_logger = audit_logger
        self._account_id: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._synced_address: Optional[str] = None
        self._pending: set[Future] = set()

    @property
    def account_id(self) -> Optional[str]:
        return self._account_id

    async def start(
        self,
        account_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        account_type: AccountType = AccountType.PERSONAL,
    ) -> UserAccount:
        """Sign in: load or create the profile and subscribe to everything."""
        if not account_id:
            raise ValidationError.for_field(
                "account_id", "unauthenticated", "You must be signed in"
            )
        if self._account_id is not None:
            await self.stop()

        self._loop = asyncio.get_running_loop()
        account = await self.sync.ensure_account(
            account_id,
            email=email,
            display_name=display_name,
            account_type=account_type,
        )
        self._account_id = account_id
        self.reconciler.bind_account(account_id)

        self.sync.subscribe_account(account_id, on_snapshot=self._on_account)
        self.sync.subscribe_claims(account_id)
        return account

    def _on_account(self, account: Optional[UserAccount]) -> None:
        # May run on a store thread; hand the work to the session's loop
        address = account.wallet_address if account else None
        if address == self._synced_address or self._loop is None:
            return
        self._synced_address = address

        future = asyncio.run_coroutine_threadsafe(
            self.reconciler.set_wallet_address(address), self._loop
        )
        self._pending.add(future)
        future.add_done_callback(self._on_sync_done)

    def _on_sync_done(self, future: Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("wallet_sync_failed", error=str(error))

    async def wait_for_pending(self) -> None:
        """Wait for wallet syncs triggered by account snapshots."""
        while self._pending:
            await asyncio.gather(
                *(asyncio.wrap_future(f) for f in list(self._pending)),
                return_exceptions=True,
            )

    async def link_wallet(self, address: str) -> Optional[WalletBalanceSnapshot]:
        """
        Save a wallet address on the account and reconcile it.

        Raises:
            InvalidAddress: Nothing is saved; balances are zeroed
            WriteError: The address could not be saved
        """
        if self._account_id is None:
            raise ValidationError.for_field(
                "account_id", "unauthenticated", "You must be signed in"
            )

        if not is_valid_address(address):
            await self.reconciler.set_wallet_address(None)
            raise InvalidAddress(address)

        previous = self._synced_address
        self._synced_address = address
        try:
            await self.sync.update_wallet_address(self._account_id, address)
        except StorageError:
            self._synced_address = previous
            raise
        return await self.reconciler.set_wallet_address(address)

    async def unlink_wallet(self) -> None:
        if self._account_id is None:
            return
        self._synced_address = None
        await self.sync.update_wallet_address(self._account_id, None)
        await self.reconciler.set_wallet_address(None)

    def payment_request_url(
        self,
        recipient: str,
        amount: Decimal,
        memo: Optional[str] = None,
    ) -> str:
        return self.reconciler.create_payment_request_url(recipient, amount, memo)

    async def stop(self) -> None:
        """Sign out. Safe to call more than once."""
        self.sync.stop_all()
        for future in list(self._pending):
            future.cancel()
        self._pending.clear()
        self._synced_address = None
        self._account_id = None
        self.reconciler.bind_account(None)
        await self.reconciler.set_wallet_address(None)


def create_app_components(
    store: Optional[RemoteStoreInterface] = None,
    rpc_client: Optional[SolanaRpcClient] = None,
    receipt_storage: Optional[ReceiptStorageInterface] = None,
    settings: Optional[Settings] = None,
) -> tuple[ClaimSubmissionFlow, ClaimReviewFlow, AccountSession]:
    """
    Factory function to create all application components.

    Args:
        store: Remote store. Defaults to Firebase Realtime Database.
        rpc_client: Solana client. Defaults to one built from settings.
        receipt_storage: Blob store. Defaults to Cloudinary if configured;
                        otherwise receipt uploads are disabled.
        settings: Settings to build defaults from.

    Returns:
        (submission_flow, review_flow, account_session)
    """
    settings = settings or get_settings()
    configure_logging(settings.app.debug_mode)
    audit_logger = AuditLogger()

    if store is None:
        from stableflow.services.store.firebase import FirebaseRealtimeStore
        store = FirebaseRealtimeStore(settings.firebase)

    if rpc_client is None:
        rpc_client = SolanaRpcClient(settings.solana)

    if receipt_storage is None:
        try:
            receipt_storage = CloudinaryReceiptStorage(
                settings.cloudinary,
                max_size_bytes=settings.app.max_receipt_size_bytes,
            )
        except Exception as e:
            # Cloudinary not configured - continue without receipt uploads
            logger.warning("receipt_storage_unavailable", error=str(e))
            receipt_storage = None

    validator = ClaimValidator(Decimal(str(settings.app.max_claim_amount)))
    sync_service = SyncService(store, validator=validator, audit_logger=audit_logger)
    reconciler = BalanceReconciler(
        rpc_client,
        sync_service,
        audit_logger=audit_logger,
        app_name=settings.app.app_name,
    )

    submission_flow = ClaimSubmissionFlow(
        sync_service,
        receipt_storage=receipt_storage,
        validator=validator,
        audit_logger=audit_logger,
    )
    review_flow = ClaimReviewFlow(sync_service, rpc_client, audit_logger=audit_logger)
    session = AccountSession(sync_service, reconciler, audit_logger=audit_logger)

    return submission_flow, review_flow, session
