"""
Balance Reconciliation

The single pipeline from "this is my wallet" to a visible balance:

    set_wallet_address(addr)
        └─► refresh_balances()
              ├─► RPC: native + token balance (independent legs)
              ├─► publish to observers
              └─► write token balance to users/{id}/balance (best-effort)

CRITICAL: Every refresh and every address change bumps a generation
counter. A refresh only publishes if its generation is still current
when the RPC answer arrives, so a slow answer for an old address can
never overwrite the balances of a newer one.

Balances are zeroed only when the address is cleared or rejected. A
failed refresh leaves the last known values in place and publishes the
error separately.
"""

import asyncio
import threading
from decimal import Decimal
from typing import Optional

import structlog

from stableflow.audit.logger import AuditLogger
from stableflow.models.account import WalletBalanceSnapshot
from stableflow.services.solana.client import (
    CombinedBalance,
    InvalidAddress,
    SolanaError,
    SolanaRpcClient,
    format_address,
    is_valid_address,
)
from stableflow.services.solana.payment_link import create_payment_request_url
from stableflow.services.store.interface import StorageError
from stableflow.sync.observable import Observable
from stableflow.sync.service import SyncService


logger = structlog.get_logger(__name__)


class WalletNotSetError(Exception):
    """A refresh was requested before any wallet address was set."""

    def __init__(self):
        super().__init__("Set a wallet address before refreshing balances")


class BalanceReconciler:
    """
    Owns the active wallet address and its balances for one session.

    Observables:
        balances: last complete WalletBalanceSnapshot (both legs succeeded)
        sol_balance / usdc_balance: per-leg values, updated even when the
            other leg fails
        wallet_address: active address, or None
        is_loading: True while the latest refresh is in flight
        error: exception from the latest refresh, or None
    """

    def __init__(
        self,
        rpc_client: SolanaRpcClient,
        sync_service: SyncService,
        account_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_name: str = "StableFlow",
    ):
        self._rpc = rpc_client
        self._sync = sync_service
        self._account_id = account_id
        self._audit = audit_logger or AuditLogger()
        self._app_name = app_name

        self._lock = threading.Lock()
        self._address: Optional[str] = None
        self._generation = 0
        # Serializes ledger writes; a stale write can never land after a newer one
        self._write_lock = asyncio.Lock()

        self.balances: Observable[WalletBalanceSnapshot] = Observable(
            WalletBalanceSnapshot.zero(), name="balances"
        )
        self.sol_balance: Observable[Decimal] = Observable(Decimal("0"), name="sol_balance")
        self.usdc_balance: Observable[Decimal] = Observable(Decimal("0"), name="usdc_balance")
        self.wallet_address: Observable[Optional[str]] = Observable(None, name="wallet_address")
        self.is_loading: Observable[bool] = Observable(False, name="is_loading")
        self.error: Observable[Optional[Exception]] = Observable(None, name="error")

    @property
    def account_id(self) -> Optional[str]:
        return self._account_id

    def bind_account(self, account_id: Optional[str]) -> None:
        """Set the account whose ledger balance receives write-backs."""
        self._account_id = account_id

    @property
    def address(self) -> Optional[str]:
        with self._lock:
            return self._address

    # =========================================================================
    # ADDRESS
    # =========================================================================

    async def set_wallet_address(self, address: Optional[str]) -> Optional[WalletBalanceSnapshot]:
        """
        Make ``address`` the active wallet and refresh its balances.

        None or an empty string clears the active address.

        Returns:
            The new snapshot, or None if nothing complete was published

        Raises:
            InvalidAddress: The address was rejected. The previous address
                is cleared and balances are zeroed before raising.
        """
        address = address.strip() if address else None

        if not address:
            self._clear("address removed")
            return None

        if not is_valid_address(address):
            self._clear("invalid address")
            raise InvalidAddress(address)

        with self._lock:
            changed = address != self._address
            self._address = address
            self._generation += 1

        if changed:
            self.wallet_address.publish(address)
            self._audit.log_wallet_address_set(address)

        return await self.refresh_balances()

    def _clear(self, reason: str) -> None:
        with self._lock:
            self._address = None
            # Anything still in flight is now stale
            self._generation += 1

        self.wallet_address.publish(None)
        self.sol_balance.publish(Decimal("0"))
        self.usdc_balance.publish(Decimal("0"))
        self.balances.publish(WalletBalanceSnapshot.zero())
        self.is_loading.publish(False)
        self.error.publish(None)
        self._audit.log_wallet_address_cleared(reason)

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def refresh_balances(self) -> Optional[WalletBalanceSnapshot]:
        """
        Fetch both balances for the active address and publish them.

        RPC failures are published on ``error``; they are not raised.

        Returns:
            The new snapshot if both legs succeeded and this refresh is
            still current, otherwise None

        Raises:
            WalletNotSetError: If no address is active
        """
        with self._lock:
            if self._address is None:
                raise WalletNotSetError()
            address = self._address
            self._generation += 1
            generation = self._generation

        self.is_loading.publish(True)
        self.error.publish(None)

        try:
            result = await self._rpc.get_combined_balance(address)
        except SolanaError as e:
            result = CombinedBalance(address=address, native_error=e, token_error=e)
        finally:
            if self._is_current(generation):
                self.is_loading.publish(False)

        if not self._is_current(generation):
            logger.info("stale_balance_discarded", address=format_address(address))
            return None

        return await self._apply(result, generation)

    async def _apply(
        self,
        result: CombinedBalance,
        generation: int,
    ) -> Optional[WalletBalanceSnapshot]:
        address = result.address

        if result.is_failed:
            error = result.native_error
            self.error.publish(error)
            logger.warning(
                "balance_refresh_failed",
                address=format_address(address),
                error=str(error),
            )
            self._audit.log_balance_refresh_failed(address, str(error))
            return None

        if result.native_balance is not None:
            self.sol_balance.publish(result.native_balance)
        if result.token_balance is not None:
            self.usdc_balance.publish(result.token_balance)

        snapshot = None
        if result.is_complete:
            snapshot = WalletBalanceSnapshot(
                sol_balance=result.native_balance,
                usdc_balance=result.token_balance,
                fetched_at=result.fetched_at,
            )
            self.balances.publish(snapshot)
        else:
            self.error.publish(result.errors[0])

        self._audit.log_balance_refreshed(
            address=address,
            sol_balance=self.sol_balance.value,
            usdc_balance=self.usdc_balance.value,
            partial=not result.is_complete,
        )

        if result.token_balance is not None:
            await self._write_back(result.token_balance, generation)
        return snapshot

    async def _write_back(self, usdc_balance: Decimal, generation: int) -> None:
        """
        Copy the token balance into the ledger.

        Best-effort: failures are logged and audited, never raised, and
        the balances already published stay as they are.

        Writes run one at a time and the generation is re-checked once
        the lock is held, so a write for a superseded refresh that is
        still waiting is dropped instead of landing after a newer one.
        """
        account_id = self._account_id
        if not account_id:
            return
        async with self._write_lock:
            if not self._is_current(generation):
                logger.info("stale_write_back_skipped", account_id=account_id)
                return
            try:
                await self._sync.update_balance(account_id, usdc_balance)
            except StorageError as e:
                logger.warning("balance_write_back_failed", account_id=account_id, error=str(e))
                self._audit.log_balance_sync_failed(account_id, usdc_balance, str(e))

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def create_payment_request_url(
        self,
        recipient: str,
        amount: Decimal,
        memo: Optional[str] = None,
    ) -> str:
        """Solana Pay link asking the wallet app to send ``amount`` USDC."""
        return create_payment_request_url(
            recipient=recipient,
            amount=amount,
            mint=self._rpc.usdc_mint,
            label=self._app_name,
            memo=memo,
        )
