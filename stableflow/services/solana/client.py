"""
Solana JSON-RPC Client

Read-only: this client queries balances and transaction status. It never
signs or sends a transaction and never sees a private key.

DESIGN DECISION: Every call goes straight to the node (no caching).
The blocking HTTP request runs on a bounded thread pool so callers can
await it from asyncio, and two independent queries can be in flight at
the same time.

Errors:
- InvalidAddress: caller input rejected before any network call
- NetworkError: timeout or transport failure (safe to retry)
- RpcError: the node answered with a JSON-RPC error object
"""

import asyncio
import functools
import itertools
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

import requests
import structlog
from pydantic import BaseModel, ConfigDict, Field

from stableflow.config import get_settings
from stableflow.config.settings import SolanaSettings
from stableflow.models.record import utc_now


logger = structlog.get_logger(__name__)

LAMPORTS_PER_SOL = Decimal(10 ** 9)

# Base58 excludes 0, O, I and l
BASE58_CHARS = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
SIGNATURE_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,88}$")

CONFIRMED_STATUSES = frozenset({"confirmed", "finalized"})

EXPLORER_BASE_URL = "https://explorer.solana.com/tx/"
SOLSCAN_BASE_URL = "https://solscan.io/tx/"


# =============================================================================
# ERRORS
# =============================================================================

class SolanaError(Exception):
    """Base exception for Solana RPC operations."""
    pass


class InvalidAddress(SolanaError):
    """Malformed wallet address. No network call was made."""

    def __init__(self, address: Optional[str]):
        self.address = address
        super().__init__("Invalid Solana wallet address")


class InvalidSignature(SolanaError):
    """Malformed transaction signature. No network call was made."""

    def __init__(self, signature: Optional[str]):
        self.signature = signature
        super().__init__("Invalid transaction signature")


class NetworkError(SolanaError):
    """Timeout or transport failure talking to the RPC node."""
    pass


class RpcError(SolanaError):
    """The node returned a JSON-RPC error object (or an unusable response)."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


# =============================================================================
# ADDRESS HELPERS
# =============================================================================

def is_valid_address(address: Optional[str]) -> bool:
    """
    Check the shape of a wallet address: 32 to 44 base58 characters.

    This does not decode the key, so a well-formed string that is not a
    real account still passes.
    """
    if not isinstance(address, str):
        return False
    return ADDRESS_PATTERN.match(address) is not None


def ensure_address(address: Optional[str]) -> str:
    if not is_valid_address(address):
        raise InvalidAddress(address)
    return address


def format_address(address: Optional[str]) -> str:
    """Shorten an address for display: ``7xKXtg...gAsU``."""
    if not address:
        return ""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


# =============================================================================
# RESULT MODELS
# =============================================================================

class ConfirmationState(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    NOT_FOUND = "not_found"


class SignatureStatus(BaseModel):
    """Outcome of a signature status lookup."""

    signature: str
    state: ConfirmationState
    raw_status: Optional[str] = Field(
        None,
        description="confirmationStatus exactly as the node reported it"
    )
    slot: Optional[int] = None
    error: Optional[Any] = Field(
        None,
        description="Transaction error reported by the node, if any"
    )

    @property
    def is_confirmed(self) -> bool:
        return self.state == ConfirmationState.CONFIRMED


class CombinedBalance(BaseModel):
    """
    Native and token balance for one address, fetched independently.

    Either leg may have failed; its balance is then None and its error is
    set. Both legs failing is still a result, not an exception.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    address: str
    native_balance: Optional[Decimal] = None
    token_balance: Optional[Decimal] = None
    native_error: Optional[SolanaError] = None
    token_error: Optional[SolanaError] = None
    fetched_at: datetime = Field(default_factory=utc_now)

    @property
    def is_complete(self) -> bool:
        return self.native_error is None and self.token_error is None

    @property
    def is_failed(self) -> bool:
        return self.native_error is not None and self.token_error is not None

    @property
    def errors(self) -> list[SolanaError]:
        return [e for e in (self.native_error, self.token_error) if e is not None]


# =============================================================================
# CLIENT
# =============================================================================

class SolanaRpcClient:
    """
    Minimal JSON-RPC 2.0 client for a Solana node.

    Devnet or mainnet-beta is chosen by SOLANA_USE_DEVNET; the USDC mint
    used for token queries follows the same flag.
    """

    def __init__(
        self,
        settings: Optional[SolanaSettings] = None,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._settings = settings or get_settings().solana
        self._session = session or requests.Session()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="solana-rpc",
        )
        self._request_ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @property
    def rpc_url(self) -> str:
        return self._settings.rpc_url

    @property
    def usdc_mint(self) -> str:
        return self._settings.usdc_mint

    @property
    def is_devnet(self) -> bool:
        return self._settings.use_devnet

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._request_ids)

    def _post(self, method: str, params: list) -> Any:
        """Blocking request/response. Runs on the executor."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }

        try:
            response = self._session.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._settings.timeout,
            )
        except requests.Timeout:
            raise NetworkError(f"{method} timed out")
        except requests.RequestException as e:
            raise NetworkError(f"{method} failed: {e}")

        if response.status_code != 200:
            raise NetworkError(f"{method} failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise RpcError(f"{method} returned a malformed response")

        if not isinstance(body, dict):
            raise RpcError(f"{method} returned a malformed response")

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(
                    error.get("message") or f"{method} failed",
                    code=error.get("code"),
                )
            raise RpcError(str(error))

        if "result" not in body:
            raise RpcError(f"{method} returned no result")

        return body["result"]

    async def _call(self, method: str, params: list) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._executor, functools.partial(self._post, method, params)
            )
        except SolanaError as e:
            logger.warning("rpc_call_failed", method=method, error=str(e))
            raise

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_native_balance(self, address: str) -> Decimal:
        """SOL balance of an address, converted from lamports."""
        address = ensure_address(address)
        result = await self._call("getBalance", [address])

        value = result.get("value") if isinstance(result, dict) else None
        if isinstance(value, bool) or not isinstance(value, int):
            raise RpcError("getBalance returned no lamport value")

        return Decimal(value) / LAMPORTS_PER_SOL

    async def get_token_balance(self, address: str, mint: Optional[str] = None) -> Decimal:
        """
        Balance of one SPL token held by an address.

        An owner can hold the same mint in several token accounts; every
        account's ``uiAmount`` is summed.
        """
        address = ensure_address(address)
        mint = ensure_address(mint or self.usdc_mint)
        result = await self._call(
            "getTokenAccountsByOwner",
            [address, {"mint": mint}, {"encoding": "jsonParsed"}],
        )

        accounts = result.get("value") if isinstance(result, dict) else None
        if not isinstance(accounts, list):
            raise RpcError("getTokenAccountsByOwner returned no account list")

        total = Decimal("0")
        for account in accounts:
            total += _ui_amount(account)
        return total

    async def get_combined_balance(self, address: str) -> CombinedBalance:
        """
        Fetch native and token balances concurrently.

        A failure in one leg never hides the other leg's result.
        """
        address = ensure_address(address)
        native, token = await asyncio.gather(
            self.get_native_balance(address),
            self.get_token_balance(address),
            return_exceptions=True,
        )

        for outcome in (native, token):
            if isinstance(outcome, BaseException) and not isinstance(outcome, SolanaError):
                raise outcome

        balance = CombinedBalance(
            address=address,
            native_balance=None if isinstance(native, SolanaError) else native,
            token_balance=None if isinstance(token, SolanaError) else token,
            native_error=native if isinstance(native, SolanaError) else None,
            token_error=token if isinstance(token, SolanaError) else None,
        )

        logger.info(
            "combined_balance_fetched",
            address=format_address(address),
            native_ok=balance.native_error is None,
            token_ok=balance.token_error is None,
        )
        return balance

    async def is_transaction_confirmed(self, signature: str) -> SignatureStatus:
        """Look up a signature: confirmed, still pending, or unknown to the node."""
        if not isinstance(signature, str) or not SIGNATURE_PATTERN.match(signature):
            raise InvalidSignature(signature)

        result = await self._call("getSignatureStatuses", [[signature]])

        statuses = result.get("value") if isinstance(result, dict) else None
        entry = statuses[0] if isinstance(statuses, list) and statuses else None

        if not isinstance(entry, dict):
            return SignatureStatus(signature=signature, state=ConfirmationState.NOT_FOUND)

        raw_status = entry.get("confirmationStatus")
        state = (
            ConfirmationState.CONFIRMED
            if raw_status in CONFIRMED_STATUSES
            else ConfirmationState.PENDING
        )
        return SignatureStatus(
            signature=signature,
            state=state,
            raw_status=raw_status,
            slot=entry.get("slot"),
            error=entry.get("err"),
        )

    async def get_transaction(self, signature: str) -> Optional[dict]:
        """Full parsed transaction, or None if the node does not know it."""
        if not isinstance(signature, str) or not SIGNATURE_PATTERN.match(signature):
            raise InvalidSignature(signature)

        return await self._call(
            "getTransaction",
            [signature, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}],
        )

    # =========================================================================
    # LINKS
    # =========================================================================

    def _cluster_suffix(self) -> str:
        return "?cluster=devnet" if self.is_devnet else ""

    def explorer_url(self, signature: str) -> str:
        return f"{EXPLORER_BASE_URL}{signature}{self._cluster_suffix()}"

    def solscan_url(self, signature: str) -> str:
        return f"{SOLSCAN_BASE_URL}{signature}{self._cluster_suffix()}"

    def close(self) -> None:
        self._session.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)


def _ui_amount(account: Any) -> Decimal:
    """Pull ``tokenAmount.uiAmount`` out of one jsonParsed token account."""
    try:
        token_amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
    except (KeyError, TypeError):
        raise RpcError("getTokenAccountsByOwner returned a malformed account")

    amount = token_amount.get("uiAmount")
    if amount is None:
        # uiAmount is null for some zero balances; uiAmountString never is
        amount = token_amount.get("uiAmountString")
    if amount is None:
        return Decimal("0")

    try:
        # str() first so 10.5 becomes Decimal("10.5"), not its binary expansion
        return Decimal(str(amount))
    except InvalidOperation:
        raise RpcError(f"Unreadable token amount: {amount}")
