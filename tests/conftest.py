"""
Shared fixtures.

No test talks to a real service: the store is an InMemoryStore, RPC
traffic goes through mocked requests sessions or FakeRpcClient below.
"""

import asyncio
from decimal import Decimal
from typing import Optional
from unittest.mock import MagicMock

import pytest

from stableflow.audit import AuditLogger
from stableflow.config.settings import SolanaSettings
from stableflow.models.claim import ClaimDraft
from stableflow.services.solana.client import (
    CombinedBalance,
    ConfirmationState,
    SignatureStatus,
)
from stableflow.services.store import InMemoryStore
from stableflow.sync import SyncService


# 32 ones is the system program address: shortest valid shape
WALLET_A = "11111111111111111111111111111111"
WALLET_B = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
PAYER = "So11111111111111111111111111111111111111112"
SIGNATURE = "5" * 64 + "VERv8NMvzbJMEkV8xnrLkEa"


def make_draft(**overrides) -> ClaimDraft:
    fields = {
        "title": "Taxi to airport",
        "description": "Client visit in Singapore, return trip",
        "amount": Decimal("42.50"),
        "category": "TRAVEL",
    }
    fields.update(overrides)
    return ClaimDraft(**fields)


def make_response(body, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class FakeRpcClient:
    """
    Stand-in for SolanaRpcClient.

    Balances are served per address. Addresses listed in ``gates`` wait
    for their event before answering, so tests can control completion
    order.
    """

    usdc_mint = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

    def __init__(self):
        self.balances: dict[str, CombinedBalance] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.signature_state = ConfirmationState.CONFIRMED

    def set_balance(
        self,
        address: str,
        native: Optional[Decimal] = None,
        token: Optional[Decimal] = None,
        native_error: Optional[Exception] = None,
        token_error: Optional[Exception] = None,
    ) -> None:
        self.balances[address] = CombinedBalance(
            address=address,
            native_balance=native,
            token_balance=token,
            native_error=native_error,
            token_error=token_error,
        )

    def gate(self, address: str) -> asyncio.Event:
        self.gates[address] = asyncio.Event()
        return self.gates[address]

    async def get_combined_balance(self, address: str) -> CombinedBalance:
        self.calls.append(address)
        if address in self.gates:
            await self.gates[address].wait()
        return self.balances[address]

    async def is_transaction_confirmed(self, signature: str) -> SignatureStatus:
        raw = "finalized" if self.signature_state == ConfirmationState.CONFIRMED else "processed"
        if self.signature_state == ConfirmationState.NOT_FOUND:
            raw = None
        return SignatureStatus(
            signature=signature,
            state=self.signature_state,
            raw_status=raw,
        )

    def explorer_url(self, signature: str) -> str:
        return f"https://explorer.solana.com/tx/{signature}?cluster=devnet"


@pytest.fixture
def solana_settings():
    return SolanaSettings(use_devnet=True)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def audit():
    return AuditLogger()


@pytest.fixture
def sync(store, audit):
    service = SyncService(store, audit_logger=audit)
    yield service
    service.stop_all()


@pytest.fixture
def rpc():
    return FakeRpcClient()
