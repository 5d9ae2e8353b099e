"""Read-only Solana JSON-RPC access and payment deep links."""

from stableflow.services.solana.client import (
    CombinedBalance,
    ConfirmationState,
    InvalidAddress,
    InvalidSignature,
    NetworkError,
    RpcError,
    SignatureStatus,
    SolanaError,
    SolanaRpcClient,
    ensure_address,
    format_address,
    is_valid_address,
)
from stableflow.services.solana.payment_link import create_payment_request_url

__all__ = [
    "CombinedBalance",
    "ConfirmationState",
    "InvalidAddress",
    "InvalidSignature",
    "NetworkError",
    "RpcError",
    "SignatureStatus",
    "SolanaError",
    "SolanaRpcClient",
    "create_payment_request_url",
    "ensure_address",
    "format_address",
    "is_valid_address",
]
