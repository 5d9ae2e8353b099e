"""Services package."""

from stableflow.services.receipts import (
    CloudinaryReceiptStorage,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from stableflow.services.solana import (
    InvalidAddress,
    NetworkError,
    RpcError,
    SolanaError,
    SolanaRpcClient,
)
from stableflow.services.store import (
    ConnectionError,
    InMemoryStore,
    NotFoundError,
    RemoteStoreInterface,
    StorageError,
    SubscriptionError,
    WriteError,
)

__all__ = [
    # Receipt storage
    "CloudinaryReceiptStorage",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    # Solana RPC
    "InvalidAddress",
    "NetworkError",
    "RpcError",
    "SolanaError",
    "SolanaRpcClient",
    # Remote store
    "ConnectionError",
    "InMemoryStore",
    "NotFoundError",
    "RemoteStoreInterface",
    "StorageError",
    "SubscriptionError",
    "WriteError",
]
