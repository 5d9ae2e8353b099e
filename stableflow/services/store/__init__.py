"""Remote document store: interface plus Firebase and in-memory backends."""

from stableflow.services.store.interface import (
    ConnectionError,
    ErrorCallback,
    ListenerRegistration,
    NotFoundError,
    RemoteStoreInterface,
    SnapshotCallback,
    StorageError,
    SubscriptionError,
    WriteError,
)
from stableflow.services.store.memory import InMemoryStore

__all__ = [
    "ConnectionError",
    "ErrorCallback",
    "InMemoryStore",
    "ListenerRegistration",
    "NotFoundError",
    "RemoteStoreInterface",
    "SnapshotCallback",
    "StorageError",
    "SubscriptionError",
    "WriteError",
]
