"""
Abstract Remote Store Interface

DESIGN DECISION: The remote store is a JSON document tree addressed by
slash-separated paths (``users/{id}``, ``expenses/{id}/status``).
Defining it abstractly allows us to:
1. Run against Firebase Realtime Database in production
2. Use in-memory storage for testing
3. Keep the sync layer decoupled from any vendor SDK

Access control is the store's concern, not ours.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable


SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class ListenerRegistration(ABC):
    """Handle for one store-level listener."""

    @abstractmethod
    def close(self) -> None:
        """
        Stop delivering events.

        Must be idempotent: closing twice is a no-op.
        """
        pass


class RemoteStoreInterface(ABC):
    """
    Abstract interface for the remote document store.

    Any store implementation (Firebase, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def read(self, path: str) -> Any:
        """
        Read the value at a path.

        Returns:
            The JSON value, or None if nothing is stored there

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """
        Replace the value at a path in a single atomic write.

        Writing None removes the path.

        Raises:
            WriteError: If the store rejects the write
        """
        pass

    @abstractmethod
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """
        Atomically set several children of a path, leaving the others alone.

        Keys may themselves be relative paths (``"payment/paidAt"``).

        Raises:
            WriteError: If the store rejects the write
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        path: str,
        on_change: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> ListenerRegistration:
        """
        Listen for changes at or below a path.

        ``on_change`` first receives the current value, then the full value
        of the path after every mutation touching it. Calls for one
        registration are made serially and in mutation order.

        Raises:
            SubscriptionError: If the listener cannot be attached
        """
        pass

    @abstractmethod
    async def reserve_id(self, collection_path: str) -> str:
        """
        Reserve a unique child key under a collection before writing it.

        Returns:
            A key that no other writer will be handed
        """
        pass


class StorageError(Exception):
    """Base exception for store operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in the store."""
    pass


class WriteError(StorageError):
    """The store rejected a write. Nothing was changed."""
    pass


class SubscriptionError(StorageError):
    """
    A subscription failed and has been terminated.

    The caller must subscribe again explicitly.
    """
    pass


class ConnectionError(StorageError):
    """Could not connect to the store backend."""
    pass
