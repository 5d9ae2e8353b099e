"""
Subscription Handles

A SnapshotSubscription wraps one store listener and turns raw JSON into
typed snapshots.

CRITICAL: Delivery and stop() share one re-entrant lock. Once stop()
returns, no callback for this handle runs again, even if the store had
already queued a notification.
"""

import asyncio
import threading
from typing import Any, AsyncIterator, Callable, Generic, Optional, TypeVar

import structlog

from stableflow.audit.logger import AuditLogger
from stableflow.services.store.interface import (
    ListenerRegistration,
    RemoteStoreInterface,
    SubscriptionError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class _Failure:
    def __init__(self, error: Exception):
        self.error = error


class SnapshotSubscription(Generic[T]):
    """
    Handle for one long-lived subscription to a store path.

    Args:
        key: Identity of the subscription (at most one active per key)
        store: Store to listen on
        path: Watched path
        transform: Raw JSON -> snapshot. If it raises, that snapshot is
            logged and skipped; the subscription stays up.
        on_snapshot: Called serially with every snapshot
        on_error: Called once if the subscription fails; the handle has
            already stopped by then
    """

    def __init__(
        self,
        key: str,
        store: RemoteStoreInterface,
        path: str,
        transform: Callable[[Any], T],
        on_snapshot: Callable[[T], None],
        on_error: Optional[Callable[[SubscriptionError], None]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.key = key
        self.path = path
        self._store = store
        self._transform = transform
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._audit = audit_logger

        self._lock = threading.RLock()
        self._registration: Optional[ListenerRegistration] = None
        self._active = False
        self._latest: Optional[T] = None
        self._has_snapshot = False
        self._feeds: list[Callable[[Any], None]] = []

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def latest(self) -> Optional[T]:
        """Most recent snapshot delivered, or None before the first one."""
        with self._lock:
            return self._latest

    def start(self) -> "SnapshotSubscription[T]":
        """
        Attach the store listener. Starting an active handle is a no-op.

        Raises:
            SubscriptionError: If the store refuses the listener
        """
        with self._lock:
            if self._active:
                return self
            self._active = True
            try:
                registration = self._store.subscribe(
                    self.path, self._handle_change, self._handle_error
                )
            except SubscriptionError:
                self._active = False
                raise
            except Exception as e:
                self._active = False
                raise SubscriptionError(f"Failed to subscribe to {self.path}: {e}")

            if not self._active:
                # Failed during the initial delivery
                registration.close()
                return self
            self._registration = registration

        logger.info("subscription_started", key=self.key, path=self.path)
        if self._audit:
            self._audit.log_subscription_changed(self.key, started=True)
        return self

    def stop(self) -> bool:
        """
        Detach the listener. Idempotent.

        Returns:
            True if this call stopped an active subscription
        """
        with self._lock:
            if not self._active:
                return False
            self._active = False
            registration = self._registration
            self._registration = None
            feeds = list(self._feeds)

        # Outside the lock: closing may wait for the store's delivery
        # thread, which could itself be waiting on our lock
        if registration is not None:
            registration.close()
        for feed in feeds:
            feed(_CLOSED)

        logger.info("subscription_stopped", key=self.key)
        if self._audit:
            self._audit.log_subscription_changed(self.key, started=False)
        return True

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _handle_change(self, raw: Any) -> None:
        with self._lock:
            if not self._active:
                return
            try:
                snapshot = self._transform(raw)
            except Exception as e:
                logger.error("snapshot_rejected", key=self.key, error=str(e))
                return

            self._latest = snapshot
            self._has_snapshot = True
            try:
                self._on_snapshot(snapshot)
            except Exception as e:
                logger.error("snapshot_consumer_failed", key=self.key, error=str(e))
            for feed in self._feeds:
                feed(snapshot)

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if not self._active:
                return
            if isinstance(error, SubscriptionError):
                failure = error
            else:
                failure = SubscriptionError(f"Subscription to {self.path} failed: {error}")
            feeds = list(self._feeds)
            for feed in feeds:
                feed(_Failure(failure))
            self._feeds.clear()

        self.stop()
        logger.error("subscription_failed", key=self.key, error=str(failure))
        if self._audit:
            self._audit.log_subscription_failed(self.key, str(failure))
        if self._on_error:
            self._on_error(failure)

    # =========================================================================
    # ASYNC ITERATION
    # =========================================================================

    async def snapshots(self) -> AsyncIterator[T]:
        """
        Iterate snapshots from asyncio.

        Starts with the latest snapshot if there is one. Ends when the
        handle is stopped; raises SubscriptionError if it fails.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def feed(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed; nobody is iterating any more
                pass

        with self._lock:
            if self._has_snapshot:
                queue.put_nowait(self._latest)
            if self._active:
                self._feeds.append(feed)
            else:
                queue.put_nowait(_CLOSED)

        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            with self._lock:
                if feed in self._feeds:
                    self._feeds.remove(feed)
