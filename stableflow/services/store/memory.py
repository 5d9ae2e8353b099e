"""
In-Memory Remote Store

Full RemoteStoreInterface implementation backed by a nested dict. Used by
the test suite and for running the app without Firebase credentials.

Listeners are notified synchronously from inside the write call, so a
test can ``await store.write(...)`` and immediately assert on what the
sync layer published.
"""

import copy
import itertools
import threading
from typing import Any, Optional

import structlog

from stableflow.services.store.interface import (
    ErrorCallback,
    ListenerRegistration,
    RemoteStoreInterface,
    SnapshotCallback,
    SubscriptionError,
    WriteError,
)
from stableflow.services.store.tree import (
    generate_push_id,
    get_at,
    is_related,
    set_at,
    split_path,
)


logger = structlog.get_logger(__name__)


class _MemoryListener(ListenerRegistration):

    def __init__(self, store: "InMemoryStore", listener_id: int, parts: list[str],
                 on_change: SnapshotCallback, on_error: ErrorCallback):
        self._store = store
        self.listener_id = listener_id
        self.parts = parts
        self.on_change = on_change
        self.on_error = on_error
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._remove_listener(self.listener_id)


class InMemoryStore(RemoteStoreInterface):
    """
    Thread-safe in-memory document tree.

    CRITICAL: Two locks.
    - ``_write_lock`` serializes mutation plus notification, so listeners
      see snapshots in mutation order.
    - ``_registry_lock`` only guards the listener table, so closing a
      registration never waits on a delivery in progress.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._root: Any = copy.deepcopy(initial) if initial else None
        self._write_lock = threading.RLock()
        self._registry_lock = threading.Lock()
        self._listeners: dict[int, _MemoryListener] = {}
        self._listener_ids = itertools.count(1)
        self._fail_writes: Optional[Exception] = None

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_writes(self, error: Optional[Exception] = None) -> None:
        """Make every subsequent write raise WriteError. Pass None to reset."""
        self._fail_writes = error

    def fail_listeners(self, path: str, error: Exception) -> None:
        """Deliver ``error`` to every open listener related to ``path``."""
        parts = split_path(path)
        for listener in self._listeners_for(parts):
            listener.on_error(error)

    @property
    def listener_count(self) -> int:
        with self._registry_lock:
            return len(self._listeners)

    def dump(self) -> Any:
        with self._write_lock:
            return copy.deepcopy(self._root)

    # =========================================================================
    # STORE OPERATIONS
    # =========================================================================

    async def read(self, path: str) -> Any:
        with self._write_lock:
            return copy.deepcopy(get_at(self._root, split_path(path)))

    async def write(self, path: str, value: Any) -> None:
        self._check_writable(path)
        parts = split_path(path)
        with self._write_lock:
            self._root = set_at(self._root, parts, copy.deepcopy(value))
            self._notify(parts)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        self._check_writable(path)
        if not fields:
            return
        parts = split_path(path)
        with self._write_lock:
            for key, value in fields.items():
                self._root = set_at(
                    self._root, parts + split_path(key), copy.deepcopy(value)
                )
            self._notify(parts)

    def subscribe(
        self,
        path: str,
        on_change: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> ListenerRegistration:
        parts = split_path(path)
        if not parts:
            raise SubscriptionError("Refusing to listen at the store root")

        with self._write_lock:
            with self._registry_lock:
                listener = _MemoryListener(
                    self, next(self._listener_ids), parts, on_change, on_error
                )
                self._listeners[listener.listener_id] = listener
            self._deliver(listener)
        return listener

    async def reserve_id(self, collection_path: str) -> str:
        return generate_push_id()

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _check_writable(self, path: str) -> None:
        if self._fail_writes is not None:
            raise WriteError(f"Write to {path} rejected: {self._fail_writes}")

    def _remove_listener(self, listener_id: int) -> None:
        with self._registry_lock:
            self._listeners.pop(listener_id, None)

    def _listeners_for(self, parts: list[str]) -> list[_MemoryListener]:
        with self._registry_lock:
            return [
                listener for listener in self._listeners.values()
                if is_related(listener.parts, parts)
            ]

    def _notify(self, parts: list[str]) -> None:
        for listener in self._listeners_for(parts):
            self._deliver(listener)

    def _deliver(self, listener: _MemoryListener) -> None:
        if listener.closed:
            return
        snapshot = copy.deepcopy(get_at(self._root, listener.parts))
        try:
            listener.on_change(snapshot)
        except Exception as e:
            # A broken consumer must not abort the writer
            logger.error(
                "listener_callback_failed",
                path="/".join(listener.parts),
                error=str(e),
            )
            listener.on_error(e)
