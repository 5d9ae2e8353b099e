"""
Firebase Realtime Database Store Implementation

DESIGN DECISION: Firebase Realtime Database is the remote store because:
1. It pushes changes to every listener (no polling)
2. Multi-path updates are atomic
3. Security rules enforce per-user access server-side

TRADEOFFS:
- The Admin SDK is blocking, so every call runs on a small thread pool
- ``listen()`` streams put/patch deltas, not whole values. We keep a
  local copy per listener and apply each delta to it so consumers
  always get the full value at the watched path.
- A dropped stream only ends the SDK's listen thread. Each listener
  watches that thread and reports its exit as a SubscriptionError.
"""

import asyncio
import functools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError
from tenacity import retry, stop_after_attempt, wait_exponential

from stableflow.config import get_settings
from stableflow.config.settings import FirebaseSettings
from stableflow.services.store.interface import (
    ConnectionError,
    ErrorCallback,
    ListenerRegistration,
    RemoteStoreInterface,
    SnapshotCallback,
    StorageError,
    SubscriptionError,
    WriteError,
)
from stableflow.services.store.tree import (
    generate_push_id,
    set_at,
    split_path,
)


logger = structlog.get_logger(__name__)

APP_NAME = "stableflow"


class _SnapshotCache:
    """Rebuilds the full value at a path from streamed put/patch events."""

    def __init__(self):
        self.value: Any = None

    def apply(self, event_type: str, path: str, data: Any) -> Any:
        parts = split_path(path or "/")
        if event_type == "put":
            self.value = set_at(self.value, parts, data)
        elif event_type == "patch":
            for key, child in (data or {}).items():
                self.value = set_at(self.value, parts + split_path(key), child)
        else:
            raise SubscriptionError(f"Unexpected listener event: {event_type}")
        return self.value


class _FirebaseListener(ListenerRegistration):

    def __init__(self, path: str):
        self.path = path
        self._registration = None
        self.closed = False

    def attach(self, registration) -> None:
        self._registration = registration

    def watch(self, on_error: ErrorCallback) -> None:
        """
        Report the end of the SDK's stream thread as a SubscriptionError.

        The Admin SDK's listen thread exits on a stream error without
        calling the event callback, so a dropped connection would
        otherwise go unnoticed.
        """
        thread = getattr(self._registration, "_thread", None)
        if thread is None:
            logger.warning("listener_unwatched", path=self.path)
            return

        def wait_for_exit() -> None:
            thread.join()
            if self.closed:
                return
            self.closed = True
            logger.error("listener_stream_ended", path=self.path)
            on_error(SubscriptionError(f"Lost the connection listening at {self.path}"))

        threading.Thread(
            target=wait_for_exit,
            name=f"firebase-watch:{self.path}",
            daemon=True,
        ).start()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._registration is not None:
            try:
                self._registration.close()
            except Exception as e:
                logger.warning("listener_close_failed", path=self.path, error=str(e))


class FirebaseRealtimeStore(RemoteStoreInterface):
    """
    Remote store backed by the Firebase Admin SDK.

    Authentication uses a service account; the database URL comes from
    FIREBASE_DATABASE_URL.
    """

    def __init__(
        self,
        settings: Optional[FirebaseSettings] = None,
        app: Optional[firebase_admin.App] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._settings = settings or get_settings().firebase
        self._app = app
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="firebase",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> firebase_admin.App:
        """
        Initialize (or reuse) the Firebase app.

        Uses service account credentials for authentication.
        """
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                try:
                    cred = credentials.Certificate(self._settings.credentials_path)
                    self._app = firebase_admin.initialize_app(
                        cred,
                        {"databaseURL": self._settings.database_url},
                        name=APP_NAME,
                    )
                except FileNotFoundError:
                    raise ConnectionError(
                        f"Firebase credentials file not found: {self._settings.credentials_path}"
                    )
                except Exception as e:
                    raise ConnectionError(f"Failed to connect to Firebase: {e}")
        return self._app

    def _ref(self, path: str) -> db.Reference:
        return db.reference("/" + "/".join(split_path(path)), app=self.connect())

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(func, *args)
        )

    async def read(self, path: str) -> Any:
        try:
            return await self._run(lambda: self._ref(path).get())
        except ConnectionError:
            raise
        except (FirebaseError, ValueError) as e:
            raise StorageError(f"Failed to read {path}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write(self, path: str, value: Any) -> None:
        def _write():
            ref = self._ref(path)
            if value is None:
                ref.delete()
            else:
                ref.set(value)

        try:
            await self._run(_write)
        except ConnectionError:
            raise
        except (FirebaseError, ValueError, TypeError) as e:
            raise WriteError(f"Failed to write {path}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        if not fields:
            return
        try:
            await self._run(lambda: self._ref(path).update(fields))
        except ConnectionError:
            raise
        except (FirebaseError, ValueError, TypeError) as e:
            raise WriteError(f"Failed to update {path}: {e}")

    def subscribe(
        self,
        path: str,
        on_change: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> ListenerRegistration:
        if not split_path(path):
            raise SubscriptionError("Refusing to listen at the store root")

        cache = _SnapshotCache()
        listener = _FirebaseListener(path)

        def _on_event(event: db.Event) -> None:
            if listener.closed:
                return
            try:
                snapshot = cache.apply(event.event_type, event.path, event.data)
            except Exception as e:
                logger.error("listener_event_invalid", path=path, error=str(e))
                on_error(e)
                return
            on_change(snapshot)

        try:
            listener.attach(self._ref(path).listen(_on_event))
        except (ConnectionError, FirebaseError, ValueError) as e:
            raise SubscriptionError(f"Failed to listen at {path}: {e}")

        listener.watch(on_error)

        logger.info("listener_attached", path=path)
        return listener

    async def reserve_id(self, collection_path: str) -> str:
        # Keys are generated client-side, the same way the Realtime
        # Database SDKs do it; nothing is written until the claim is
        return generate_push_id()

    def close(self) -> None:
        self._executor.shutdown(wait=False)
