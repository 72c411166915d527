"""Fan out session summaries to live observers of each session log."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from tokendash import config
from tokendash.live.file_watcher import ChangeWatcher, WatchState
from tokendash.models import SessionSummary, StreamMessage
from tokendash.observability import record_delivery
from tokendash.parsers.sessions import parse_session_file

logger = logging.getLogger("tokendash.broadcaster")

WatcherFactory = Callable[[Path, Callable[[Path], None], Callable[[ChangeWatcher], None]], ChangeWatcher]


class DeliveryResult(str, Enum):
    OK = "ok"
    CLOSED = "closed"


class Observer:
    """A delivery channel for one session log."""

    def send(self, message: StreamMessage) -> DeliveryResult:
        raise NotImplementedError


class QueueObserver(Observer):
    """Observer backed by a bounded asyncio queue.

    ``send`` never waits: a full queue means the consumer stopped reading,
    so the observer closes itself and reports CLOSED.
    """

    def __init__(self, maxsize: int | None = None):
        size = config.OBSERVER_QUEUE_SIZE if maxsize is None else maxsize
        self._queue: asyncio.Queue[StreamMessage] = asyncio.Queue(maxsize=max(0, size))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def send(self, message: StreamMessage) -> DeliveryResult:
        if self._closed:
            return DeliveryResult.CLOSED
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self._closed = True
            return DeliveryResult.CLOSED
        return DeliveryResult.OK

    async def receive(self, timeout: float | None = None) -> StreamMessage | None:
        """Next queued message, or None when ``timeout`` elapses first.

        A closed observer drains what is already queued, then returns None
        without waiting.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class SessionBroadcaster:
    """Registry of observers and watchers keyed by session log path.

    Owns all live state: one watcher per log with at least one observer.
    Everything runs on the event loop, so no locking is needed.
    """

    def __init__(
        self,
        *,
        reducer: Callable[[Path], SessionSummary] = parse_session_file,
        watcher_factory: Optional[WatcherFactory] = None,
    ):
        self._reducer = reducer
        self._watcher_factory = watcher_factory or self._default_watcher
        self._observers: dict[str, set[Observer]] = {}
        self._watchers: dict[str, ChangeWatcher] = {}

    @staticmethod
    def _default_watcher(
        path: Path,
        on_settled: Callable[[Path], None],
        on_closed: Callable[[ChangeWatcher], None],
    ) -> ChangeWatcher:
        return ChangeWatcher(path, on_settled, on_closed=on_closed)

    @staticmethod
    def _key(log_path: Path | str) -> str:
        return str(Path(log_path))

    # ── Introspection ──────────────────────────────────────────────

    @property
    def watched_logs(self) -> list[str]:
        return sorted(self._watchers)

    def observer_count(self, log_path: Path | str | None = None) -> int:
        if log_path is None:
            return sum(len(observers) for observers in self._observers.values())
        return len(self._observers.get(self._key(log_path), ()))

    def watcher_for(self, log_path: Path | str) -> ChangeWatcher | None:
        return self._watchers.get(self._key(log_path))

    # ── Registry ───────────────────────────────────────────────────

    def attach(self, log_path: Path | str, observer: Observer) -> DeliveryResult:
        """Register an observer and send it a fresh summary of the log."""
        key = self._key(log_path)
        self._observers.setdefault(key, set()).add(observer)
        self._ensure_watcher(key)
        logger.info(f"Observer attached to {key} ({len(self._observers[key])} total)")

        summary = self._reducer(Path(key))
        return self._deliver(key, observer, StreamMessage(type="init", data=summary))

    def detach(self, log_path: Path | str, observer: Observer) -> None:
        key = self._key(log_path)
        observers = self._observers.get(key)
        if not observers or observer not in observers:
            return
        observers.discard(observer)
        logger.info(f"Observer detached from {key} ({len(observers)} remaining)")
        if not observers:
            del self._observers[key]
            watcher = self._watchers.pop(key, None)
            if watcher is not None:
                watcher.stop()

    def publish(self, log_path: Path | str, summary: SessionSummary) -> int:
        """Deliver ``summary`` to every observer of the log.

        Returns the number of observers that accepted it. Failing observers
        are detached; the rest still receive the message.
        """
        key = self._key(log_path)
        message = StreamMessage(type="update", data=summary)
        delivered = 0
        for observer in list(self._observers.get(key, ())):
            if self._deliver(key, observer, message) is DeliveryResult.OK:
                delivered += 1
        return delivered

    def close(self) -> None:
        """Stop every watcher and forget all observers."""
        for watcher in self._watchers.values():
            watcher.stop()
        self._watchers.clear()
        self._observers.clear()

    # ── Internals ──────────────────────────────────────────────────

    def _deliver(self, key: str, observer: Observer, message: StreamMessage) -> DeliveryResult:
        try:
            result = observer.send(message)
        except Exception as e:
            logger.info(f"Delivery to observer of {key} failed: {e}")
            result = DeliveryResult.CLOSED
        record_delivery(message.type, result.value)
        if result is not DeliveryResult.OK:
            self.detach(key, observer)
        return result

    def _ensure_watcher(self, key: str) -> None:
        watcher = self._watchers.get(key)
        if watcher is not None and watcher.state is not WatchState.CLOSED:
            return
        watcher = self._watcher_factory(Path(key), self._rederive, self._watcher_closed)
        self._watchers[key] = watcher
        watcher.start()

    def _watcher_closed(self, watcher: ChangeWatcher) -> None:
        key = self._key(watcher.path)
        if self._watchers.get(key) is watcher:
            del self._watchers[key]
            logger.warning(f"Watcher for {key} closed; live updates paused until an observer reattaches")

    def _rederive(self, path: Path) -> None:
        key = self._key(path)
        if not self._observers.get(key):
            return
        self.publish(key, self._reducer(path))
