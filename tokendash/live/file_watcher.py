"""Per-log file watcher using watchfiles.

Watches one session log and, once a burst of writes has settled for the
debounce window, asks its owner to re-derive the session summary.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from watchfiles import awatch

from tokendash import config

logger = logging.getLogger("tokendash.watcher")

ChangeSource = Callable[[Path, asyncio.Event], AsyncIterator[Any]]


class WatchState(str, Enum):
    UNWATCHED = "unwatched"
    WATCHING = "watching"
    CLOSED = "closed"


def watchfiles_source(path: Path, stop_event: asyncio.Event) -> AsyncIterator[Any]:
    """Raw change batches for a single file.

    watchfiles only groups notifications over one short step here; the
    settle window is applied by ChangeWatcher itself.
    """
    return awatch(
        path,
        watch_filter=None,
        debounce=config.WATCH_STEP_MS,
        step=config.WATCH_STEP_MS,
        stop_event=stop_event,
        recursive=False,
    )


class ChangeWatcher:
    """Debounced watcher for one log file.

    UNWATCHED -> WATCHING on ``start()``; WATCHING -> CLOSED on ``stop()`` or
    when the change source fails. A closed watcher is never restarted.
    """

    def __init__(
        self,
        path: Path | str,
        on_settled: Callable[[Path], None],
        *,
        on_closed: Optional[Callable[[ChangeWatcher], None]] = None,
        debounce_seconds: float | None = None,
        change_source: ChangeSource | None = None,
    ):
        self.path = Path(path)
        self._on_settled = on_settled
        self._on_closed = on_closed
        self._debounce = (
            debounce_seconds if debounce_seconds is not None else config.DEBOUNCE_MS / 1000
        )
        self._change_source = change_source or watchfiles_source
        self._state = WatchState.UNWATCHED
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is WatchState.WATCHING

    def start(self) -> None:
        """Begin watching in a background task. Requires a running loop."""
        if self._state is not WatchState.UNWATCHED:
            logger.warning(f"Watcher for {self.path} already {self._state.value}")
            return
        self._state = WatchState.WATCHING
        self._task = asyncio.get_running_loop().create_task(self._watch_loop())
        logger.info(f"Watching {self.path}")

    def stop(self) -> None:
        """Stop watching. Pending debounced re-derivations are dropped."""
        if self._state is WatchState.CLOSED:
            return
        self._state = WatchState.CLOSED
        self._cancel_timer()
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
        logger.info(f"Stopped watching {self.path}")

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def notify(self) -> None:
        """Record one change notification; (re)starts the settle timer."""
        if self._state is not WatchState.WATCHING:
            return
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(self._debounce, self._settled)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _settled(self) -> None:
        self._timer = None
        if self._state is WatchState.WATCHING:
            self._on_settled(self.path)

    async def _watch_loop(self) -> None:
        try:
            async for _changes in self._change_source(self.path, self._stop_event):
                if self._state is not WatchState.WATCHING:
                    break
                self.notify()
        except asyncio.CancelledError:
            logger.debug(f"Watcher task for {self.path} cancelled")
            return
        except Exception as e:
            logger.error(f"Watcher error for {self.path}: {e}")
            self._close_from_source()
            return

        if self._state is WatchState.WATCHING:
            logger.warning(f"Change stream for {self.path} ended unexpectedly")
            self._close_from_source()

    def _close_from_source(self) -> None:
        self._state = WatchState.CLOSED
        self._cancel_timer()
        if self._on_closed is not None:
            self._on_closed(self)
