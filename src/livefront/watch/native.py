"""Native filesystem-event watcher backed by ``watchfiles``.

Same contract as PollingWatcher, but modification is detected through the
OS notification API (inotify, FSEvents, ReadDirectoryChangesW), so changes
are delivered without waiting for a poll interval.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

from .. import config
from .base import Watcher, WatchCallback, WatchSubscription

logger = logging.getLogger(__name__)

_FIRING_CHANGES = frozenset({Change.added, Change.modified})


class WatchfilesWatcher(Watcher):
    """Event-driven watcher; ``interval`` is used only as the debounce window."""

    def __init__(self, default_interval: float = config.POLL_INTERVAL):
        super().__init__(default_interval)
        self._watch_tasks: dict[Path, asyncio.Task[None]] = {}
        self._stop_events: dict[Path, asyncio.Event] = {}

    def subscribe(self, path: Path, callback: WatchCallback, interval: Optional[float] = None) -> WatchSubscription:
        path = Path(path)
        if path in self._subscriptions:
            self.unsubscribe(path)

        subscription = WatchSubscription(path=path, callback=callback, interval=interval or self.default_interval)
        stop_event = asyncio.Event()
        self._subscriptions[path] = subscription
        self._stop_events[path] = stop_event
        self._watch_tasks[path] = asyncio.get_running_loop().create_task(
            self._watch(subscription, stop_event),
            name=f"watch:{path.name}",
        )
        logger.debug(f"Watching {path} (native events)")
        return subscription

    def unsubscribe(self, path: Path) -> bool:
        path = Path(path)
        subscription = self._subscriptions.pop(path, None)
        stop_event = self._stop_events.pop(path, None)
        if stop_event is not None:
            stop_event.set()
        task = self._watch_tasks.pop(path, None)
        if task is not None:
            task.cancel()
        return subscription is not None

    async def close(self) -> None:
        tasks = list(self._watch_tasks.values())
        await super().close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _watch(self, subscription: WatchSubscription, stop_event: asyncio.Event) -> None:
        debounce_ms = max(int(subscription.interval * 1000), 1)
        # parent directory: a file replaced on save loses a per-file watch
        async for changes in awatch(subscription.path.parent, stop_event=stop_event, debounce=debounce_ms, recursive=False):
            if any(change in _FIRING_CHANGES and Path(changed) == subscription.path for change, changed in changes):
                logger.debug(f"Modification detected: {subscription.path}")
                self._dispatch(subscription)
