"""Polling watcher.

Each subscription owns an asyncio task that stats the file at a fixed
interval and fires when the modification time moves forward. Polling works
everywhere (network mounts, containers, editors that replace files) at the
cost of a latency of up to one interval.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .. import config
from .base import Watcher, WatchCallback, WatchSubscription

logger = logging.getLogger(__name__)


def _mtime(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except OSError:
        return None


class PollingWatcher(Watcher):
    """Modification-time polling watcher.

    Usage:
        watcher = PollingWatcher(default_interval=1.0)
        watcher.subscribe(path, on_change)
        ...
        await watcher.close()
    """

    def __init__(self, default_interval: float = config.POLL_INTERVAL):
        super().__init__(default_interval)
        self._poll_tasks: dict[Path, asyncio.Task[None]] = {}

    def subscribe(self, path: Path, callback: WatchCallback, interval: Optional[float] = None) -> WatchSubscription:
        path = Path(path)
        if path in self._subscriptions:
            self.unsubscribe(path)

        subscription = WatchSubscription(path=path, callback=callback, interval=interval or self.default_interval)
        self._subscriptions[path] = subscription
        # baseline taken now so a change between subscribe and first poll is seen
        baseline = _mtime(path)
        self._poll_tasks[path] = asyncio.get_running_loop().create_task(
            self._poll(subscription, baseline),
            name=f"poll:{path.name}",
        )
        logger.debug(f"Polling {path} every {subscription.interval}s")
        return subscription

    def unsubscribe(self, path: Path) -> bool:
        path = Path(path)
        subscription = self._subscriptions.pop(path, None)
        task = self._poll_tasks.pop(path, None)
        if task is not None:
            task.cancel()
        if subscription is None:
            return False
        logger.debug(f"Stopped polling {path}")
        return True

    async def close(self) -> None:
        tasks = list(self._poll_tasks.values())
        await super().close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(self, subscription: WatchSubscription, last_mtime: Optional[float]) -> None:
        while True:
            await asyncio.sleep(subscription.interval)
            current = _mtime(subscription.path)
            if current is None:
                # deleted or mid-replace; keep polling until it comes back
                continue
            if last_mtime is not None and current <= last_mtime:
                continue
            if last_mtime is None:
                logger.debug(f"{subscription.path} appeared")
            last_mtime = current
            logger.debug(f"Modification detected: {subscription.path}")
            self._dispatch(subscription)
