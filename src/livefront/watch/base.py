"""Watcher interface.

A watcher holds at most one subscription per file and invokes the
subscription's async callback whenever the file is modified. Implementations
decide how modification is detected (polling, native events) without the
rebuild engine or the live-reload hub knowing the difference.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Invoked with the modified file's path
WatchCallback = Callable[[Path], Awaitable[Any]]


@dataclass
class WatchSubscription:
    """An active watch on one file.

    Attributes:
        path: Watched file (absolute)
        callback: Coroutine function invoked with ``path`` on modification
        interval: Poll interval in seconds (ignored by event-based watchers)
        created_at: Unix timestamp of subscription
        fire_count: Number of modifications delivered so far
    """

    path: Path
    callback: WatchCallback
    interval: float
    created_at: float = field(default_factory=time.time)
    fire_count: int = 0


class Watcher(ABC):
    """Base class for file watchers.

    Callbacks run as independent tasks: a slow or hung callback for one file
    never delays detection or delivery for another, and an exception raised by
    a callback is logged instead of stopping the watcher.
    """

    def __init__(self, default_interval: float):
        self.default_interval = default_interval
        self._subscriptions: dict[Path, WatchSubscription] = {}
        self._callback_tasks: set[asyncio.Task[None]] = set()

    @abstractmethod
    def subscribe(self, path: Path, callback: WatchCallback, interval: Optional[float] = None) -> WatchSubscription:
        """Watch ``path``; replaces any existing subscription for it.

        Must be called from within a running event loop.
        """

    @abstractmethod
    def unsubscribe(self, path: Path) -> bool:
        """Stop watching ``path``. Returns False if it was not watched."""

    def is_watching(self, path: Path) -> bool:
        return Path(path) in self._subscriptions

    @property
    def subscriptions(self) -> list[WatchSubscription]:
        return list(self._subscriptions.values())

    async def close(self) -> None:
        """Cancel every subscription and wait for in-flight callbacks to stop."""
        for path in list(self._subscriptions):
            self.unsubscribe(path)
        pending = list(self._callback_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug(f"{type(self).__name__} closed")

    def _dispatch(self, subscription: WatchSubscription) -> None:
        """Run the subscription's callback as its own task."""
        subscription.fire_count += 1
        task = asyncio.get_running_loop().create_task(self._invoke(subscription))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def _invoke(self, subscription: WatchSubscription) -> None:
        try:
            await subscription.callback(subscription.path)
        except asyncio.CancelledError:
            raise
        except KeyboardInterrupt:
            raise
        except Exception as e:
            logger.error(f"Watch callback for {subscription.path} failed: {e}", exc_info=True)
