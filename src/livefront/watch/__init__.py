"""File watchers.

Public API:
    Watcher: Abstract watcher interface (one subscription per file).
    WatchSubscription: An active subscription.
    PollingWatcher: Modification-time polling (default).
    WatchfilesWatcher: Native filesystem events via watchfiles.
"""

from .base import Watcher, WatchCallback, WatchSubscription
from .native import WatchfilesWatcher
from .polling import PollingWatcher

__all__ = [
    "PollingWatcher",
    "WatchCallback",
    "WatchSubscription",
    "Watcher",
    "WatchfilesWatcher",
]
