"""
Mapping keeper: renewal loop and downstream notifiers.
"""

from .scheduler import RenewalScheduler
from .notifier import (
    PortNotifier,
    QBittorrentNotifier,
    PortFileNotifier,
    QueuedNotifier,
    DEFAULT_QBITTORRENT_URL,
)

__all__ = [
    "RenewalScheduler",
    "PortNotifier",
    "QBittorrentNotifier",
    "PortFileNotifier",
    "QueuedNotifier",
    "DEFAULT_QBITTORRENT_URL",
]
