"""
portwarden - keep a NAT-PMP port mapping alive

Acquires a TCP port mapping from the gateway, renews it at half its
lifetime and tells a downstream consumer whenever the public port changes.

Example:
    >>> from portwarden import NatPmpTransport, RenewalScheduler, PortFileNotifier
    >>> with NatPmpTransport("10.2.0.1") as transport:
    ...     await RenewalScheduler(transport, PortFileNotifier("port.txt")).run()
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .natpmp import NatPmpTransport, PortMapping, query_gateway, request_mapping
from .keeper import RenewalScheduler, QBittorrentNotifier, PortFileNotifier, QueuedNotifier

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "NatPmpTransport",
    "PortMapping",
    "query_gateway",
    "request_mapping",
    "RenewalScheduler",
    "QBittorrentNotifier",
    "PortFileNotifier",
    "QueuedNotifier",
]
