"""
NAT-PMP client.

This module provides:
- RFC 6886 codec and a UDP transport to the gateway
- Exponential backoff around request/response exchanges
- Public address and port mapping queries
"""

from .errors import (
    NatPmpError,
    TryAgain,
    TransportFatal,
    MalformedResponse,
    GatewayResultError,
    BackoffTimeout,
    UnexpectedResponse,
    MappingFailed,
    NotifierFailed,
    Stopped,
)
from .protocol import (
    Protocol,
    PublicAddressResponse,
    MappingResponse,
    NATPMP_PORT,
)
from .transport import NatPmpTransport
from .backoff import (
    run_with_backoff,
    stoppable_sleep,
    timeout_schedule,
    INITIAL_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
)
from .queries import (
    PublicAddressInfo,
    PortMapping,
    query_gateway,
    request_mapping,
    request_fresh_mapping,
    DEFAULT_LIFETIME,
)

__all__ = [
    "NatPmpError",
    "TryAgain",
    "TransportFatal",
    "MalformedResponse",
    "GatewayResultError",
    "BackoffTimeout",
    "UnexpectedResponse",
    "MappingFailed",
    "NotifierFailed",
    "Stopped",
    "Protocol",
    "PublicAddressResponse",
    "MappingResponse",
    "NATPMP_PORT",
    "NatPmpTransport",
    "run_with_backoff",
    "stoppable_sleep",
    "timeout_schedule",
    "INITIAL_TIMEOUT_MS",
    "MAX_TIMEOUT_MS",
    "PublicAddressInfo",
    "PortMapping",
    "query_gateway",
    "request_mapping",
    "request_fresh_mapping",
    "DEFAULT_LIFETIME",
]
