"""
NAT-PMP wire format (RFC 6886).

Implements:
- Public address request
- TCP/UDP port mapping request
- Response parsing into typed results
"""

import ipaddress
import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import GatewayResultError, MalformedResponse

logger = logging.getLogger(__name__)

NATPMP_PORT = 5351
NATPMP_VERSION = 0

# Opcodes
OP_PUBLIC_ADDRESS = 0
OP_MAP_UDP = 1
OP_MAP_TCP = 2
OP_RESPONSE = 128

# Result codes
RESULT_SUCCESS = 0
RESULT_MESSAGES = {
    1: "unsupported version",
    2: "not authorized / refused",
    3: "network failure",
    4: "out of resources",
    5: "unsupported opcode",
}

PUBLIC_ADDRESS_RESPONSE_SIZE = 12
MAPPING_RESPONSE_SIZE = 16


class Protocol(Enum):
    """Transport protocol of a port mapping. Values are request opcodes."""
    UDP = OP_MAP_UDP
    TCP = OP_MAP_TCP


@dataclass(frozen=True)
class PublicAddressResponse:
    """Gateway's answer to a public address request."""
    address: ipaddress.IPv4Address
    epoch: int


@dataclass(frozen=True)
class MappingResponse:
    """Gateway's answer to a port mapping request."""
    protocol: Protocol
    internal_port: int
    external_port: int
    lifetime: int
    epoch: int

    def __str__(self) -> str:
        return (
            f"{self.protocol.name} internal={self.internal_port} "
            f"external={self.external_port} lifetime={self.lifetime}s"
        )


Response = Union[PublicAddressResponse, MappingResponse]


def build_public_address_request() -> bytes:
    """Build a public address request."""
    return struct.pack(">BB", NATPMP_VERSION, OP_PUBLIC_ADDRESS)


def build_port_mapping_request(
    protocol: Protocol,
    internal_port: int,
    external_port: int,
    lifetime: int,
) -> bytes:
    """
    Build a port mapping request.

    Args:
        protocol: Protocol.TCP or Protocol.UDP
        internal_port: Local port (0 lets the gateway choose)
        external_port: Suggested public port (0 for no preference)
        lifetime: Requested lifetime in seconds (0 deletes the mapping)
    """
    for name, port in (("internal_port", internal_port), ("external_port", external_port)):
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"{name} out of range: {port}")
    if not 0 <= lifetime <= 0xFFFFFFFF:
        raise ValueError(f"lifetime out of range: {lifetime}")

    # version (1) + opcode (1) + reserved (2) + internal (2) + external (2) + lifetime (4)
    return struct.pack(
        ">BBHHHI",
        NATPMP_VERSION,
        protocol.value,
        0,
        internal_port,
        external_port,
        lifetime,
    )


def parse_response(data: bytes) -> Response:
    """
    Parse a datagram received from the gateway.

    Raises:
        MalformedResponse: if the datagram is not a NAT-PMP response
        GatewayResultError: if the gateway reported a failure
    """
    if len(data) < 8:
        raise MalformedResponse(f"response too short ({len(data)} bytes)")

    version, opcode, result, epoch = struct.unpack(">BBHI", data[:8])

    if version != NATPMP_VERSION:
        raise MalformedResponse(f"unsupported version {version}")
    if opcode < OP_RESPONSE:
        raise MalformedResponse(f"opcode {opcode} is not a response")

    if result != RESULT_SUCCESS:
        reason = RESULT_MESSAGES.get(result, "unknown error")
        raise GatewayResultError(result, f"gateway returned result {result}: {reason}")

    request_op = opcode - OP_RESPONSE

    if request_op == OP_PUBLIC_ADDRESS:
        if len(data) < PUBLIC_ADDRESS_RESPONSE_SIZE:
            raise MalformedResponse("truncated public address response")
        address = ipaddress.IPv4Address(data[8:12])
        return PublicAddressResponse(address=address, epoch=epoch)

    if request_op in (OP_MAP_UDP, OP_MAP_TCP):
        if len(data) < MAPPING_RESPONSE_SIZE:
            raise MalformedResponse("truncated mapping response")
        internal_port, external_port, lifetime = struct.unpack(">HHI", data[8:16])
        return MappingResponse(
            protocol=Protocol(request_op),
            internal_port=internal_port,
            external_port=external_port,
            lifetime=lifetime,
            epoch=epoch,
        )

    raise MalformedResponse(f"unknown response opcode {opcode}")
