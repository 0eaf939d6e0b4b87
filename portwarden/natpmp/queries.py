"""
Gateway and mapping queries built on the backoff driver.
"""

import asyncio
import ipaddress
import logging
import time
from dataclasses import dataclass, field

from .backoff import Sleep, run_with_backoff
from .errors import BackoffTimeout, MappingFailed, UnexpectedResponse
from .protocol import MappingResponse, Protocol, PublicAddressResponse, Response
from .transport import NatPmpTransport

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME = 360
DEFAULT_MAX_UNEXPECTED = 3


@dataclass(frozen=True)
class PublicAddressInfo:
    """Public address reported by the gateway."""
    address: ipaddress.IPv4Address
    epoch: int


@dataclass(frozen=True)
class PortMapping:
    """A port mapping granted by the gateway."""
    protocol: Protocol
    internal_port: int
    external_port: int
    lifetime: int
    epoch: int = 0
    granted_at: float = field(default_factory=time.monotonic, compare=False)

    @property
    def renew_after(self) -> float:
        """Seconds to wait before renewing: half the granted lifetime."""
        return self.lifetime / 2

    @classmethod
    def from_response(cls, response: MappingResponse) -> "PortMapping":
        return cls(
            protocol=response.protocol,
            internal_port=response.internal_port,
            external_port=response.external_port,
            lifetime=response.lifetime,
            epoch=response.epoch,
        )

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol.name,
            "internal_port": self.internal_port,
            "external_port": self.external_port,
            "lifetime": self.lifetime,
            "epoch": self.epoch,
        }


async def query_gateway(
    transport: NatPmpTransport,
    sleep: Sleep = asyncio.sleep,
) -> PublicAddressInfo:
    """
    Ask the gateway for its public address.

    Raises:
        UnexpectedResponse: if the gateway answers with anything else
        BackoffTimeout: if the gateway never answers
    """
    def accept(response: Response):
        if not isinstance(response, PublicAddressResponse):
            raise UnexpectedResponse(f"Expecting a gateway response, got {response}")
        logger.info(f"Got response: IP: {response.address}, Epoch: {response.epoch}")
        return PublicAddressInfo(address=response.address, epoch=response.epoch)

    return await run_with_backoff(
        send=transport.send_public_address_request,
        read=transport.read_response_or_retry,
        accept=accept,
        label="Public address request",
        sleep=sleep,
        drain=transport.drain,
    )


async def request_mapping(
    transport: NatPmpTransport,
    internal_port: int = 0,
    external_port: int = 0,
    verify: bool = False,
    lifetime: int = DEFAULT_LIFETIME,
    protocol: Protocol = Protocol.TCP,
    max_unexpected: int = DEFAULT_MAX_UNEXPECTED,
    sleep: Sleep = asyncio.sleep,
) -> PortMapping:
    """
    Request a new port mapping, or renew an existing one.

    In fresh mode (verify=False) the gateway picks both ports and the first
    mapping response is accepted. In verify mode the caller's ports are
    requested and a response is only accepted when both ports match and the
    lifetime is positive; anything else is retried.

    Responses of the wrong type are tolerated max_unexpected times per call.

    Raises:
        MappingFailed: if no acceptable mapping arrived before backoff ran out
        UnexpectedResponse: if too many wrong-typed responses arrived
        TransportFatal: on a fatal transport error
        Stopped: if sleep is stoppable and a stop was requested
    """
    if not verify:
        internal_port, external_port = 0, 0

    unexpected = 0

    def send():
        transport.send_port_mapping_request(protocol, internal_port, external_port, lifetime)

    def accept(response: Response):
        nonlocal unexpected

        if not isinstance(response, MappingResponse) or response.protocol != protocol:
            unexpected += 1
            if unexpected > max_unexpected:
                raise UnexpectedResponse(f"Expecting a {protocol.name} response, got {response}")
            logger.warning(f"Ignoring unexpected response ({unexpected}/{max_unexpected}): {response}")
            return None

        logger.info(
            f"Got response: Internal: {response.internal_port}, "
            f"External: {response.external_port}, Lifetime: {response.lifetime}s"
        )

        if not verify:
            return PortMapping.from_response(response)

        if (
            response.internal_port == internal_port
            and response.external_port == external_port
            and response.lifetime > 0
        ):
            return PortMapping.from_response(response)

        logger.warning("Retrying, port is not the one wanted!")
        return None

    try:
        return await run_with_backoff(
            send=send,
            read=transport.read_response_or_retry,
            accept=accept,
            label="Port mapping request",
            sleep=sleep,
            drain=transport.drain,
        )
    except BackoffTimeout as e:
        raise MappingFailed(
            f"Mapping failed! (internal={internal_port}, external={external_port}, verify={verify})"
        ) from e


async def request_fresh_mapping(
    transport: NatPmpTransport,
    lifetime: int = DEFAULT_LIFETIME,
    max_unexpected: int = DEFAULT_MAX_UNEXPECTED,
    sleep: Sleep = asyncio.sleep,
) -> PortMapping:
    """Let the gateway allocate any available TCP mapping."""
    return await request_mapping(
        transport,
        verify=False,
        lifetime=lifetime,
        max_unexpected=max_unexpected,
        sleep=sleep,
    )
