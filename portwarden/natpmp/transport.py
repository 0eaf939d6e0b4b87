"""
UDP session with a NAT-PMP gateway.

The transport never waits: sends are fire-and-forget and reads return the
pending response or raise TryAgain. Timing is owned by the backoff driver.
"""

import ipaddress
import logging
import socket
from typing import Optional, Union

from .errors import TransportFatal, TryAgain
from .protocol import (
    NATPMP_PORT,
    Protocol,
    Response,
    build_port_mapping_request,
    build_public_address_request,
    parse_response,
)

logger = logging.getLogger(__name__)

MAX_DATAGRAM = 1100
MAX_DRAIN = 64


class NatPmpTransport:
    """
    One open conversation with the gateway.

    Owned by a single caller and threaded through every query. Not safe
    to share between concurrent tasks.
    """

    def __init__(
        self,
        gateway: Union[str, ipaddress.IPv4Address],
        port: int = NATPMP_PORT,
    ):
        self.gateway = ipaddress.IPv4Address(gateway)
        self.port = port
        self.sock: Optional[socket.socket] = None

    def open(self) -> "NatPmpTransport":
        """Create the UDP socket. Idempotent."""
        if self.sock is not None:
            return self

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setblocking(False)
            sock.connect((str(self.gateway), self.port))
        except OSError as e:
            raise TransportFatal(f"Could not open socket to {self.gateway}: {e}") from e

        self.sock = sock
        logger.debug(f"Opened NAT-PMP session with {self.gateway}:{self.port}")
        return self

    def close(self) -> None:
        if self.sock:
            self.sock.close()
            self.sock = None

    def __enter__(self) -> "NatPmpTransport":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _send(self, payload: bytes) -> None:
        if self.sock is None:
            self.open()
        try:
            self.sock.send(payload)
        except OSError as e:
            raise TransportFatal(f"Send to {self.gateway} failed: {e}") from e

    def send_public_address_request(self) -> None:
        self._send(build_public_address_request())

    def send_port_mapping_request(
        self,
        protocol: Protocol,
        internal_port: int,
        external_port: int,
        lifetime: int,
    ) -> None:
        self._send(build_port_mapping_request(protocol, internal_port, external_port, lifetime))

    def drain(self) -> int:
        """
        Discard every datagram already waiting on the socket.

        Late answers to an earlier exchange would otherwise be read as the
        answer to the next request. Returns the number discarded.
        """
        if self.sock is None:
            return 0

        dropped = 0
        for _ in range(MAX_DRAIN):
            try:
                self.sock.recvfrom(MAX_DATAGRAM)
            except BlockingIOError:
                break
            except OSError as e:
                # Pending ICMP errors belong to the old exchange too
                logger.debug(f"Discarded socket error from {self.gateway}: {e}")
                continue
            dropped += 1
        return dropped

    def read_response_or_retry(self) -> Response:
        """
        Return the pending response from the gateway.

        Raises:
            TryAgain: nothing received yet
            TransportFatal: socket error or undecodable response
        """
        if self.sock is None:
            raise TransportFatal("Transport is not open")

        while True:
            try:
                data, addr = self.sock.recvfrom(MAX_DATAGRAM)
            except BlockingIOError as e:
                raise TryAgain("no response yet") from e
            except OSError as e:
                raise TransportFatal(f"Receive from {self.gateway} failed: {e}") from e

            if addr[0] != str(self.gateway):
                logger.debug(f"Dropping datagram from unexpected source {addr[0]}")
                continue

            return parse_response(data)
