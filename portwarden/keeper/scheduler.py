"""
Renewal scheduler: keeps one port mapping alive and reports port changes.

Process:
1. Acquire a fresh mapping and report its port
2. Sleep half the mapping's lifetime
3. Renew with the same ports; fall back to a fresh mapping if that fails
4. Report the new port if it changed, then repeat
"""

import asyncio
import logging
from typing import Optional

from ..natpmp.backoff import Sleep, stoppable_sleep
from ..natpmp.errors import MappingFailed, NatPmpError, NotifierFailed, Stopped
from ..natpmp.queries import (
    DEFAULT_LIFETIME,
    DEFAULT_MAX_UNEXPECTED,
    PortMapping,
    request_mapping,
)
from ..natpmp.transport import NatPmpTransport
from .notifier import PortNotifier

logger = logging.getLogger(__name__)

# Gateways count epoch seconds with some jitter against our clock
EPOCH_TOLERANCE = 3


class RenewalScheduler:
    """
    Owns the transport session and the single live mapping.
    """

    def __init__(
        self,
        transport: NatPmpTransport,
        notifier: PortNotifier,
        lifetime: int = DEFAULT_LIFETIME,
        max_unexpected: int = DEFAULT_MAX_UNEXPECTED,
        sleep: Sleep = asyncio.sleep,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.transport = transport
        self.notifier = notifier
        self.lifetime = lifetime
        self.max_unexpected = max_unexpected
        self.sleep = sleep
        self.mapping: Optional[PortMapping] = None
        self.renewals = 0
        self.epoch_resets = 0
        self.stop_event = stop_event

    def _sleep(self) -> Sleep:
        if self.stop_event is None:
            return self.sleep
        return stoppable_sleep(self.stop_event, self.sleep)

    async def _request(self, internal_port: int, external_port: int, verify: bool) -> PortMapping:
        return await request_mapping(
            self.transport,
            internal_port=internal_port,
            external_port=external_port,
            verify=verify,
            lifetime=self.lifetime,
            max_unexpected=self.max_unexpected,
            sleep=self._sleep(),
        )

    async def _notify(self, port: int) -> None:
        try:
            await self.notifier.apply_port(port)
        except NotifierFailed:
            logger.error(f"Failed to apply port {port} downstream")
            raise

    async def start(self) -> PortMapping:
        """Acquire the initial mapping and report its port."""
        try:
            self.mapping = await self._request(0, 0, verify=False)
        except NatPmpError as e:
            raise MappingFailed(f"Querying a port mapping failed: {e}") from e

        logger.info(f"Acquired mapping: {self._describe(self.mapping)}")
        await self._notify(self.mapping.external_port)
        return self.mapping

    async def acquire_next(self, current: PortMapping) -> PortMapping:
        """Renew the current mapping, or get any mapping if renewal fails."""
        try:
            return await self._request(current.internal_port, current.external_port, verify=True)
        except NatPmpError as e:
            logger.warning(f"Renewal failed ({e}), requesting a fresh mapping")

        try:
            return await self._request(0, 0, verify=False)
        except NatPmpError as e:
            raise MappingFailed(f"Every renewal method failed! {e}") from e

    def _check_epoch(self, old: PortMapping, new: PortMapping) -> bool:
        """
        Return True if the gateway epoch moved backwards between grants,
        meaning the gateway lost its mapping table.
        """
        elapsed = new.granted_at - old.granted_at
        expected = old.epoch + int(elapsed)
        if new.epoch + EPOCH_TOLERANCE < expected:
            logger.warning(
                f"Gateway epoch went from {old.epoch} to {new.epoch} "
                f"(expected about {expected}); gateway state was reset"
            )
            return True
        return False

    async def renew_once(self) -> PortMapping:
        """
        Sleep half the held lifetime, then renew and report a port change.

        Raises:
            Stopped: stop_event was set while sleeping or renewing
        """
        if self.mapping is None:
            raise RuntimeError("Scheduler not started")

        current = self.mapping
        await self._sleep()(current.renew_after)

        new = await self.acquire_next(current)
        if self._check_epoch(current, new):
            self.epoch_resets += 1
        self.renewals += 1

        if new.external_port != current.external_port:
            logger.info(
                f"Port has changed ({current.external_port} -> {new.external_port}), "
                "updating downstream..."
            )
            await self._notify(new.external_port)

        self.mapping = new
        return new

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run until stop_event is set or a fatal error is raised.

        The event is checked at every wait, including the backoff waits
        inside a renewal, so a stop takes effect within one wait.

        Raises:
            MappingFailed: no mapping could be obtained at all
            NotifierFailed: the downstream consumer could not be updated
        """
        if stop_event is not None:
            self.stop_event = stop_event

        try:
            if self.mapping is None:
                await self.start()

            while True:
                await self.renew_once()
        except Stopped:
            pass

        logger.info("Renewal scheduler stopped")

    @staticmethod
    def _describe(mapping: PortMapping) -> str:
        return (
            f"{mapping.protocol.name} {mapping.internal_port} -> {mapping.external_port}, "
            f"lifetime {mapping.lifetime}s"
        )
