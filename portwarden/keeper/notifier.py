"""
Downstream notifiers: whoever needs to know the current public port.

Every notifier exposes `async apply_port(port)` and raises NotifierFailed
when the port could not be applied.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Union

import aiohttp

from ..natpmp.errors import NotifierFailed

logger = logging.getLogger(__name__)

DEFAULT_QBITTORRENT_URL = "http://127.0.0.1:8080"
SET_PREFERENCES_PATH = "/api/v2/app/setPreferences"


class PortNotifier(Protocol):
    async def apply_port(self, port: int) -> None:
        ...


class QBittorrentNotifier:
    """Set qBittorrent's listen port through its Web UI API."""

    def __init__(self, base_url: str = DEFAULT_QBITTORRENT_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def apply_port(self, port: int) -> None:
        session = await self._get_session()
        form = {"json": json.dumps({"listen_port": port})}

        try:
            async with session.post(f"{self.base_url}{SET_PREFERENCES_PATH}", data=form) as resp:
                if resp.status >= 400:
                    error = await resp.text()
                    raise NotifierFailed(
                        f"qBittorrent rejected listen port {port}: HTTP {resp.status} {error}"
                    )
        except asyncio.TimeoutError as e:
            raise NotifierFailed(
                f"Timed out after {self.timeout}s updating qBittorrent at {self.base_url}"
            ) from e
        except aiohttp.ClientError as e:
            raise NotifierFailed(f"Failed to update qBittorrent: {e}") from e

        logger.info(f"qBittorrent listen port set to {port}")


class PortFileNotifier:
    """Append "<pid>,<port>" lines to a file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def apply_port(self, port: int) -> None:
        line = f"{os.getpid()},{port}\n"
        try:
            with open(self.path, "a") as f:
                f.write(line)
        except OSError as e:
            raise NotifierFailed(f"Failed to write port to {self.path}: {e}") from e

        logger.info(f"Port {port} written to {self.path}")


class QueuedNotifier:
    """
    Deliver port changes in the background, retrying until they land.

    apply_port() only records the newest port, so a downstream outage never
    stalls mapping renewal. Older undelivered ports are superseded.
    """

    def __init__(
        self,
        inner: PortNotifier,
        retry_delay: float = 5.0,
        sleep=asyncio.sleep,
    ):
        self.inner = inner
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.pending: Optional[int] = None
        self.delivered: Optional[int] = None
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def apply_port(self, port: int) -> None:
        self.pending = port
        self._wakeup.set()

    async def deliver_pending(self) -> bool:
        """
        Try once to deliver the pending port.

        Returns:
            False if the delivery attempt failed
        """
        port = self.pending
        if port is None:
            return True

        try:
            await self.inner.apply_port(port)
        except NotifierFailed as e:
            logger.warning(f"Port {port} not delivered, retrying in {self.retry_delay}s: {e}")
            return False
        except Exception as e:
            # The delivery task must outlive any downstream bug
            logger.error(f"Unexpected error delivering port {port}, retrying in {self.retry_delay}s: {e!r}")
            return False

        self.delivered = port
        if self.pending == port:
            self.pending = None
        return True

    async def _deliver_loop(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            while self.pending is not None:
                if not await self.deliver_pending():
                    await self.sleep(self.retry_delay)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._deliver_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Notifier delivery task failed: {e!r}")
            self._task = None
