"""
Exponential backoff around a single request/response exchange.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import BackoffTimeout, Stopped, TryAgain
from .protocol import Response

logger = logging.getLogger(__name__)

INITIAL_TIMEOUT_MS = 250
MAX_TIMEOUT_MS = 64000

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def timeout_schedule(
    initial_ms: int = INITIAL_TIMEOUT_MS,
    max_ms: int = MAX_TIMEOUT_MS,
) -> list[int]:
    """All timeouts the driver will wait, in order: 250, 500, ... 64000."""
    schedule = []
    timeout = initial_ms
    while timeout <= max_ms:
        schedule.append(timeout)
        timeout *= 2
    return schedule


def stoppable_sleep(stop_event: asyncio.Event, sleep: Sleep = asyncio.sleep) -> Sleep:
    """Wrap sleep so it ends early, raising Stopped, once stop_event is set."""
    async def _sleep(seconds: float) -> None:
        if stop_event.is_set():
            raise Stopped("Stop requested")

        sleeper = asyncio.ensure_future(sleep(seconds))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()

        if stop_event.is_set():
            raise Stopped("Stop requested")

    return _sleep


async def run_with_backoff(
    send: Callable[[], None],
    read: Callable[[], Response],
    accept: Callable[[Response], Optional[T]],
    label: str = "Request",
    sleep: Sleep = asyncio.sleep,
    drain: Optional[Callable[[], int]] = None,
) -> T:
    """
    Send, wait, read; double the wait and repeat until accepted.

    Args:
        send: Sends the request to the gateway
        read: Returns a response or raises TryAgain
        accept: Returns a result to finish, or None to keep retrying.
            May raise to abort the exchange.
        label: Name of the request for log messages
        sleep: Awaitable sleep, injectable for tests
        drain: Discards stale datagrams before the first send

    Returns:
        Whatever accept() returned

    Raises:
        BackoffTimeout: if the 64000ms timeout was used without success
        TransportFatal: on any transport error other than TryAgain
        Stopped: if sleep was made stoppable and a stop was requested
    """
    if drain is not None:
        dropped = drain()
        if dropped:
            logger.debug(f"Discarded {dropped} stale datagram(s) before {label.lower()}")

    for timeout_ms in timeout_schedule():
        send()
        logger.info(f"{label} sent! (will timeout in {timeout_ms}ms)")

        await sleep(timeout_ms / 1000)

        try:
            response = read()
        except TryAgain:
            logger.info("Try again later")
            continue

        result = accept(response)
        if result is not None:
            return result

    raise BackoffTimeout(f"{label} got no acceptable response after {MAX_TIMEOUT_MS}ms timeout")
