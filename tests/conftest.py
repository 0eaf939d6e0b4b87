"""
Shared fakes for portwarden tests.
"""

import ipaddress

import pytest

from portwarden.natpmp import (
    MappingResponse,
    NotifierFailed,
    Protocol,
    PublicAddressResponse,
    TryAgain,
)


class FakeTransport:
    """
    Scripted stand-in for NatPmpTransport.

    Each read pops the next scripted item: a response is returned, an
    exception is raised. An empty script means the gateway stays silent.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.sent = []
        self.reads = 0
        self.drained_at = []

    def drain(self):
        self.drained_at.append(len(self.sent))
        return 0

    def send_public_address_request(self):
        self.sent.append(("public",))

    def send_port_mapping_request(self, protocol, internal_port, external_port, lifetime):
        self.sent.append((protocol, internal_port, external_port, lifetime))

    def read_response_or_retry(self):
        self.reads += 1
        item = self.script.pop(0) if self.script else TryAgain("silent")
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSleep:
    """Awaitable sleep that records durations instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class RecordingNotifier:
    def __init__(self, failures=0):
        self.ports = []
        self.failures = failures

    async def apply_port(self, port):
        if self.failures:
            self.failures -= 1
            raise NotifierFailed("downstream unavailable")
        self.ports.append(port)


def tcp(internal, external, lifetime=360, epoch=100):
    return MappingResponse(
        protocol=Protocol.TCP,
        internal_port=internal,
        external_port=external,
        lifetime=lifetime,
        epoch=epoch,
    )


def public(address="203.0.113.7", epoch=100):
    return PublicAddressResponse(address=ipaddress.IPv4Address(address), epoch=epoch)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def tcp_response():
    return tcp


@pytest.fixture
def public_response():
    return public


@pytest.fixture
def make_notifier():
    return RecordingNotifier
