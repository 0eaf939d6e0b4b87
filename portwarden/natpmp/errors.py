"""
Error taxonomy for NAT-PMP exchanges.

TryAgain is the only non-fatal signal; it drives the backoff loop and is
never surfaced past it.
"""


class NatPmpError(Exception):
    """Base exception for NAT-PMP failures."""
    pass


class TryAgain(NatPmpError):
    """No response is pending yet, the caller should retry."""
    pass


class TransportFatal(NatPmpError):
    """Transport failure other than TryAgain. Aborts the current query."""
    pass


class MalformedResponse(TransportFatal):
    """The gateway sent a datagram that is not a valid NAT-PMP response."""
    pass


class GatewayResultError(TransportFatal):
    """The gateway answered with a non-zero result code."""
    
    def __init__(self, result_code: int, message: str):
        super().__init__(message)
        self.result_code = result_code


class BackoffTimeout(NatPmpError):
    """The backoff timeout ceiling was exceeded."""
    pass


class UnexpectedResponse(NatPmpError):
    """The gateway answered with a response of the wrong type."""
    pass


class MappingFailed(NatPmpError):
    """No acceptable port mapping could be obtained."""
    pass


class NotifierFailed(Exception):
    """The downstream consumer could not be updated."""
    pass


class Stopped(Exception):
    """A stop was requested while waiting."""
    pass
