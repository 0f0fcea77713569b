"""
Discovery error types.

Fatal conditions raise one of these; non-fatal ones (a single receive or
send failure, a timed-out attempt) are only logged by the component that
hits them.
"""

from typing import Optional


class DiscoveryError(Exception):
    """Base class for all discovery errors."""


class BindError(DiscoveryError):
    """The server could not acquire its UDP port."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(
            f"Could not create UDP socket on {host or '*'}:{port}: {cause}"
        )


class NoAdvertisableAddressError(DiscoveryError):
    """No local address qualifies for advertisement."""


class ReceiveFailureError(DiscoveryError):
    """Too many consecutive receive failures; the server has stopped."""

    def __init__(self, failures: int, cause: Optional[BaseException] = None):
        self.failures = failures
        self.cause = cause
        super().__init__(
            f"Giving up after {failures} consecutive receive errors: {cause}"
        )


class DiscoveryFailedError(DiscoveryError):
    """A discovery attempt ended without a usable reply."""


class DiscoveryTimeoutError(DiscoveryError, TimeoutError):
    """The caller's overall deadline expired before any server replied."""


class DiscoveryCancelledError(DiscoveryError):
    """The caller cancelled a running discovery."""
