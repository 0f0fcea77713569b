"""
UDP Broadcast Discovery Client

Finds a discovery server without knowing its address: broadcast the
request token on the discovery port and wait for a reply carrying the
server's address.

Design Decision: Reliability
============================

UDP broadcasts may be dropped silently, so a single request is not
enough. The client resends the request every ``reply_timeout`` seconds
until a reply arrives. There is no built-in limit on the number of
resends; callers that want a bounded wait pass ``timeout`` (an overall
deadline) or cancel the session.

Any reply that does not carry the reply prefix ends the session with
DiscoveryFailedError instead of being ignored.

The same loop backs three calling styles:
- discover()        - blocking call
- discover_async()  - awaitable, runs the loop on a worker thread
- submit()          - returns a concurrent.futures.Future
"""

import asyncio
import logging
import socket
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, Tuple

from ..config import Config
from ..errors import DiscoveryCancelledError, DiscoveryFailedError, DiscoveryTimeoutError
from .protocol import decode_reply, encode_request

logger = logging.getLogger(__name__)


def create_broadcast_socket() -> socket.socket:
    """Create an IPv4 UDP socket on an ephemeral port."""
    return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)


class DiscoveryClient:
    """
    Broadcasts discovery requests until a server answers.

    A client runs one discovery session at a time; each session owns its
    socket and closes it on every exit path.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        socket_factory: Optional[Callable[[], socket.socket]] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the discovery client.

        Args:
            config: Endpoint configuration (defaults if not provided)
            socket_factory: Creates the UDP socket (for tests)
            log: Logger for client events (module logger if not given)
            clock: Monotonic time source
        """
        self.config = config or Config()
        self.logger = log or logger
        self._socket_factory = socket_factory or create_broadcast_socket
        self._clock = clock

        self._cancel_event: Optional[threading.Event] = None

        # Requests sent during the last session
        self.attempts = 0

    def discover(self, timeout: Optional[float] = None) -> str:
        """
        Broadcast requests until a server replies.

        Args:
            timeout: Overall deadline in seconds. None resends forever.

        Returns:
            The server address from the reply

        Raises:
            DiscoveryFailedError: On a non-conforming reply or socket error
            DiscoveryTimeoutError: If the deadline passes without a reply
            DiscoveryCancelledError: If cancel() was called
        """
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        return self._run_session(timeout, cancel_event)

    async def discover_async(self, timeout: Optional[float] = None) -> str:
        """
        Awaitable form of discover().

        Cancelling the awaiting task cancels the discovery session.
        """
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self._run_session, timeout, cancel_event
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    def submit(
        self,
        executor: Optional[Executor] = None,
        timeout: Optional[float] = None,
    ) -> 'Future[str]':
        """
        Run discover() on an executor and return its Future.

        Args:
            executor: Executor to run on (a private single worker if None)
            timeout: Overall deadline in seconds
        """
        cancel_event = threading.Event()
        self._cancel_event = cancel_event

        if executor is not None:
            return executor.submit(self._run_session, timeout, cancel_event)

        own_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="discovery")
        try:
            return own_executor.submit(self._run_session, timeout, cancel_event)
        finally:
            own_executor.shutdown(wait=False)

    def cancel(self):
        """Abort the running session (takes effect within one poll interval)."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    def _run_session(self, timeout: Optional[float], cancel_event: threading.Event) -> str:
        request = encode_request(self.config.request_token)
        target = (self.config.broadcast_address, self.config.port)
        deadline = None if timeout is None else self._clock() + timeout
        self.attempts = 0

        sock = self._create_socket()
        try:
            while True:
                self._check_cancelled(cancel_event)
                if deadline is not None and self._clock() >= deadline:
                    self.logger.warning(
                        f"No discovery reply after {self.attempts} requests ({timeout}s)"
                    )
                    raise DiscoveryTimeoutError(
                        f"No server replied on port {self.config.port} within {timeout}s"
                    )

                self.attempts += 1
                try:
                    sock.sendto(request, target)
                except OSError as e:
                    self.logger.error(f"Error sending request to {target[0]}:{target[1]}: {e}")
                    raise DiscoveryFailedError(
                        f"Could not send discovery request to {target[0]}:{target[1]}: {e}"
                    ) from e
                self.logger.info(f"Sent packet to {target[0]}:{target[1]}")

                reply = self._wait_for_reply(sock, cancel_event, deadline)
                if reply is None:
                    self.logger.debug(
                        f"No reply within {self.config.reply_timeout}s, resending"
                    )
                    continue

                return self._handle_reply(*reply)
        finally:
            sock.close()

    def _create_socket(self) -> socket.socket:
        sock = None
        try:
            sock = self._socket_factory()
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            if sock is not None:
                sock.close()
            self.logger.critical(f"Error creating broadcast socket: {e}")
            raise DiscoveryFailedError(f"Could not create broadcast socket: {e}") from e
        return sock

    def _wait_for_reply(
        self,
        sock: socket.socket,
        cancel_event: threading.Event,
        deadline: Optional[float],
    ) -> Optional[Tuple[bytes, Tuple]]:
        """Wait up to reply_timeout for a datagram; None on timeout."""
        attempt_end = self._clock() + self.config.reply_timeout

        while True:
            now = self._clock()
            remaining = attempt_end - now
            if deadline is not None:
                remaining = min(remaining, deadline - now)
            if remaining <= 0:
                return None

            sock.settimeout(min(remaining, self.config.poll_interval))
            try:
                return sock.recvfrom(self.config.max_packet_size)
            except socket.timeout:
                self._check_cancelled(cancel_event)
            except OSError as e:
                self._check_cancelled(cancel_event)
                self.logger.error(f"Error receiving discovery reply: {e}")
                raise DiscoveryFailedError(f"Error receiving discovery reply: {e}") from e

    def _handle_reply(self, data: bytes, addr: Tuple) -> str:
        self.logger.info(f"Received reply from {addr[0]}")
        self.logger.debug(f"Reply data: {data!r}")

        address = decode_reply(data, self.config.reply_prefix)
        if address is None:
            self.logger.warning(f"Reply does not contain prefix {self.config.reply_prefix!r}")
            raise DiscoveryFailedError(
                f"Reply from {addr[0]} does not contain prefix {self.config.reply_prefix!r}"
            )
        if not address:
            self.logger.warning(f"Reply from {addr[0]} carries no address")
            raise DiscoveryFailedError(f"Reply from {addr[0]} carries no address")

        return address

    def _check_cancelled(self, cancel_event: threading.Event):
        if cancel_event.is_set():
            self.logger.info("Discovery cancelled")
            raise DiscoveryCancelledError("Discovery cancelled by caller")
