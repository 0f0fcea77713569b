"""
UDP Broadcast Discovery Server

Listens for broadcast datagrams on the discovery port. When a datagram
carries the request token, the server replies (unicast, to the sender's
address and port) with the address it advertises. Anything else is
logged and dropped.

Design Decision: Serving Model
==============================

Options:
1. asyncio DatagramProtocol
   - Integrates with an event loop
   - Needs a running loop in every host process

2. Blocking socket loop, optionally on a worker thread
   - One packet is validated and answered before the next is read
   - Work per packet is tiny compared to network timing

Decision: Blocking loop
- Hosts that need to stay responsive call start_background()
- The socket polls with a short timeout so stop() is honoured between
  packets

Failure policy:
- Bind failure: fatal, never retried
- Receive failure: tolerated until max_receive_errors in a row, then fatal
- Send failure: logged, the server keeps listening (clients resend)

Some issues that may affect discovery:
1. Server and client on different LANs/VLANs - routers don't forward
   broadcasts
2. Wireless networks with client isolation enabled
3. Hosts with several LAN addresses - see address.select_address
"""

import logging
import socket
import threading
from enum import Enum
from typing import Callable, Optional, Tuple

from ..config import Config
from ..errors import BindError, NoAdvertisableAddressError, ReceiveFailureError
from .address import IPV4_PATTERN, resolve_advertised_address
from .protocol import decode_request, encode_reply

logger = logging.getLogger(__name__)


class ServerState(Enum):
    """Lifecycle states of a DiscoveryServer."""
    UNINITIALIZED = "uninitialized"
    LISTENING = "listening"
    VALIDATING = "validating"
    REPLYING = "replying"
    IGNORING = "ignoring"
    ERROR_BACKOFF = "error_backoff"
    TERMINATED = "terminated"


def create_udp_socket() -> socket.socket:
    """Create an IPv4 UDP socket."""
    return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)


class DiscoveryServer:
    """
    Answers discovery broadcasts with this host's address.

    Usage:
        with DiscoveryServer(config) as server:
            server.serve_forever()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        advertised_address: Optional[str] = None,
        socket_factory: Optional[Callable[[], socket.socket]] = None,
        address_resolver: Optional[Callable[[], str]] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the discovery server.

        Args:
            config: Endpoint configuration (defaults if not provided)
            advertised_address: Address to put in replies. Falls back to
                                config.advertise_address, then to the
                                address resolver.
            socket_factory: Creates the UDP socket (for tests)
            address_resolver: Returns the address to advertise or raises
                              NoAdvertisableAddressError
            log: Logger for server events (module logger if not given)
        """
        self.config = config or Config()
        self.logger = log or logger

        self._advertised_address = advertised_address or self.config.advertise_address
        self._socket_factory = socket_factory or create_udp_socket
        self._address_resolver = address_resolver or resolve_advertised_address

        self._socket: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.state = ServerState.UNINITIALIZED
        self.error: Optional[Exception] = None

        # Counters
        self.error_count = 0
        self.packets_received = 0
        self.packets_ignored = 0
        self.replies_sent = 0

    @property
    def advertised_address(self) -> Optional[str]:
        """The address sent in replies (resolved on start)."""
        return self._advertised_address

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """The (host, port) the socket is bound to, once started."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[:2]

    @property
    def is_running(self) -> bool:
        return self._socket is not None and not self._stop_event.is_set()

    def start(self):
        """
        Resolve the advertised address and bind the discovery port.

        Raises:
            NoAdvertisableAddressError: If no address can be advertised
            BindError: If the UDP port cannot be bound
        """
        if self._socket is not None:
            return

        if not self._advertised_address:
            try:
                self._advertised_address = self._address_resolver()
            except NoAdvertisableAddressError as e:
                self.state = ServerState.TERMINATED
                self.logger.critical(f"Cannot start discovery server: {e}")
                raise

        # replies are plain ASCII dotted quads
        if not IPV4_PATTERN.fullmatch(self._advertised_address):
            self.state = ServerState.TERMINATED
            error = NoAdvertisableAddressError(
                f"Advertised address {self._advertised_address!r} is not an IPv4 address"
            )
            self.logger.critical(f"Cannot start discovery server: {error}")
            raise error

        host, port = self.config.host, self.config.port
        sock = None
        try:
            sock = self._socket_factory()
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            # enable receipt of broadcast packets
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((host, port))
            sock.settimeout(self.config.poll_interval)
        except OSError as e:
            if sock is not None:
                sock.close()
            self.state = ServerState.TERMINATED
            self.logger.critical(f"Could not create UDP socket on port {port}: {e}")
            raise BindError(host, port, e) from e

        self._socket = sock
        self._stop_event.clear()
        self.state = ServerState.LISTENING
        self.logger.info(
            f"Discovery server listening on {host}:{port}, "
            f"advertising {self._advertised_address}"
        )

    def serve_forever(self):
        """
        Receive and answer packets until stopped.

        Raises:
            ReceiveFailureError: After max_receive_errors consecutive
                                 receive failures
        """
        self.start()
        self._serve()

    def _serve(self):
        max_errors = self.config.max_receive_errors

        try:
            while not self._stop_event.is_set():
                sock = self._socket
                if sock is None:
                    break

                self.state = ServerState.LISTENING
                try:
                    data, addr = sock.recvfrom(self.config.max_packet_size)
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._stop_event.is_set():
                        break

                    self.error_count += 1
                    self.state = ServerState.ERROR_BACKOFF
                    self.logger.error(
                        f"Receive failed ({self.error_count}/{max_errors}): {e}"
                    )
                    if self.error_count >= max_errors:
                        self.logger.critical(
                            f"Stopping discovery server after {self.error_count} "
                            f"consecutive receive errors"
                        )
                        raise ReceiveFailureError(self.error_count, e) from e
                    continue

                self.error_count = 0
                self.handle_packet(data, addr)
        finally:
            self.state = ServerState.TERMINATED
            self.close()

    def handle_packet(self, data: bytes, addr: Tuple) -> bool:
        """
        Validate one datagram and reply if it is a discovery request.

        Args:
            data: Datagram payload
            addr: Sender address as returned by recvfrom

        Returns:
            True if a reply was sent
        """
        self.packets_received += 1
        client_ip, client_port = addr[0], addr[1]
        self.logger.info(f"Packet received from {client_ip}:{client_port}")
        self.logger.debug(f"Received data: {data!r}")

        self.state = ServerState.VALIDATING
        if not decode_request(data, self.config.request_token):
            self.state = ServerState.IGNORING
            self.packets_ignored += 1
            self.logger.info(
                f"Packet from {client_ip}:{client_port} not a discovery packet"
            )
            return False

        self.state = ServerState.REPLYING
        reply = encode_reply(self._advertised_address, self.config.reply_prefix)
        sock = self._socket
        if sock is None:
            self.logger.warning(
                f"Socket closed, no reply sent to {client_ip}:{client_port}"
            )
            return False
        try:
            sock.sendto(reply, addr)
        except OSError as e:
            self.logger.error(f"Error sending reply to {client_ip}:{client_port}: {e}")
            return False

        self.replies_sent += 1
        self.logger.info(f"Reply sent to {client_ip}:{client_port}")
        return True

    def start_background(self) -> threading.Thread:
        """Start the server and run serve_forever on a daemon thread."""
        self.start()
        self._thread = threading.Thread(
            target=self._run_background,
            name="discovery-server",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _run_background(self):
        # start() already ran on the caller's thread
        try:
            self._serve()
        except ReceiveFailureError as e:
            # already reported by serve_forever; kept for the owner to inspect
            self.error = e

    def stop(self, timeout: Optional[float] = None):
        """
        Ask the serving loop to exit.

        The loop notices within one poll interval. If the server runs on a
        background thread, wait up to ``timeout`` seconds for it.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            self._thread = None

    def close(self):
        """Stop serving and close the socket."""
        self._stop_event.set()
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError as e:
                self.logger.warning(f"Error closing discovery socket: {e}")
            self._socket = None
            self.state = ServerState.TERMINATED
            self.logger.info("Discovery server stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()
        self.close()
