import socket
import threading
import time

import pytest

from conftest import FakeSocket, ScriptedServerSocket

from lanbeacon.config import Config
from lanbeacon.discovery.server import DiscoveryServer, ServerState
from lanbeacon.errors import BindError, NoAdvertisableAddressError, ReceiveFailureError

REQUEST = b"Where-are-you?"
CLIENT = ("192.168.1.20", 40000)


def make_server(script, config=None, advertised="10.0.0.5"):
    """Build a server over a scripted socket that stops when the script ends."""
    server = None

    def stop():
        server.stop()

    sock = ScriptedServerSocket(script, on_exhausted=stop)
    server = DiscoveryServer(
        config or Config(),
        advertised_address=advertised,
        socket_factory=lambda: sock,
    )
    return server, sock


def test_start_binds_wildcard_with_broadcast_enabled():
    server, sock = make_server([])
    server.start()

    assert sock.bound == ("0.0.0.0", 8888)
    assert sock.broadcast_enabled
    assert server.state == ServerState.LISTENING
    assert server.advertised_address == "10.0.0.5"
    server.close()
    assert sock.closed


def test_replies_to_request_with_advertised_address():
    server, sock = make_server([(REQUEST, CLIENT)])
    server.serve_forever()

    assert sock.sent == [(b"FOO_SERVER_IP 10.0.0.5", CLIENT)]
    assert server.replies_sent == 1
    assert server.state == ServerState.TERMINATED
    assert sock.closed


def test_padded_request_is_accepted():
    server, sock = make_server([(REQUEST + b"\x00" * 500, CLIENT)])
    server.serve_forever()

    assert len(sock.sent) == 1


def test_non_discovery_packet_is_ignored_and_loop_continues():
    other = ("192.168.1.30", 50000)
    server, sock = make_server([(b"hello", CLIENT), (REQUEST, other)])
    server.serve_forever()

    assert sock.sent == [(b"FOO_SERVER_IP 10.0.0.5", other)]
    assert server.packets_received == 2
    assert server.packets_ignored == 1


def test_gives_up_after_five_consecutive_receive_errors():
    script = [OSError("recv failed")] * 5 + [(REQUEST, CLIENT)]
    server, sock = make_server(script)

    with pytest.raises(ReceiveFailureError) as exc_info:
        server.serve_forever()

    assert exc_info.value.failures == 5
    assert sock.sent == []
    assert sock.script == [(REQUEST, CLIENT)]
    assert server.state == ServerState.TERMINATED
    assert sock.closed


def test_successful_receive_resets_error_count():
    script = [OSError("recv failed")] * 4 + [(REQUEST, CLIENT)] + [OSError("recv failed")] * 4
    server, sock = make_server(script)
    server.serve_forever()

    assert len(sock.sent) == 1
    assert server.error_count == 4


def test_threshold_comes_from_config():
    server, sock = make_server([OSError("recv failed")] * 2, Config(max_receive_errors=2))

    with pytest.raises(ReceiveFailureError):
        server.serve_forever()


def test_send_failure_does_not_stop_server():
    server, sock = make_server([(REQUEST, CLIENT), (REQUEST, CLIENT)])
    sock.send_errors = [OSError("Network is unreachable")]
    server.serve_forever()

    assert len(sock.sent) == 1
    assert server.replies_sent == 1


def test_handle_packet_returns_whether_reply_sent():
    server, sock = make_server([])
    server.start()

    assert server.handle_packet(REQUEST, CLIENT) is True
    assert server.handle_packet(b"GARBAGE", CLIENT) is False
    server.close()


def test_bind_failure_is_fatal():
    sock = FakeSocket()
    sock.bind_error = OSError(98, "Address already in use")
    server = DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock)

    with pytest.raises(BindError) as exc_info:
        server.start()

    assert exc_info.value.port == 8888
    assert sock.closed
    assert server.state == ServerState.TERMINATED


def test_no_advertisable_address_is_fatal_before_bind():
    created = []

    def resolver():
        raise NoAdvertisableAddressError("nothing to advertise")

    server = DiscoveryServer(
        socket_factory=lambda: created.append(1) or FakeSocket(),
        address_resolver=resolver,
    )

    with pytest.raises(NoAdvertisableAddressError):
        server.start()
    assert created == []


def test_advertise_address_from_config():
    sock = FakeSocket()
    server = DiscoveryServer(
        Config(advertise_address="172.16.0.9"),
        socket_factory=lambda: sock,
        address_resolver=lambda: pytest.fail("resolver should not be called"),
    )
    server.start()
    assert server.advertised_address == "172.16.0.9"
    server.close()


def test_resolver_used_when_no_address_given():
    server = DiscoveryServer(
        socket_factory=FakeSocket,
        address_resolver=lambda: "192.168.7.7",
    )
    server.start()
    assert server.advertised_address == "192.168.7.7"
    server.close()


def test_background_server_stops_on_request():
    sock = ScriptedServerSocket([])
    server = DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock)

    thread = server.start_background()
    time.sleep(0.05)
    assert thread.is_alive()

    server.stop(timeout=2.0)

    assert not thread.is_alive()
    assert sock.closed
    assert server.state == ServerState.TERMINATED


def test_close_stops_background_server(monkeypatch):
    crashes = []
    monkeypatch.setattr(threading, 'excepthook', lambda args: crashes.append(args.exc_value))
    sock = ScriptedServerSocket([])
    server = DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock)

    thread = server.start_background()
    time.sleep(0.05)
    server.close()
    thread.join(2.0)

    assert not thread.is_alive()
    assert crashes == []
    assert server.error is None
    assert sock.closed
    assert server.state == ServerState.TERMINATED


def test_handle_packet_after_close_sends_nothing():
    sock = FakeSocket()
    server = DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock)
    server.start()
    server.close()

    assert server.handle_packet(REQUEST, CLIENT) is False
    assert sock.sent == []


def test_non_ascii_advertised_address_is_fatal_before_bind():
    server = DiscoveryServer(
        advertised_address="höst",
        socket_factory=lambda: pytest.fail("socket should not be created"),
    )

    with pytest.raises(NoAdvertisableAddressError):
        server.start()
    assert server.state == ServerState.TERMINATED


def test_advertise_address_from_config_must_be_ipv4():
    server = DiscoveryServer(
        Config(advertise_address="server.local"),
        socket_factory=lambda: pytest.fail("socket should not be created"),
    )

    with pytest.raises(NoAdvertisableAddressError):
        server.start()


def test_background_server_keeps_fatal_error():
    sock = ScriptedServerSocket([OSError("recv failed")] * 5)
    server = DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock)

    thread = server.start_background()
    thread.join(2.0)

    assert isinstance(server.error, ReceiveFailureError)


def test_context_manager_closes_socket():
    sock = FakeSocket()
    with DiscoveryServer(advertised_address="10.0.0.5", socket_factory=lambda: sock) as server:
        assert server.is_running
    assert sock.closed
    assert sock.options[(socket.SOL_SOCKET, socket.SO_REUSEADDR)] == 1
