import socket

import pytest

from lanbeacon.config import Config


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSocket:
    """Records socket calls; subclasses decide what recvfrom returns."""

    def __init__(self):
        self.options = {}
        self.bound = None
        self.timeout = None
        self.closed = False
        self.sent = []
        self.send_errors = []
        self.bind_error = None

    def setsockopt(self, level, option, value):
        self.options[(level, option)] = value

    def bind(self, addr):
        if self.bind_error:
            raise self.bind_error
        self.bound = addr

    def settimeout(self, timeout):
        self.timeout = timeout

    def getsockname(self):
        return self.bound or ('0.0.0.0', 0)

    def sendto(self, data, addr):
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append((data, addr))

    def close(self):
        self.closed = True

    @property
    def broadcast_enabled(self) -> bool:
        return self.options.get((socket.SOL_SOCKET, socket.SO_BROADCAST)) == 1


class ScriptedServerSocket(FakeSocket):
    """
    Returns scripted datagrams in order.

    Script items are (data, addr) tuples or exceptions to raise. Once the
    script runs out, ``on_exhausted`` is called and the receive times out.
    """

    def __init__(self, script, on_exhausted=None):
        super().__init__()
        self.script = list(script)
        self.on_exhausted = on_exhausted

    def recvfrom(self, size):
        if not self.script:
            if self.on_exhausted:
                self.on_exhausted()
            raise socket.timeout("timed out")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class ScriptedClientSocket(FakeSocket):
    """
    Answers according to how many requests have been sent so far.

    ``replies`` maps a send count to a (data, addr) tuple or an exception.
    Without an entry for the current count the receive times out after
    advancing ``clock`` by the socket timeout.
    """

    def __init__(self, clock, replies=None, on_send=None):
        super().__init__()
        self.clock = clock
        self.replies = dict(replies or {})
        self.on_send = on_send

    def sendto(self, data, addr):
        super().sendto(data, addr)
        if self.on_send:
            self.on_send(len(self.sent))

    def recvfrom(self, size):
        item = self.replies.pop(len(self.sent), None)
        if item is None:
            self.clock.advance(self.timeout)
            raise socket.timeout("timed out")
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Config(reply_timeout=5.0, poll_interval=0.5)
