import socket
import threading

import pytest


class FakeSocket:
    """Socket stand-in that replays scripted chunks and records writes."""

    def __init__(self, chunks=(), recv_error=None, send_error=None):
        self.chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]
        self.recv_error = recv_error
        self.send_error = send_error
        self.sent = bytearray()
        self.recv_sizes = []
        self.closed = False

    def recv(self, size):
        self.recv_sizes.append(size)
        if self.recv_error is not None:
            raise self.recv_error
        if not self.chunks:
            return b""
        chunk = self.chunks.pop(0)
        assert len(chunk) <= size
        return chunk

    def sendall(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.extend(data)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class RecordingConnector:
    """Replacement for socket.create_connection that hands out a FakeSocket."""

    def __init__(self, upstream=None, error=None):
        self.upstream = upstream
        self.error = error
        self.calls = []

    def __call__(self, address, timeout=None):
        self.calls.append((address, timeout))
        if self.error is not None:
            raise self.error
        return self.upstream


def static_resolver(table):
    """getaddrinfo replacement answering from a {(host, port): [(ip, port), ...]} table."""

    def resolver(host, port, type=0):
        if (host, port) not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", addr) for addr in table[(host, port)]]

    return resolver


class CannedUpstream:
    """
    Loopback server that reads one request per connection, records it and
    answers with a fixed response in a single write before closing.
    """

    def __init__(self, response: bytes):
        self.response = response
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.address = self.sock.getsockname()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                self.requests.append(conn.recv(65536))
                conn.sendall(self.response)

    def close(self):
        self.sock.close()


@pytest.fixture
def canned_upstream():
    servers = []

    def factory(response: bytes):
        server = CannedUpstream(response)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()


@pytest.fixture
def fake_socket():
    return FakeSocket


@pytest.fixture
def make_connector():
    return RecordingConnector


@pytest.fixture
def make_resolver():
    return static_resolver
