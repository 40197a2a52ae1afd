from __future__ import annotations

import socket
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import pytest

from speechd_ssip_mcp.transport.connection import SSIPConnection

WAIT = 2.0


class FakeSpeechd:
    """Localhost TCP server driven step by step from the test body."""

    def __init__(self) -> None:
        self._listener = socket.create_server(("127.0.0.1", 0))
        self.port = self._listener.getsockname()[1]
        self._accepted = threading.Event()
        self._buffer = b""
        self.conn: socket.socket | None = None
        threading.Thread(target=self._accept, daemon=True).start()

    def _accept(self) -> None:
        try:
            self.conn, _ = self._listener.accept()
        except OSError:
            return
        self.conn.settimeout(WAIT)
        self._accepted.set()

    def wait_connected(self) -> None:
        assert self._accepted.wait(WAIT), "client never connected"

    def read_until(self, marker: bytes) -> bytes:
        while marker not in self._buffer:
            chunk = self.conn.recv(4096)
            if not chunk:
                raise EOFError("client closed the connection")
            self._buffer += chunk
        end = self._buffer.index(marker) + len(marker)
        result, self._buffer = self._buffer[:end], self._buffer[end:]
        return result

    def read_line(self) -> str:
        return self.read_until(b"\r\n")[:-2].decode("utf-8")

    def read_data_block(self) -> bytes:
        return self.read_until(b"\r\n.\r\n")

    def expect_silence(self, seconds: float = 0.2) -> None:
        """Assert that the client sends nothing for ``seconds``."""
        self.conn.settimeout(seconds)
        try:
            chunk = self.conn.recv(4096)
        except socket.timeout:
            return
        finally:
            self.conn.settimeout(WAIT)
        raise AssertionError(f"unexpected data from client: {chunk!r}")

    def send(self, *lines: str) -> None:
        self.conn.sendall("".join(line + "\r\n" for line in lines).encode("utf-8"))

    def send_raw(self, data: bytes) -> None:
        self.conn.sendall(data)

    def drop(self) -> None:
        """Close the client connection abruptly."""
        if self.conn is not None:
            try:
                self.conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.conn.close()

    def close(self) -> None:
        self.drop()
        self._listener.close()


def in_background(fn, *args) -> Future:
    """Run ``fn`` on a worker thread and return its future."""
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args)
    executor.shutdown(wait=False)
    return future


@pytest.fixture
def background():
    return in_background


@pytest.fixture
def speechd():
    server = FakeSpeechd()
    yield server
    server.close()


@pytest.fixture
def connection(speechd):
    conn = SSIPConnection("127.0.0.1", speechd.port)
    conn.connect()
    speechd.wait_connected()
    yield conn
    conn.disconnect()


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
