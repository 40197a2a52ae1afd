"""TCP connection to a Speech Dispatcher server.

One background thread reads the socket for the whole life of the
connection. Ordinary responses are handed to the single caller waiting in
:meth:`SSIPConnection.send_command` or :meth:`SSIPConnection.send_data`;
events (7xx codes) go to the registered event handler instead.

The server answers commands strictly in order and never interleaves an
event with the lines of a multi-line response. Correlation relies on
that: there is no request id on the wire.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable

from ..errors import (
    CommandError,
    CommunicationError,
    DataError,
    ProtocolError,
    ResponseTimeoutError,
    SSIPError,
)
from ..protocol.commands import Command, build_command
from ..protocol.framing import (
    CRLF,
    ENCODING,
    Response,
    build_data_block,
    iter_lines,
    iter_messages,
)
from ..protocol.parser import Event, is_event, parse_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]


class ResponseSlot:
    """Single-item rendezvous between the reader thread and a sender."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._response: Response | None = None
        self._closed_reason: str | None = None

    def put(self, response: Response) -> None:
        with self._condition:
            if self._response is not None:
                logger.warning("Unconsumed response %r replaced by %r", self._response, response)
            self._response = response
            self._condition.notify_all()

    def take(self, timeout: float | None = None) -> Response:
        """Wait for a response, consume it and clear the slot.

        Raises:
            CommunicationError: If the slot was closed.
            ResponseTimeoutError: If ``timeout`` seconds pass without a response.
        """
        with self._condition:
            self._condition.wait_for(
                lambda: self._response is not None or self._closed_reason is not None,
                timeout,
            )
            if self._response is not None:
                response, self._response = self._response, None
                return response
            if self._closed_reason is not None:
                raise CommunicationError(self._closed_reason)
            raise ResponseTimeoutError(f"no response within {timeout} seconds")

    def close(self, reason: str) -> None:
        with self._condition:
            if self._closed_reason is None:
                self._closed_reason = reason
            self._condition.notify_all()


class SSIPConnection:
    """Manages one SSIP connection to the server.

    Usage::

        conn = SSIPConnection("localhost", 6560)
        conn.connect()
        conn.send_command("SET", "self", "CLIENT_NAME", "me:app:main")
        conn.send_command("SPEAK")
        conn.send_data("Hello")
        conn.disconnect()

    A connection is single-use: once disconnected it cannot be reopened.
    """

    def __init__(self, host: str, port: int, timeout: float | None = None) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._socket: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._connected = False
        self._used = False
        self._state_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._slot = ResponseSlot()
        self._event_handler: EventHandler | None = None
        self._failure: BaseException | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def connected(self) -> bool:
        return self._connected

    def is_connected(self) -> bool:
        return self._connected

    @property
    def event_handler(self) -> EventHandler | None:
        return self._event_handler

    @event_handler.setter
    def event_handler(self, handler: EventHandler | None) -> None:
        self._event_handler = handler

    def get_event_handler(self) -> EventHandler | None:
        return self._event_handler

    def set_event_handler(self, handler: EventHandler | None) -> None:
        """Register the callable receiving events, or ``None`` to drop them.

        The handler runs on the connection's reader thread and must return
        quickly. It must NOT send commands or data through this connection:
        the reader thread would block waiting for a response that only it
        can deliver. Exceptions raised by the handler are logged and ignored.
        """
        self._event_handler = handler

    def connect(self) -> None:
        """Open the socket and start the reader thread.

        Raises:
            CommunicationError: If the server cannot be reached, or if this
                connection has already been used.
        """
        with self._state_lock:
            if self._used:
                raise CommunicationError("connection objects cannot be reused")
            self._used = True

        sock = None
        try:
            sock = socket.create_connection((self._host, self._port))
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            if sock is not None:
                sock.close()
            logger.error("Cannot connect to %s port %d: %s", self._host, self._port, e)
            raise CommunicationError(
                f"cannot connect to {self._host} port {self._port}: {e}"
            ) from e

        with self._state_lock:
            self._socket = sock
            self._connected = True
            self._thread = threading.Thread(
                target=self._read_loop,
                name=f"SSIP reader {self._host}:{self._port}",
                daemon=True,
            )
            self._thread.start()
        logger.info("Connected to %s port %d", self._host, self._port)

    def disconnect(self) -> None:
        """Stop the reader thread and close the socket. Safe to call twice."""
        with self._state_lock:
            if not self._connected:
                return
            self._connected = False
            sock, thread = self._socket, self._thread

        reason = "disconnected from server"
        if self._failure is not None:
            reason = f"disconnected from server: {self._failure}"
        self._slot.close(reason)

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown failed: %s", e)
        if thread is not None and thread is not threading.current_thread():
            logger.debug("Joining reader thread")
            thread.join()
        try:
            sock.close()
        except OSError as e:
            logger.warning("Error closing socket: %s", e)
        finally:
            self._socket = None
            self._thread = None
        logger.info("Disconnected from %s port %d", self._host, self._port)

    def send_command(self, command: Command | str, *args: object) -> Response:
        """Send a command and wait for its response.

        Args:
            command: A :class:`Command`, or a verb followed by ``args``.

        Returns:
            The server's 2xx response.

        Raises:
            CommandError: If the server answers with a non-2xx code.
            CommunicationError: If not connected or the connection fails.
        """
        if not isinstance(command, Command):
            command = build_command(command, *args)
        elif args:
            raise TypeError("extra arguments are not allowed with a Command instance")

        logger.debug("Sending command %s", command)
        response = self._exchange((command.to_line() + CRLF).encode(ENCODING))
        if not response.is_success:
            logger.warning("Server returned %d to %s", response.code, command)
            raise CommandError(command, response)
        return response

    def send_data(self, data: str) -> Response:
        """Send a multi-line data block and wait for its response.

        Raises:
            DataError: If the server answers with a non-2xx code.
            CommunicationError: If not connected or the connection fails.
        """
        logger.debug("Sending %d characters of data", len(data))
        response = self._exchange(build_data_block(data))
        if not response.is_success:
            logger.warning("Server returned %d to data block", response.code)
            raise DataError(data, response)
        return response

    def _exchange(self, payload: bytes) -> Response:
        with self._send_lock:
            sock = self._socket
            if not self._connected or sock is None:
                raise CommunicationError("not connected to server")
            try:
                sock.sendall(payload)
            except OSError as e:
                logger.error("I/O error while sending: %s", e)
                self.disconnect()
                raise CommunicationError(f"disconnected from server: {e}") from e
            try:
                response = self._slot.take(self._timeout)
            except CommunicationError as e:
                self.disconnect()
                raise e from self._failure
            logger.debug("Received response %r", response)
            return response

    def _read_loop(self) -> None:
        sock = self._socket
        try:
            for message in iter_messages(iter_lines(sock.recv)):
                self._dispatch(message)
                if not self._connected:
                    break
            else:
                if self._connected:
                    logger.info("Server closed the connection")
        except ProtocolError as e:
            if self._connected:
                logger.error("Protocol violation, disconnecting: %s", e)
                self._failure = e
        except OSError as e:
            if self._connected:
                logger.error("I/O error while reading: %s", e)
                self._failure = e
        finally:
            self.disconnect()

    def _dispatch(self, message: Response) -> None:
        if not is_event(message.code):
            self._slot.put(message)
            return

        handler = self._event_handler
        if handler is None:
            logger.debug("Dropping event %d, no handler registered", message.code)
            return
        try:
            event = parse_event(message)
        except SSIPError as e:
            logger.warning("Ignoring malformed event: %s", e)
            return
        try:
            handler(event)
        except Exception:
            logger.exception("Event handler raised while handling %r", event)

    def __enter__(self) -> SSIPConnection:
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()
