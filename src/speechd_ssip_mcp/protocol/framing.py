"""Line framing, message assembly and data escaping for SSIP.

Inbound line layout::

    +--------+-----+----------------+------+
    |  Code  | Sep |      Text      | CRLF |
    | 3 digit| 1 ch|  any length    |      |
    +--------+-----+----------------+------+

- Code: decimal response code, 7xx codes are asynchronous events
- Sep: ``-`` on continuation lines, a space on the final line of a message
- Text: continuation lines carry data, the final line carries the message

Outbound data blocks are dot-stuffed and terminated by ``CRLF . CRLF``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

CRLF = "\r\n"
END_OF_DATA = CRLF + "." + CRLF
RECV_BUFFER_SIZE = 4096
ENCODING = "utf-8"

_CRLF_BYTES = CRLF.encode("ascii")
CONTINUATION = "-"
FINAL = " "


@dataclass(frozen=True)
class Response:
    """A complete server message: final-line code and text plus data lines."""

    code: int
    message: str
    data: tuple[str, ...] | None = None

    @property
    def is_success(self) -> bool:
        return self.code // 100 == 2

    def __repr__(self) -> str:
        return (
            f"Response(code={self.code}, message={self.message!r}, "
            f"data={list(self.data) if self.data is not None else None})"
        )


def iter_lines(
    recv: Callable[[int], bytes],
    bufsize: int = RECV_BUFFER_SIZE,
    encoding: str = ENCODING,
) -> Iterator[str]:
    """Yield CRLF-delimited lines read through ``recv``.

    Args:
        recv: A ``socket.recv``-like callable returning ``b""`` at end of stream.
        bufsize: Maximum number of bytes requested per call.
        encoding: Text encoding of the stream.

    The generator stops when the stream closes. ``OSError`` raised by
    ``recv`` propagates unchanged.

    Raises:
        ProtocolError: If a line cannot be decoded.
    """
    buffer = b""
    while True:
        pointer = buffer.find(_CRLF_BYTES)
        while pointer == -1:
            chunk = recv(bufsize)
            if not chunk:
                if buffer:
                    logger.debug("Discarding %d unterminated bytes at end of stream", len(buffer))
                return
            buffer += chunk
            pointer = buffer.find(_CRLF_BYTES)
        raw, buffer = buffer[:pointer], buffer[pointer + len(_CRLF_BYTES):]
        try:
            line = raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Undecodable line from server: {raw!r}") from e
        logger.debug("Read line %r", line)
        yield line


def split_line(line: str) -> tuple[int, str, str]:
    """Split a protocol line into ``(code, separator, text)``.

    Raises:
        ProtocolError: If the line does not start with three digits and a
            valid separator.
    """
    if len(line) < 4:
        raise ProtocolError(f"Line too short: {line!r}")
    code, separator, text = line[:3], line[3], line[4:]
    if not (code.isascii() and code.isdigit()):
        raise ProtocolError(f"Non-numeric response code in line: {line!r}")
    if separator not in (CONTINUATION, FINAL):
        raise ProtocolError(f"Invalid separator {separator!r} in line: {line!r}")
    return int(code), separator, text


def iter_messages(lines: Iterable[str]) -> Iterator[Response]:
    """Assemble complete messages from a sequence of protocol lines.

    Continuation lines accumulate as data; the final line's code is
    authoritative for the whole message and its text becomes the message.
    A message without continuation lines has ``data`` set to ``None``.

    Raises:
        ProtocolError: On a malformed line, or if the stream ends in the
            middle of a multi-line message.
    """
    data: list[str] = []
    for line in lines:
        code, separator, text = split_line(line)
        if separator == CONTINUATION:
            data.append(text)
            continue
        yield Response(code=code, message=text, data=tuple(data) if data else None)
        data = []
    if data:
        raise ProtocolError(
            f"Stream ended inside a multi-line message ({len(data)} data lines)"
        )


def escape_data(text: str) -> str:
    """Dot-stuff a data payload so it cannot contain the end-of-data marker.

    A leading ``.`` is doubled and every ``CRLF.`` becomes ``CRLF..``.
    """
    if text.startswith("."):
        text = "." + text
    return text.replace(CRLF + ".", CRLF + "..")


def build_data_block(text: str) -> bytes:
    """Build the wire form of a data block: escaped payload plus terminator."""
    return (escape_data(text) + END_OF_DATA).encode(ENCODING)
