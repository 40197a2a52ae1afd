"""Exception hierarchy for SSIP communication."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.commands import Command
    from .protocol.framing import Response


class SSIPError(Exception):
    """Base class for all SSIP client errors."""


class CommunicationError(SSIPError):
    """Raised when the connection cannot be opened or an I/O error occurs.

    The connection is always closed before this error reaches the caller.
    """


class ResponseTimeoutError(CommunicationError):
    """Raised when the server does not answer within the configured deadline."""


class ProtocolError(SSIPError):
    """Raised when malformed data is received from the server."""


class CommandError(SSIPError):
    """Raised when the server answers a command with a non-2xx code."""

    def __init__(self, command: Command, response: Response) -> None:
        super().__init__(f"{command.to_line()!r} failed: {response.code} {response.message}")
        self.command = command
        self.response = response

    @property
    def code(self) -> int:
        return self.response.code


class DataError(SSIPError):
    """Raised when the server rejects a data block with a non-2xx code."""

    def __init__(self, data: str, response: Response) -> None:
        super().__init__(f"data rejected: {response.code} {response.message}")
        self.data = data
        self.response = response

    @property
    def code(self) -> int:
        return self.response.code
