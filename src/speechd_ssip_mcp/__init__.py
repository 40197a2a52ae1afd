"""SSIP client for Speech Dispatcher, with an MCP server front end."""

from .client import SSIPClient
from .errors import (
    CommandError,
    CommunicationError,
    DataError,
    ProtocolError,
    ResponseTimeoutError,
    SSIPError,
)
from .transport.connection import SSIPConnection
