"""Message classification and event parsing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from ..errors import ProtocolError
from .framing import Response


class EventType(IntEnum):
    """Asynchronous event kinds, valued by their wire code."""

    INDEX_MARK = 700
    BEGIN = 701
    END = 702
    CANCEL = 703
    PAUSE = 704
    RESUME = 705

    @property
    def notification_name(self) -> str:
        """Name used with ``SET self NOTIFICATION`` to enable this event."""
        if self is EventType.INDEX_MARK:
            return "index_marks"
        return self.name.lower()


@dataclass(frozen=True)
class Event:
    """A parsed event notification."""

    type: EventType
    message_id: int
    client_id: int
    index_mark: str | None = None

    def to_dict(self) -> dict:
        result = {
            "type": self.type.name,
            "message_id": self.message_id,
            "client_id": self.client_id,
        }
        if self.index_mark is not None:
            result["index_mark"] = self.index_mark
        return result


def is_event(code: int) -> bool:
    """Return True if ``code`` denotes an event rather than a response."""
    return code // 100 == 7


def parse_event(response: Response) -> Event:
    """Build an Event from a 7xx message.

    Data line 1 is the message id, line 2 the client id and, for index
    marks only, line 3 the mark name.

    Raises:
        ProtocolError: If the code is not a known event or the data lines
            are missing or not numeric.
    """
    try:
        event_type = EventType(response.code)
    except ValueError as e:
        raise ProtocolError(f"Unknown event code {response.code}") from e

    data = response.data or ()
    expected = 3 if event_type is EventType.INDEX_MARK else 2
    if len(data) < expected:
        raise ProtocolError(
            f"{event_type.name} event needs {expected} data lines, got {len(data)}"
        )

    try:
        message_id = int(data[0])
        client_id = int(data[1])
    except ValueError as e:
        raise ProtocolError(f"Non-numeric ids in {event_type.name} event: {data!r}") from e

    index_mark = data[2] if event_type is EventType.INDEX_MARK else None
    return Event(
        type=event_type,
        message_id=message_id,
        client_id=client_id,
        index_mark=index_mark,
    )


def get_int_response(response: Response) -> int:
    """Extract the integer carried in the first data line of a response.

    Used for replies such as the message id after a data block or the
    client id from ``HISTORY GET CLIENT_ID``.
    """
    if not response.data:
        raise ProtocolError(f"Expected a data line in response {response.code}")
    try:
        return int(response.data[0])
    except ValueError as e:
        raise ProtocolError(f"Expected an integer, got {response.data[0]!r}") from e


def get_list_response(response: Response) -> list[str]:
    """Return the data lines of a response, or an empty list if there are none."""
    return list(response.data) if response.data is not None else []
