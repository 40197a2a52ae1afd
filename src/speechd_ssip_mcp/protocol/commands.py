"""Command value type, SSIP vocabulary constants and command builders.

A command is a verb followed by space-separated arguments. Commands carry
no identifier: the server answers them strictly in order, one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Scope(str, Enum):
    """Targets for commands that apply to one or more connections."""

    SELF = "self"
    ALL = "all"


class Priority(str, Enum):
    """Message priorities understood by the server."""

    IMPORTANT = "important"
    MESSAGE = "message"
    TEXT = "text"
    NOTIFICATION = "notification"
    PROGRESS = "progress"


class PunctuationMode(str, Enum):
    ALL = "all"
    NONE = "none"
    SOME = "some"


class CapitalLetters(str, Enum):
    """How capital letters are signalled when spelling."""

    NONE = "none"
    SPELL = "spell"
    ICON = "icon"


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass(frozen=True)
class Command:
    """An SSIP command: a verb and its ordered arguments."""

    verb: str
    args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.verb or any(c.isspace() for c in self.verb):
            raise ValueError(f"Invalid command verb: {self.verb!r}")
        args = tuple(_stringify(a) for a in self.args)
        for part in (self.verb, *args):
            if "\r" in part or "\n" in part:
                raise ValueError(f"Line breaks are not allowed in commands: {part!r}")
        object.__setattr__(self, "args", args)

    def to_line(self) -> str:
        """Serialize to ``VERB arg1 arg2 ...`` without the line terminator."""
        return " ".join((self.verb, *self.args))

    def __str__(self) -> str:
        return self.to_line()


def build_command(verb: str, *args: object) -> Command:
    """Build a command from a verb and arguments of any printable type.

    Booleans are sent as ``on``/``off`` and enum members as their value.
    """
    return Command(verb, tuple(args))


def build_set(target: Scope | int | str, parameter: str, value: object) -> Command:
    """Build a ``SET <target> <parameter> <value>`` command."""
    return build_command("SET", target, parameter, value)


def build_set_priority(priority: Priority) -> Command:
    """Priorities always apply to the issuing connection."""
    return build_set(Scope.SELF, "PRIORITY", priority)


def build_set_notification(enabled: bool, event: str = "all") -> Command:
    """Build a command switching event notifications on or off.

    Args:
        enabled: Whether the events should be reported.
        event: Notification type name (``begin``, ``end``, ``index_marks`` ...)
            or ``all``.
    """
    return build_command("SET", Scope.SELF, "NOTIFICATION", event, enabled)
