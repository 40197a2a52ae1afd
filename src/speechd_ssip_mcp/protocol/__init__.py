"""Protocol layer: line framing, data escaping, commands and event parsing."""

from .framing import Response, build_data_block, escape_data, iter_lines, iter_messages
from .commands import Command, build_command
from .parser import Event, EventType, is_event, parse_event
