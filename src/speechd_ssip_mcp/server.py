"""MCP server entry point for Speech Dispatcher.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import SSIPClient
from .errors import CommandError, DataError
from .protocol.commands import Priority, PunctuationMode
from .protocol.parser import Event

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "speechd-ssip",
    instructions="MCP server controlling a Speech Dispatcher server over SSIP",
)

EVENT_HISTORY_SIZE = 100

# Global connection state
_client: SSIPClient | None = None
_events: deque[Event] = deque(maxlen=EVENT_HISTORY_SIZE)


def _get_client() -> SSIPClient:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.connection.is_connected():
        raise RuntimeError(
            "Not connected to Speech Dispatcher. Use the 'connect' tool first."
        )
    return _client


def _record_event(event: Event) -> None:
    # Runs on the connection's reader thread: only append, never send.
    _events.append(event)


def _parse_priority(priority: str) -> Priority | None:
    try:
        return Priority(priority.lower())
    except ValueError:
        return None


def _server_error(e: CommandError | DataError) -> dict[str, Any]:
    return {"error": e.response.message, "code": e.code}


PRIORITY_NAMES = [p.value for p in Priority]


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    name: str = "mcp",
    host: str | None = None,
    port: int | None = None,
) -> dict[str, Any]:
    """Connect to a Speech Dispatcher server.

    Host and port default to SPEECHD_HOST / SPEECHD_PORT, then
    localhost:6560. Event notifications are enabled so that speech
    progress can be followed with get_recent_events.
    """
    global _client
    if _client is not None and _client.connection.is_connected():
        return {
            "connected": True,
            "message": "Already connected",
            "client_id": _client.client_id,
        }

    _events.clear()
    _client = SSIPClient(name, component="mcp", host=host, port=port)
    _client.set_event_handler(_record_event)
    _client.set_notification(True)

    return {
        "connected": True,
        "client_id": _client.client_id,
        "host": _client.connection.host,
        "port": _client.connection.port,
    }


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the connection to Speech Dispatcher."""
    global _client
    if _client is None:
        return {"disconnected": True}
    _client.close()
    _client = None
    return {"disconnected": True}


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Report whether a connection is open and to which server."""
    if _client is None or not _client.connection.is_connected():
        return {"connected": False}
    return {
        "connected": True,
        "client_id": _client.client_id,
        "client_name": _client.full_name,
        "host": _client.connection.host,
        "port": _client.connection.port,
        "target": _client.target,
    }


# ─── SPEECH TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def speak(text: str, priority: str = "text") -> dict[str, Any]:
    """Queue text for speaking.

    Args:
        text: The text to speak. May span several lines.
        priority: important, message, text, notification or progress.
    """
    prio = _parse_priority(priority)
    if prio is None:
        return {"error": f"Unknown priority '{priority}'. Valid: {PRIORITY_NAMES}"}
    if not text.strip():
        return {"error": "Nothing to speak"}

    client = _get_client()
    try:
        message_id = client.say(text, prio)
    except (CommandError, DataError) as e:
        return _server_error(e)
    return {"queued": True, "message_id": message_id}


@mcp.tool()
def speak_char(character: str, priority: str = "text") -> dict[str, Any]:
    """Speak a single character."""
    prio = _parse_priority(priority)
    if prio is None:
        return {"error": f"Unknown priority '{priority}'. Valid: {PRIORITY_NAMES}"}
    if len(character) != 1:
        return {"error": "Exactly one character is required"}
    try:
        _get_client().char(character, prio)
    except CommandError as e:
        return _server_error(e)
    return {"spoken": character}


@mcp.tool()
def speak_key(key: str, priority: str = "text") -> dict[str, Any]:
    """Speak a key name such as 'shift_a' or 'control_F1'."""
    prio = _parse_priority(priority)
    if prio is None:
        return {"error": f"Unknown priority '{priority}'. Valid: {PRIORITY_NAMES}"}
    try:
        _get_client().key(key, prio)
    except CommandError as e:
        return _server_error(e)
    return {"spoken": key}


@mcp.tool()
def play_sound_icon(name: str, priority: str = "text") -> dict[str, Any]:
    """Play a named sound icon."""
    prio = _parse_priority(priority)
    if prio is None:
        return {"error": f"Unknown priority '{priority}'. Valid: {PRIORITY_NAMES}"}
    try:
        _get_client().sound_icon(name, prio)
    except CommandError as e:
        return _server_error(e)
    return {"played": name}


@mcp.tool()
def stop() -> dict[str, Any]:
    """Stop the message currently being spoken."""
    try:
        _get_client().stop()
    except CommandError as e:
        return _server_error(e)
    return {"stopped": True}


@mcp.tool()
def cancel() -> dict[str, Any]:
    """Stop speaking and discard every queued message."""
    try:
        _get_client().cancel()
    except CommandError as e:
        return _server_error(e)
    return {"cancelled": True}


@mcp.tool()
def pause() -> dict[str, Any]:
    """Pause speech output."""
    try:
        _get_client().pause()
    except CommandError as e:
        return _server_error(e)
    return {"paused": True}


@mcp.tool()
def resume() -> dict[str, Any]:
    """Resume paused speech output."""
    try:
        _get_client().resume()
    except CommandError as e:
        return _server_error(e)
    return {"resumed": True}


# ─── VOICE SETTINGS TOOLS ─────────────────────────────────────────────

def _set_synth_parameter(setter_name: str, value: int) -> dict[str, Any]:
    if not -100 <= value <= 100:
        return {"error": f"Value must be between -100 and 100, got {value}"}
    try:
        getattr(_get_client(), setter_name)(value)
    except CommandError as e:
        return _server_error(e)
    return {"set": True, "value": value}


@mcp.tool()
def set_volume(volume: int) -> dict[str, Any]:
    """Set speech volume.

    Args:
        volume: -100 (quietest) to 100 (loudest).
    """
    return _set_synth_parameter("set_volume", volume)


@mcp.tool()
def set_rate(rate: int) -> dict[str, Any]:
    """Set speech rate.

    Args:
        rate: -100 (slowest) to 100 (fastest).
    """
    return _set_synth_parameter("set_rate", rate)


@mcp.tool()
def set_pitch(pitch: int) -> dict[str, Any]:
    """Set voice pitch.

    Args:
        pitch: -100 (lowest) to 100 (highest).
    """
    return _set_synth_parameter("set_pitch", pitch)


@mcp.tool()
def set_voice(voice: str) -> dict[str, Any]:
    """Select a symbolic voice such as MALE1 or FEMALE2."""
    try:
        _get_client().set_voice(voice)
    except CommandError as e:
        return _server_error(e)
    return {"voice": voice}


@mcp.tool()
def set_synthesis_voice(name: str) -> dict[str, Any]:
    """Select a voice by name, as returned by list_synthesis_voices."""
    try:
        _get_client().set_synthesis_voice(name)
    except CommandError as e:
        return _server_error(e)
    return {"synthesis_voice": name}


@mcp.tool()
def set_output_module(module: str) -> dict[str, Any]:
    """Select the speech synthesizer backend (e.g. espeak-ng, festival)."""
    try:
        _get_client().set_output_module(module)
    except CommandError as e:
        return _server_error(e)
    return {"output_module": module}


@mcp.tool()
def set_language(language: str) -> dict[str, Any]:
    """Set the speech language by ISO code (e.g. 'en', 'de', 'cs')."""
    try:
        _get_client().set_language(language)
    except CommandError as e:
        return _server_error(e)
    return {"language": language}


@mcp.tool()
def set_punctuation(mode: str) -> dict[str, Any]:
    """Choose which punctuation characters are read: all, some or none."""
    try:
        punctuation = PunctuationMode(mode.lower())
    except ValueError:
        return {
            "error": f"Unknown mode '{mode}'. Valid: {[m.value for m in PunctuationMode]}"
        }
    try:
        _get_client().set_punctuation(punctuation)
    except CommandError as e:
        return _server_error(e)
    return {"punctuation": punctuation.value}


# ─── LISTING TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def list_output_modules() -> dict[str, Any]:
    """List the speech synthesizer backends available on the server."""
    modules = _get_client().list_output_modules()
    return {"output_modules": modules, "count": len(modules)}


@mcp.tool()
def list_voices() -> dict[str, Any]:
    """List the symbolic voice names."""
    voices = _get_client().list_voices()
    return {"voices": voices, "count": len(voices)}


@mcp.tool()
def list_synthesis_voices(language: str | None = None) -> dict[str, Any]:
    """List the voices of the current output module.

    Args:
        language: Only return voices whose language starts with this code.
    """
    voices = _get_client().list_synthesis_voices()
    if language:
        voices = [v for v in voices if v.language.lower().startswith(language.lower())]
    return {"voices": [v.to_dict() for v in voices], "count": len(voices)}


@mcp.tool()
def get_recent_events(limit: int = 20) -> dict[str, Any]:
    """Return the most recent speech events (begin, end, cancel, ...).

    Args:
        limit: Maximum number of events, newest last.
    """
    if limit <= 0:
        return {"error": "limit must be positive"}
    events = list(_events)[-limit:]
    return {"events": [e.to_dict() for e in events], "count": len(events)}


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("speechd://voices")
def voices_resource() -> str:
    """Synthesis voices of the current output module, one per line."""
    voices = _get_client().list_synthesis_voices()
    return "\n".join(str(v) for v in voices)


# ─── PROMPTS ──────────────────────────────────────────────────────────

@mcp.prompt()
def read_aloud(text: str) -> str:
    """Read a document aloud in manageable pieces."""
    return f"""Read the following text aloud using the speak tool.

Split it into paragraphs and speak each with priority "text".
Check get_recent_events for END events before sending very long passages,
and use pause, resume or cancel if asked to.

Text:
{text}"""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
