"""High-level Speech Dispatcher client.

:class:`SSIPClient` maps named operations onto SSIP commands sent through an
:class:`~speechd_ssip_mcp.transport.connection.SSIPConnection`. Each instance
owns one connection and opens it on construction.
"""

from __future__ import annotations

import getpass
import logging

from .config import load_settings
from .models.voice import SynthesisVoice
from .protocol.commands import (
    CapitalLetters,
    Priority,
    PunctuationMode,
    Scope,
    build_command,
    build_set,
    build_set_notification,
    build_set_priority,
)
from .protocol.parser import EventType, get_int_response, get_list_response
from .transport.connection import EventHandler, SSIPConnection

logger = logging.getLogger(__name__)

SYNTH_PARAMETER_RANGE = (-100, 100)
PAUSE_CONTEXT_RANGE = (0, 100)


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")


class SSIPClient:
    """Speech Dispatcher client bound to a single connection.

    Usage::

        with SSIPClient("reader") as client:
            client.set_rate(20)
            msg_id = client.say("Hello world", Priority.MESSAGE)
    """

    def __init__(
        self,
        name: str,
        component: str = "main",
        user: str | None = None,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        *,
        connection: SSIPConnection | None = None,
    ) -> None:
        if not name:
            raise ValueError("client name must not be empty")
        self._name = name
        self._component = component or "main"
        self._user = user or getpass.getuser()
        self._target: str = Scope.SELF.value

        if connection is None:
            settings = load_settings(host=host, port=port, timeout=timeout)
            connection = SSIPConnection(settings.host, settings.port, settings.timeout)
        self._connection = connection
        if not self._connection.is_connected():
            self._connection.connect()

        try:
            self._connection.send_command(build_set(Scope.SELF, "CLIENT_NAME", self.full_name))
            response = self._connection.send_command(build_command("HISTORY", "GET", "CLIENT_ID"))
        except Exception:
            self._connection.disconnect()
            raise
        self._client_id = get_int_response(response)
        logger.info("Registered as %s with client id %d", self.full_name, self._client_id)

    @property
    def connection(self) -> SSIPConnection:
        return self._connection

    @property
    def client_id(self) -> int:
        return self._client_id

    @property
    def full_name(self) -> str:
        return f"{self._user}:{self._name}:{self._component}"

    @property
    def target(self) -> str:
        return self._target

    def close(self) -> None:
        """Say goodbye to the server and drop the connection."""
        if not self._connection.is_connected():
            return
        try:
            self._connection.send_command("QUIT")
        finally:
            self._connection.disconnect()
        logger.info("Closed client %s", self.full_name)

    def __enter__(self) -> SSIPClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ─── SPEECH ──────────────────────────────────────────────────────

    def say(self, text: str, priority: Priority = Priority.TEXT) -> int:
        """Queue ``text`` for speaking and return the server's message id."""
        self._set_priority(priority)
        logger.info("Saying %d characters at priority %s", len(text), Priority(priority).value)
        self._connection.send_command("SPEAK")
        response = self._connection.send_data(text)
        message_id = get_int_response(response)
        logger.debug("Message id is %d", message_id)
        return message_id

    def char(self, character: str, priority: Priority = Priority.TEXT) -> None:
        """Speak a single character."""
        if len(character) != 1:
            raise ValueError(f"expected a single character, got {character!r}")
        self._set_priority(priority)
        self._connection.send_command("CHAR", "space" if character == " " else character)

    def key(self, key: str, priority: Priority = Priority.TEXT) -> None:
        """Speak a key name such as ``shift_a`` or ``control_F1``."""
        self._set_priority(priority)
        self._connection.send_command("KEY", key)

    def sound_icon(self, name: str, priority: Priority = Priority.TEXT) -> None:
        self._set_priority(priority)
        self._connection.send_command("SOUND_ICON", name)

    # ─── CONTROL ─────────────────────────────────────────────────────

    def stop(self) -> None:
        """Stop the message currently being spoken."""
        self._connection.send_command("STOP", self._target)

    def cancel(self) -> None:
        """Stop speaking and discard all queued messages."""
        self._connection.send_command("CANCEL", self._target)

    def pause(self) -> None:
        self._connection.send_command("PAUSE", self._target)

    def resume(self) -> None:
        self._connection.send_command("RESUME", self._target)

    def begin_block(self) -> None:
        self._connection.send_command("BLOCK", "BEGIN")

    def end_block(self) -> None:
        self._connection.send_command("BLOCK", "END")

    def set_target(self, target: Scope | int) -> None:
        """Direct control commands and settings at a scope or a client id."""
        if isinstance(target, Scope):
            self._target = target.value
            return
        if isinstance(target, bool) or not isinstance(target, int) or target <= 0:
            raise ValueError(f"client ids must be positive integers, got {target!r}")
        self._target = str(target)

    # ─── PARAMETERS ──────────────────────────────────────────────────

    def set_volume(self, volume: int) -> None:
        _check_range("volume", volume, SYNTH_PARAMETER_RANGE)
        self._set_parameter("VOLUME", volume)

    def set_rate(self, rate: int) -> None:
        _check_range("rate", rate, SYNTH_PARAMETER_RANGE)
        self._set_parameter("RATE", rate)

    def set_pitch(self, pitch: int) -> None:
        _check_range("pitch", pitch, SYNTH_PARAMETER_RANGE)
        self._set_parameter("PITCH", pitch)

    def set_output_module(self, module: str) -> None:
        self._set_parameter("OUTPUT_MODULE", module)

    def set_language(self, language: str) -> None:
        """Set the language by its ISO code, e.g. ``en`` or ``cs``."""
        self._set_parameter("LANGUAGE", language)

    def set_ssml_mode(self, enabled: bool) -> None:
        self._set_parameter("SSML_MODE", bool(enabled))

    def set_punctuation(self, mode: PunctuationMode) -> None:
        self._set_parameter("PUNCTUATION", PunctuationMode(mode))

    def set_spelling(self, enabled: bool) -> None:
        self._set_parameter("SPELLING", bool(enabled))

    def set_capital_letters(self, mode: CapitalLetters) -> None:
        self._set_parameter("CAP_LET_RECOGN", CapitalLetters(mode))

    def set_voice(self, name: str) -> None:
        """Select a symbolic voice such as ``MALE1`` or ``FEMALE2``."""
        self._set_parameter("VOICE", name)

    def set_synthesis_voice(self, name: str) -> None:
        """Select a voice by the name reported by :meth:`list_synthesis_voices`."""
        self._set_parameter("SYNTHESIS_VOICE", name)

    def set_pause_context(self, context: int) -> None:
        _check_range("pause context", context, PAUSE_CONTEXT_RANGE)
        self._set_parameter("PAUSE_CONTEXT", context)

    # ─── LISTINGS ────────────────────────────────────────────────────

    def list_output_modules(self) -> list[str]:
        response = self._connection.send_command("LIST", "OUTPUT_MODULES")
        return get_list_response(response)

    def list_voices(self) -> list[str]:
        """List the symbolic voice names."""
        return get_list_response(self._connection.send_command("LIST", "VOICES"))

    def list_synthesis_voices(self) -> list[SynthesisVoice]:
        response = self._connection.send_command("LIST", "SYNTHESIS_VOICES")
        return [SynthesisVoice.from_line(line) for line in get_list_response(response)]

    # ─── EVENTS ──────────────────────────────────────────────────────

    def set_event_handler(self, handler: EventHandler | None) -> None:
        """Register the event callback. See :meth:`SSIPConnection.set_event_handler`.

        Registering a handler does not enable notifications; call
        :meth:`set_notification` for that.
        """
        self._connection.set_event_handler(handler)

    def set_notification(self, enabled: bool, event: EventType | None = None) -> None:
        """Switch reporting of one event type, or of all of them, on or off."""
        name = event.notification_name if event is not None else "all"
        self._connection.send_command(build_set_notification(enabled, name))

    def _set_priority(self, priority: Priority) -> None:
        self._connection.send_command(build_set_priority(Priority(priority)))

    def _set_parameter(self, parameter: str, value: object) -> None:
        logger.info("Setting %s to %s for target %s", parameter, value, self._target)
        self._connection.send_command(build_set(self._target, parameter, value))
