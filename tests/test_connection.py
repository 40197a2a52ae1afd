"""Tests for the SSIP connection engine against a scripted local server."""

from __future__ import annotations

import queue
import socket
import threading
from unittest.mock import MagicMock

import pytest

from speechd_ssip_mcp.errors import (
    CommandError,
    CommunicationError,
    DataError,
    ProtocolError,
    ResponseTimeoutError,
)
from speechd_ssip_mcp.protocol.commands import build_command
from speechd_ssip_mcp.protocol.framing import Response
from speechd_ssip_mcp.protocol.parser import Event, EventType
from speechd_ssip_mcp.transport.connection import ResponseSlot, SSIPConnection

WAIT = 2.0


def _event_queue(connection: SSIPConnection) -> queue.Queue:
    events: queue.Queue = queue.Queue()
    connection.set_event_handler(events.put)
    return events


class _BrokenWriteSocket:
    """Socket wrapper whose writes fail while shutdown and close still work."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def sendall(self, data: bytes) -> None:
        raise OSError("broken pipe")

    def __getattr__(self, name):
        return getattr(self._sock, name)


# ─── RESPONSE SLOT ───────────────────────────────────────────────────


def test_slot_value_put_before_take_is_observed():
    slot = ResponseSlot()
    slot.put(Response(200, "OK"))
    assert slot.take(timeout=WAIT) == Response(200, "OK")


def test_slot_take_clears_value():
    slot = ResponseSlot()
    slot.put(Response(200, "OK"))
    slot.take(timeout=WAIT)
    with pytest.raises(ResponseTimeoutError):
        slot.take(timeout=0.05)


def test_slot_wakes_waiting_taker():
    slot = ResponseSlot()
    timer = threading.Timer(0.05, slot.put, args=(Response(208, "OK"),))
    timer.start()
    assert slot.take(timeout=WAIT).code == 208


def test_slot_close_wakes_taker_with_error():
    slot = ResponseSlot()
    threading.Timer(0.05, slot.close, args=("gone",)).start()
    with pytest.raises(CommunicationError, match="gone"):
        slot.take(timeout=WAIT)


def test_slot_timeout_is_communication_error():
    with pytest.raises(CommunicationError):
        ResponseSlot().take(timeout=0.01)


# ─── LIFECYCLE ───────────────────────────────────────────────────────


def test_connect_and_disconnect(speechd):
    conn = SSIPConnection("127.0.0.1", speechd.port)
    assert not conn.is_connected()
    conn.connect()
    speechd.wait_connected()
    assert conn.is_connected()
    assert conn.connected
    conn.disconnect()
    assert not conn.is_connected()


def test_connect_disables_nagle(connection):
    sock = connection._socket
    assert sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) != 0


def test_connect_failure_raises_communication_error(free_port):
    conn = SSIPConnection("127.0.0.1", free_port)
    with pytest.raises(CommunicationError) as excinfo:
        conn.connect()
    assert isinstance(excinfo.value.__cause__, OSError)
    assert not conn.is_connected()


def test_connection_is_single_use(speechd):
    conn = SSIPConnection("127.0.0.1", speechd.port)
    conn.connect()
    speechd.wait_connected()
    conn.disconnect()
    with pytest.raises(CommunicationError):
        conn.connect()


def test_disconnect_is_idempotent(connection):
    connection.disconnect()
    connection.disconnect()
    assert not connection.is_connected()


def test_disconnect_before_connect_is_noop():
    SSIPConnection("127.0.0.1", 1).disconnect()


def test_context_manager(speechd):
    with SSIPConnection("127.0.0.1", speechd.port) as conn:
        speechd.wait_connected()
        assert conn.is_connected()
    assert not conn.is_connected()


def test_reader_thread_stops_on_disconnect(connection):
    reader = connection._thread
    connection.disconnect()
    assert not reader.is_alive()


# ─── COMMANDS ────────────────────────────────────────────────────────


def test_send_command_returns_response(connection, speechd, background):
    future = background(connection.send_command, "SET", "self", "CLIENT_NAME", "a:b:c")
    assert speechd.read_line() == "SET self CLIENT_NAME a:b:c"
    speechd.send("208 OK CLIENT NAME SET")

    response = future.result(timeout=WAIT)
    assert response == Response(208, "OK CLIENT NAME SET")
    assert response.data is None


def test_send_command_accepts_command_instance(connection, speechd, background):
    future = background(connection.send_command, build_command("STOP", "self"))
    assert speechd.read_line() == "STOP self"
    speechd.send("210 OK STOPPED")
    assert future.result(timeout=WAIT).code == 210


def test_command_instance_with_extra_args_rejected(connection):
    with pytest.raises(TypeError):
        connection.send_command(build_command("STOP"), "self")


def test_multi_line_response(connection, speechd, background):
    future = background(connection.send_command, "LIST", "VOICES")
    assert speechd.read_line() == "LIST VOICES"
    speechd.send("249-MALE1", "249-FEMALE1", "249 OK VOICE LIST SENT")

    response = future.result(timeout=WAIT)
    assert response.data == ("MALE1", "FEMALE1")
    assert response.message == "OK VOICE LIST SENT"


def test_command_error_keeps_connection_open(connection, speechd, background):
    future = background(connection.send_command, "SET", "self", "RATE", "fast")
    speechd.read_line()
    speechd.send("411 ERR PARAMETER NOT INTEGER")

    with pytest.raises(CommandError) as excinfo:
        future.result(timeout=WAIT)
    assert excinfo.value.code == 411
    assert excinfo.value.response.code == 411
    assert excinfo.value.command == build_command("SET", "self", "RATE", "fast")
    assert connection.is_connected()

    future = background(connection.send_command, "SET", "self", "RATE", "10")
    speechd.read_line()
    speechd.send("203 OK RATE SET")
    assert future.result(timeout=WAIT).code == 203


def test_commands_are_serialized(connection, speechd, background):
    """A second command is not written until the first has its response."""
    first = background(connection.send_command, "STOP", "self")
    assert speechd.read_line() == "STOP self"

    second = background(connection.send_command, "CANCEL", "self")
    speechd.expect_silence()

    speechd.send("210 OK STOPPED")
    assert first.result(timeout=WAIT).code == 210
    assert speechd.read_line() == "CANCEL self"
    speechd.send("213 OK CANCELED")
    assert second.result(timeout=WAIT).code == 213


def test_responses_match_commands_despite_events(connection, speechd, background):
    """Each command gets its own response, never an event or another's reply."""
    events = _event_queue(connection)

    for index in range(5):
        future = background(connection.send_command, "HISTORY", "GET", "ITEM", index)
        assert speechd.read_line() == f"HISTORY GET ITEM {index}"
        speechd.send(
            "701-" + str(index),
            "701-9",
            "701 BEGIN",
            f"240-item{index}",
            f"240 OK {index}",
            "702-" + str(index),
            "702-9",
            "702 END",
        )
        response = future.result(timeout=WAIT)
        assert response.data == (f"item{index}",)
        assert response.message == f"OK {index}"

    received = [events.get(timeout=WAIT) for _ in range(10)]
    assert [(e.type, e.message_id) for e in received] == [
        (t, i) for i in range(5) for t in (EventType.BEGIN, EventType.END)
    ]


# ─── DATA ────────────────────────────────────────────────────────────


def test_send_data_escapes_and_terminates(connection, speechd, background):
    future = background(connection.send_data, ".hello\r\n.\r\nworld")
    assert speechd.read_data_block() == b"..hello\r\n..\r\nworld\r\n.\r\n"
    speechd.send("225-12", "225 OK MESSAGE QUEUED")

    response = future.result(timeout=WAIT)
    assert response.data == ("12",)


def test_speak_sequence(connection, speechd, background):
    future = background(connection.send_command, "SPEAK")
    assert speechd.read_line() == "SPEAK"
    speechd.send("230 OK RECEIVING DATA")
    assert future.result(timeout=WAIT).code == 230

    future = background(connection.send_data, "Hello")
    assert speechd.read_data_block() == b"Hello\r\n.\r\n"
    speechd.send("225-1", "225 OK MESSAGE QUEUED")
    assert future.result(timeout=WAIT).data == ("1",)


def test_data_error_carries_unescaped_text(connection, speechd, background):
    future = background(connection.send_data, ".text")
    speechd.read_data_block()
    speechd.send("301 ERR NOT IN DATA MODE")

    with pytest.raises(DataError) as excinfo:
        future.result(timeout=WAIT)
    assert excinfo.value.data == ".text"
    assert excinfo.value.code == 301
    assert connection.is_connected()


# ─── EVENTS ──────────────────────────────────────────────────────────


def test_events_delivered_while_idle(connection, speechd):
    events = _event_queue(connection)
    speechd.send("703-5", "703-2", "703 CANCELED")
    assert events.get(timeout=WAIT) == Event(EventType.CANCEL, 5, 2)


def test_index_mark_event_delivered(connection, speechd):
    events = _event_queue(connection)
    speechd.send("700-5", "700-2", "700-mark1", "700 INDEX MARK")
    event = events.get(timeout=WAIT)
    assert event.type is EventType.INDEX_MARK
    assert event.index_mark == "mark1"


def test_handler_runs_on_reader_thread(connection, speechd):
    threads: queue.Queue = queue.Queue()
    connection.set_event_handler(lambda event: threads.put(threading.current_thread()))
    speechd.send("701-1", "701-2", "701 BEGIN")
    thread = threads.get(timeout=WAIT)
    assert thread is not threading.main_thread()
    assert thread.name.startswith("SSIP reader")


def test_handler_errors_do_not_stop_reader(connection, speechd, background):
    calls: queue.Queue = queue.Queue()

    def handler(event):
        calls.put(event)
        raise RuntimeError("broken handler")

    connection.set_event_handler(handler)
    speechd.send("701-1", "701-2", "701 BEGIN")
    assert calls.get(timeout=WAIT).type is EventType.BEGIN

    future = background(connection.send_command, "PAUSE", "self")
    speechd.read_line()
    speechd.send("211 OK PAUSED")
    assert future.result(timeout=WAIT).code == 211
    assert connection.is_connected()


def test_events_without_handler_are_discarded(connection, speechd, background):
    assert connection.get_event_handler() is None
    future = background(connection.send_command, "RESUME", "self")
    speechd.read_line()
    speechd.send("705-1", "705-2", "705 RESUMED", "212 OK RESUMED")
    assert future.result(timeout=WAIT).code == 212


def test_malformed_event_is_skipped(connection, speechd):
    events = _event_queue(connection)
    speechd.send("709-1", "709-2", "709 FUTURE EVENT", "702-1", "702-2", "702 END")
    assert events.get(timeout=WAIT).type is EventType.END
    assert connection.is_connected()


def test_disconnect_from_event_handler_stops_reader(connection, speechd):
    reader = connection._thread
    handled = threading.Event()

    def handler(event):
        connection.disconnect()
        handled.set()

    connection.set_event_handler(handler)
    speechd.send("702-1", "702-2", "702 END")
    assert handled.wait(WAIT)
    reader.join(WAIT)
    assert not reader.is_alive()
    assert not connection.is_connected()


def test_event_handler_is_replaceable(connection):
    def first(event):
        pass

    connection.set_event_handler(first)
    assert connection.get_event_handler() is first
    connection.event_handler = None
    assert connection.get_event_handler() is None


# ─── FAILURES ────────────────────────────────────────────────────────


def test_server_disconnect_during_command(connection, speechd, background):
    future = background(connection.send_command, "SPEAK")
    speechd.read_line()
    speechd.drop()

    with pytest.raises(CommunicationError):
        future.result(timeout=WAIT)
    assert not connection.is_connected()
    connection.disconnect()


def test_local_disconnect_unblocks_waiter(connection, speechd, background):
    future = background(connection.send_command, "SPEAK")
    speechd.read_line()
    connection.disconnect()

    with pytest.raises(CommunicationError):
        future.result(timeout=WAIT)


def test_malformed_line_disconnects(connection, speechd, background):
    future = background(connection.send_command, "SPEAK")
    speechd.read_line()
    speechd.send("this is not ssip")

    with pytest.raises(CommunicationError) as excinfo:
        future.result(timeout=WAIT)
    assert isinstance(excinfo.value.__cause__, ProtocolError)
    assert not connection.is_connected()


def test_send_after_disconnect_fails_without_io(connection, speechd):
    connection.disconnect()
    with pytest.raises(CommunicationError):
        connection.send_command("SPEAK")
    with pytest.raises(CommunicationError):
        connection.send_data("text")
    with pytest.raises(EOFError):
        speechd.read_line()


def test_response_deadline(speechd):
    conn = SSIPConnection("127.0.0.1", speechd.port, timeout=0.2)
    conn.connect()
    speechd.wait_connected()
    try:
        with pytest.raises(ResponseTimeoutError):
            conn.send_command("SPEAK")
        assert not conn.is_connected()
    finally:
        conn.disconnect()


def test_write_failure_disconnects(connection):
    connection._socket = _BrokenWriteSocket(connection._socket)
    reader = connection._thread

    with pytest.raises(CommunicationError) as excinfo:
        connection.send_command("SPEAK")
    assert isinstance(excinfo.value.__cause__, OSError)
    assert str(excinfo.value.__cause__) == "broken pipe"
    assert not connection.is_connected()
    assert not reader.is_alive()

    connection.disconnect()
    assert not connection.is_connected()


def test_socket_closed_when_setup_fails(monkeypatch):
    sock = MagicMock()
    sock.setsockopt.side_effect = OSError("option not supported")
    monkeypatch.setattr(socket, "create_connection", lambda address: sock)

    conn = SSIPConnection("127.0.0.1", 6560)
    with pytest.raises(CommunicationError):
        conn.connect()
    sock.close.assert_called_once()
    assert not conn.is_connected()


def test_disconnect_does_not_wait_for_pending_connect(monkeypatch, background):
    entered = threading.Event()
    release = threading.Event()

    def slow_connect(address):
        entered.set()
        release.wait(WAIT)
        raise OSError("connection refused")

    monkeypatch.setattr(socket, "create_connection", slow_connect)
    conn = SSIPConnection("127.0.0.1", 6560)
    pending = background(conn.connect)
    assert entered.wait(WAIT)
    try:
        background(conn.disconnect).result(timeout=WAIT / 2)
    finally:
        release.set()
    with pytest.raises(CommunicationError):
        pending.result(timeout=WAIT)
