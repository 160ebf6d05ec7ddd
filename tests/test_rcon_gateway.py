import asyncio
import socket
import struct
import time
from pathlib import Path

import pytest

from naupanel.core.errors import RconNotConfigured, RconUnreachable
from naupanel.services import rcon
from naupanel.services.server_registry import RconSettings, ServerDefinition


def _packet(request_id: int, packet_type: int, payload: str) -> bytes:
    body = struct.pack("<ii", request_id, packet_type) + payload.encode("utf-8") + b"\x00\x00"
    return struct.pack("<i", len(body)) + body


class _FakeSocket:
    """Replays canned RCON packets (or raises queued exceptions); records what the client sent."""

    instances: list = []

    def __init__(self, replies: list):
        self._segments = list(replies)
        self.sent: list[bytes] = []
        self.closed = False
        _FakeSocket.instances.append(self)

    def settimeout(self, timeout):
        pass

    def sendall(self, data: bytes):
        if self.closed:
            raise OSError("socket closed")
        self.sent.append(data)

    def recv(self, size: int) -> bytes:
        if not self._segments:
            return b""
        head = self._segments[0]
        if isinstance(head, BaseException):
            self._segments.pop(0)
            raise head
        chunk, rest = head[:size], head[size:]
        if rest:
            self._segments[0] = rest
        else:
            self._segments.pop(0)
        return chunk

    def close(self):
        self.closed = True


def _install_socket(monkeypatch, replies: list) -> None:
    _FakeSocket.instances = []
    monkeypatch.setattr(rcon.socket, "create_connection", lambda address, timeout=None: _FakeSocket(replies))


def _server(password: str = "secret") -> ServerDefinition:
    return ServerDefinition(
        id="alpha", name="Alpha", path=Path("/srv/alpha"), port=25565,
        rcon=RconSettings(host="127.0.0.1", port=25575, password=password),
    )


def test_session_runs_commands_and_closes(monkeypatch):
    _install_socket(monkeypatch, [
        _packet(1, 2, ""),
        _packet(2, 0, "There are 1 of a max of 20 players online: §aSteve"),
        _packet(3, 0, "TPS from last 1m, 5m, 15m: 20.0, 20.0, 20.0"),
    ])

    results = asyncio.run(rcon.open_stats_session(_server(), ["list", "tps"], 1.0))

    assert [r.ok for r in results] == [True, True]
    assert results[0].response == "There are 1 of a max of 20 players online: Steve"
    [sock] = _FakeSocket.instances
    assert sock.closed is True
    assert len(sock.sent) == 3


def test_failed_command_is_reported_per_result(monkeypatch):
    # Connection drops after the first response
    _install_socket(monkeypatch, [
        _packet(1, 2, ""),
        _packet(2, 0, "There are 0 of a max of 20 players online:"),
    ])

    list_result, tps_result = asyncio.run(rcon.open_stats_session(_server(), ["list", "tps"], 1.0))

    assert list_result.ok
    assert not tps_result.ok
    assert _FakeSocket.instances[0].closed is True


def test_auth_failure_is_unreachable_and_closes(monkeypatch):
    _install_socket(monkeypatch, [_packet(-1, 2, "")])

    with pytest.raises(RconUnreachable):
        asyncio.run(rcon.open_stats_session(_server(), ["list"], 1.0))

    assert _FakeSocket.instances[0].closed is True


def test_connection_refused_is_unreachable(monkeypatch):
    def _refuse(address, timeout=None):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(rcon.socket, "create_connection", _refuse)

    with pytest.raises(RconUnreachable):
        asyncio.run(rcon.send_command(_server(), "list"))


def test_probe_reports_liveness(monkeypatch):
    _install_socket(monkeypatch, [_packet(1, 2, "")])
    assert asyncio.run(rcon.probe(_server())) is True
    assert _FakeSocket.instances[0].closed is True

    _install_socket(monkeypatch, [_packet(-1, 2, "")])
    assert asyncio.run(rcon.probe(_server())) is False


def test_send_command_returns_response(monkeypatch):
    _install_socket(monkeypatch, [_packet(1, 2, ""), _packet(2, 0, "Set the time to 1000")])

    assert asyncio.run(rcon.send_command(_server(), "time set day")) == "Set the time to 1000"
    sent = _FakeSocket.instances[0].sent[1]
    assert sent[12:-2] == b"time set day"


def test_oversized_packet_is_rejected(monkeypatch):
    _install_socket(monkeypatch, [struct.pack("<i", 10_000)])

    assert asyncio.run(rcon.probe(_server())) is False


def test_missing_password_is_not_configured():
    with pytest.raises(RconNotConfigured):
        asyncio.run(rcon.probe(_server(password="")))
    with pytest.raises(RconNotConfigured):
        asyncio.run(rcon.send_command(_server(password=""), "list"))


def test_timed_out_reply_is_not_attributed_to_next_command(monkeypatch):
    # The list reply arrives only after the read timed out
    _install_socket(monkeypatch, [
        _packet(1, 2, ""),
        socket.timeout("timed out"),
        _packet(2, 0, "There are 1 of a max of 20 players online: Alex2"),
        _packet(3, 0, "TPS from last 1m, 5m, 15m: 20.0, 20.0, 20.0"),
    ])

    list_result, tps_result = asyncio.run(rcon.open_stats_session(_server(), ["list", "tps"], 0.1))

    assert not list_result.ok
    assert not tps_result.ok
    assert tps_result.response is None
    assert len(_FakeSocket.instances[0].sent) == 2
    assert _FakeSocket.instances[0].closed is True


def test_replies_for_other_requests_are_discarded(monkeypatch):
    _install_socket(monkeypatch, [
        _packet(1, 2, ""),
        _packet(7, 0, "There are 0 of a max of 20 players online:"),
        _packet(2, 0, "Set the time to 1000"),
    ])

    assert asyncio.run(rcon.send_command(_server(), "time set day")) == "Set the time to 1000"


def test_full_size_payload_is_accepted(monkeypatch):
    payload = "x" * rcon.RCONClient.MAX_PAYLOAD_SIZE
    _install_socket(monkeypatch, [_packet(1, 2, ""), _packet(2, 0, payload)])

    assert asyncio.run(rcon.send_command(_server(), "list")) == payload


def test_session_over_time_budget_is_unreachable(monkeypatch):
    def _slow_session(settings, commands, timeout):
        time.sleep(0.5)
        return []

    monkeypatch.setattr(rcon, "_run_session_sync", _slow_session)

    with pytest.raises(RconUnreachable):
        asyncio.run(rcon.open_stats_session(_server(), ["list", "tps"], 0.05))


def test_probe_timeout_counts_as_offline(monkeypatch):
    def _slow_probe(settings, timeout):
        time.sleep(0.5)
        return True

    monkeypatch.setattr(rcon, "_probe_sync", _slow_probe)

    assert asyncio.run(rcon.probe(_server(), timeout=0.05)) is False
