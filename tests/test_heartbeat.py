"""Tests for the socket heartbeat server, wire format and liveness probe."""

import asyncio
import contextlib
import logging
import socket
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from core.config import HeartbeatSettings
from core.health.channel import SocketHeartbeatChannel, query_socket
from core.health.clock import HeartbeatClock
from core.health.errors import (
    HeartbeatAcceptError,
    HeartbeatQueryError,
    HeartbeatStartupError,
    MalformedReplyError,
)
from core.health.probe import HEALTHY, UNHEALTHY, HeartbeatProbe, run_health_check
from core.health.protocol import (
    PING,
    REPLY_SIZE,
    ReadOutcome,
    decode_timestamp,
    encode_timestamp,
)
from core.health.server import HeartbeatServer

pytestmark = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"), reason="Unix sockets unavailable"
)

THRESHOLD = 180.0


class MutableClock:
    def __init__(self, start: float):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def socket_path():
    # short prefix: AF_UNIX paths are limited to ~100 bytes
    with tempfile.TemporaryDirectory(prefix="hb", dir="/tmp") as tmp:
        yield Path(tmp) / "wisdom" / "collector.sock"


@pytest_asyncio.fixture
async def running_server(socket_path):
    clock = MutableClock(1_700_000_000.0)
    heartbeat = HeartbeatClock(clock=clock)
    server = HeartbeatServer(heartbeat, socket_path, read_timeout=0.5)
    server.bind()
    task = asyncio.create_task(server.serve_forever())
    try:
        yield heartbeat, clock, server
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        server.close()


def test_clock_starts_at_epoch_and_records_updates():
    clock = MutableClock(42.0)
    heartbeat = HeartbeatClock(clock=clock)

    assert heartbeat.snapshot() == 0.0

    heartbeat.update()
    clock.advance(10)
    assert heartbeat.snapshot() == 42.0

    heartbeat.update()
    assert heartbeat.snapshot() == 52.0


def test_timestamp_encoding_is_fixed_width_little_endian():
    encoded = encode_timestamp(1_700_000_000.9)

    assert len(encoded) == REPLY_SIZE
    assert encoded == (1_700_000_000).to_bytes(8, "little")
    assert decode_timestamp(encoded) == 1_700_000_000
    assert encode_timestamp(-5) == bytes(8)


def test_decode_rejects_short_reply():
    with pytest.raises(MalformedReplyError):
        decode_timestamp(b"\x00\x01\x02")


def test_bind_replaces_stale_socket_file(socket_path):
    socket_path.parent.mkdir(parents=True)
    socket_path.write_text("left over from a previous run")

    server = HeartbeatServer(HeartbeatClock(), socket_path)
    server.bind()
    try:
        assert server.bound
        assert socket_path.is_socket()
    finally:
        server.close()

    assert not socket_path.exists()


def test_bind_failure_is_a_startup_error(socket_path):
    blocker = socket_path.parent
    blocker.write_text("not a directory")
    server = HeartbeatServer(HeartbeatClock(), blocker / "collector.sock")

    with pytest.raises(HeartbeatStartupError):
        server.bind()
    assert not server.bound


@pytest.mark.asyncio
async def test_connection_closed_before_ping_is_not_an_error(caplog):
    server = HeartbeatServer(HeartbeatClock(), "/unused")
    conn, peer = socket.socketpair()
    conn.setblocking(False)
    peer.close()

    with caplog.at_level(logging.DEBUG), conn:
        outcome = await server.handle_connection(conn)

    assert outcome is ReadOutcome.CLOSED
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


@pytest.mark.asyncio
async def test_silent_client_times_out_as_not_ready():
    server = HeartbeatServer(HeartbeatClock(), "/unused", read_timeout=0.05)
    conn, peer = socket.socketpair()
    conn.setblocking(False)

    with conn, peer:
        outcome = await server.handle_connection(conn)

    assert outcome is ReadOutcome.NOT_READY


@pytest.mark.asyncio
async def test_ping_is_answered_with_clock_snapshot():
    clock = MutableClock(1_234_567.0)
    heartbeat = HeartbeatClock(clock=clock)
    heartbeat.update()
    server = HeartbeatServer(heartbeat, "/unused")
    conn, peer = socket.socketpair()
    conn.setblocking(False)

    with conn, peer:
        peer.sendall(PING)
        outcome = await server.handle_connection(conn)
        reply = peer.recv(REPLY_SIZE)

    assert outcome is ReadOutcome.PING
    assert decode_timestamp(reply) == 1_234_567


@pytest.mark.asyncio
async def test_read_error_is_logged_and_survived(caplog):
    class ResettingSocket:
        def __init__(self, real):
            self.real = real

        def fileno(self):
            return self.real.fileno()

        def recv(self, size):
            raise ConnectionResetError("connection reset by peer")

    server = HeartbeatServer(HeartbeatClock(), "/unused")
    conn, peer = socket.socketpair()

    with conn, peer:
        peer.sendall(PING)
        with caplog.at_level(logging.WARNING):
            outcome = await server.handle_connection(ResettingSocket(conn))

    assert outcome is None
    assert "connection reset by peer" in caplog.text


@pytest.mark.asyncio
async def test_accept_failure_is_fatal(socket_path):
    server = HeartbeatServer(HeartbeatClock(), socket_path)
    server.bind()
    loop = asyncio.get_running_loop()

    try:
        with patch.object(
            loop, "sock_accept", AsyncMock(side_effect=OSError("too many open files"))
        ):
            with pytest.raises(HeartbeatAcceptError):
                await server.serve_forever()
    finally:
        server.close()


@pytest.mark.asyncio
async def test_probe_without_server_is_unhealthy(socket_path):
    channel = SocketHeartbeatChannel(HeartbeatClock(), socket_path)

    with pytest.raises(HeartbeatQueryError):
        await query_socket(socket_path, timeout=1.0)
    assert await HeartbeatProbe(channel, THRESHOLD).check() is False


@pytest.mark.asyncio
async def test_probe_lifecycle_against_running_server(running_server, socket_path):
    heartbeat, clock, _ = running_server
    probe = HeartbeatProbe(
        SocketHeartbeatChannel(heartbeat, socket_path), THRESHOLD, clock=clock
    )

    # unhealthy until the first cycle completes
    assert await probe.check() is False

    heartbeat.update()
    assert await probe.check() is True

    clock.advance(THRESHOLD / 2)
    assert await probe.check() is True

    # the boundary belongs to the unhealthy side
    clock.advance(THRESHOLD / 2)
    assert await probe.check() is False

    heartbeat.update()
    assert await probe.check() is True


@pytest.mark.asyncio
async def test_repeated_updates_keep_probe_healthy(running_server, socket_path):
    heartbeat, clock, _ = running_server
    probe = HeartbeatProbe(
        SocketHeartbeatChannel(heartbeat, socket_path), THRESHOLD, clock=clock
    )

    heartbeat.update()
    for _ in range(5):
        clock.advance(THRESHOLD - 1)
        assert await probe.check() is True
        heartbeat.update()


@pytest.mark.asyncio
async def test_server_keeps_serving_after_client_hangs_up(running_server, socket_path):
    heartbeat, clock, _ = running_server
    heartbeat.update()

    _, writer = await asyncio.open_unix_connection(str(socket_path))
    writer.close()
    await writer.wait_closed()

    assert await query_socket(socket_path, timeout=2.0) == int(clock())


@pytest.mark.asyncio
async def test_future_heartbeat_is_healthy(running_server, socket_path):
    heartbeat, clock, _ = running_server
    heartbeat.update()
    probe_clock = MutableClock(clock() - 3600)

    probe = HeartbeatProbe(
        SocketHeartbeatChannel(heartbeat, socket_path), THRESHOLD, clock=probe_clock
    )

    assert await probe.check() is True


@pytest.mark.asyncio
async def test_truncated_reply_is_unhealthy(socket_path):
    async def short_reply(reader, writer):
        await reader.readexactly(1)
        writer.write(b"\x01\x02\x03")
        await writer.drain()
        writer.close()

    socket_path.parent.mkdir(parents=True)
    server = await asyncio.start_unix_server(short_reply, path=str(socket_path))
    try:
        with pytest.raises(MalformedReplyError):
            await query_socket(socket_path, timeout=2.0)

        channel = SocketHeartbeatChannel(HeartbeatClock(), socket_path)
        assert await HeartbeatProbe(channel, THRESHOLD).check() is False
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_run_health_check_exit_codes(running_server, socket_path):
    heartbeat, clock, _ = running_server
    settings = HeartbeatSettings(
        transport="socket", socket_path=str(socket_path), threshold_seconds=THRESHOLD
    )

    assert await run_health_check(settings, clock=clock) == UNHEALTHY

    heartbeat.update()
    assert await run_health_check(settings, clock=clock) == HEALTHY


@pytest.mark.asyncio
async def test_channel_update_drives_the_shared_clock(socket_path):
    clock = MutableClock(500.0)
    channel = SocketHeartbeatChannel(HeartbeatClock(clock=clock), socket_path)

    await channel.start()
    try:
        channel.update()
        serve_task = asyncio.create_task(channel.serve())
        try:
            assert await channel.query() == 500.0
        finally:
            serve_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await serve_task
    finally:
        channel.server.close()


@pytest.mark.asyncio
async def test_reply_write_error_is_logged_and_survived(caplog):
    server = HeartbeatServer(HeartbeatClock(), "/unused")
    loop = asyncio.get_running_loop()
    conn, peer = socket.socketpair()
    conn.setblocking(False)

    with conn, peer:
        peer.sendall(PING)
        with patch.object(
            loop, "sock_sendall", AsyncMock(side_effect=BrokenPipeError("broken pipe"))
        ), caplog.at_level(logging.WARNING):
            outcome = await server.handle_connection(conn)

    assert outcome is None
    assert "broken pipe" in caplog.text


@pytest.mark.asyncio
async def test_server_keeps_serving_after_reply_write_error(running_server, socket_path):
    heartbeat, clock, _ = running_server
    heartbeat.update()
    loop = asyncio.get_running_loop()

    with patch.object(
        loop, "sock_sendall", AsyncMock(side_effect=BrokenPipeError("broken pipe"))
    ):
        with pytest.raises(MalformedReplyError):
            await query_socket(socket_path, timeout=2.0)

    assert await query_socket(socket_path, timeout=2.0) == int(clock())


@pytest.mark.asyncio
async def test_querying_channel_never_binds_a_server(socket_path):
    channel = SocketHeartbeatChannel(HeartbeatClock(), socket_path)

    assert await HeartbeatProbe(channel, THRESHOLD).check() is False
    assert channel.server is None
    assert not socket_path.exists()
