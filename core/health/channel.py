"""Socket heartbeat channel and runtime transport selection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from pathlib import Path

from core.config import HeartbeatSettings
from core.health.base import HeartbeatChannel
from core.health.clock import HeartbeatClock
from core.health.errors import (
    HeartbeatQueryError,
    HeartbeatStartupError,
    MalformedReplyError,
)
from core.health.file_channel import FileHeartbeatChannel
from core.health.protocol import PING, REPLY_SIZE, decode_timestamp
from core.health.server import HeartbeatServer

logger = logging.getLogger(__name__)


async def query_socket(path: str | Path, *, timeout: float = 5.0) -> int:
    """Send one ping to the heartbeat socket and decode the reply."""
    try:
        async with asyncio.timeout(timeout):
            reader, writer = await asyncio.open_unix_connection(str(path))
            try:
                writer.write(PING)
                await writer.drain()
                reply = await reader.readexactly(REPLY_SIZE)
            finally:
                writer.close()
                with contextlib.suppress(OSError):
                    await writer.wait_closed()
    except asyncio.IncompleteReadError as exc:
        raise MalformedReplyError(
            f"heartbeat reply truncated after {len(exc.partial)} bytes"
        ) from exc
    except TimeoutError as exc:
        raise HeartbeatQueryError(
            f"no heartbeat reply within {timeout} seconds"
        ) from exc
    except OSError as exc:
        raise HeartbeatQueryError(f"could not query heartbeat socket, {exc}") from exc

    return decode_timestamp(reply)


class SocketHeartbeatChannel(HeartbeatChannel):
    transport = "socket"

    def __init__(
        self,
        clock: HeartbeatClock,
        path: str | Path,
        *,
        query_timeout: float = 5.0,
    ):
        self.clock = clock
        self.path = Path(path)
        self.query_timeout = query_timeout
        self.server: HeartbeatServer | None = None

    async def start(self) -> None:
        # probes only query, so the server exists only once started
        self.server = HeartbeatServer(self.clock, self.path)
        self.server.bind()

    def update(self) -> None:
        self.clock.update()

    async def serve(self) -> None:
        if self.server is None:
            await self.start()
        await self.server.serve_forever()

    async def query(self) -> float:
        return float(await query_socket(self.path, timeout=self.query_timeout))


def unix_sockets_available() -> bool:
    return hasattr(socket, "AF_UNIX")


def select_channel(
    settings: HeartbeatSettings, clock: HeartbeatClock | None = None
) -> HeartbeatChannel:
    """Pick the heartbeat transport once, at startup."""
    transport = settings.transport
    if transport == "auto":
        transport = "socket" if unix_sockets_available() else "file"

    if transport == "socket":
        if not unix_sockets_available():
            raise HeartbeatStartupError(
                "socket heartbeat requested but Unix sockets are unavailable"
            )
        return SocketHeartbeatChannel(
            clock or HeartbeatClock(),
            settings.socket_path,
            query_timeout=settings.query_timeout_seconds,
        )

    logger.info("Using file heartbeat transport")
    return FileHeartbeatChannel(settings.heartbeat_dir)
