"""Unix-socket heartbeat server.

Serves the HeartbeatClock to out-of-process probes, one connection at a time,
without ever blocking the poll loop: the clock lock is only taken for the
snapshot, never across a socket wait.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from pathlib import Path

from core.health.clock import HeartbeatClock
from core.health.errors import HeartbeatAcceptError, HeartbeatStartupError
from core.health.protocol import ReadOutcome, encode_timestamp
from otel_init import get_meter

logger = logging.getLogger(__name__)
meter = get_meter(__name__)

heartbeat_queries = meter.create_counter(
    "heartbeat_queries_total",
    description="Heartbeat connections handled, by outcome",
    unit="1",
)


def _mark_ready(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class HeartbeatServer:
    """Answers liveness pings on a Unix stream socket."""

    def __init__(
        self,
        clock: HeartbeatClock,
        path: str | Path,
        *,
        read_timeout: float = 5.0,
    ):
        self.clock = clock
        self.path = Path(path)
        self.read_timeout = read_timeout
        self._listener: socket.socket | None = None

    @property
    def bound(self) -> bool:
        return self._listener is not None

    def bind(self) -> None:
        """Create the socket directory, drop a stale endpoint and listen."""
        listener = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.unlink(missing_ok=True)
            listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            listener.bind(str(self.path))
            listener.listen()
            listener.setblocking(False)
        except OSError as exc:
            if listener is not None:
                listener.close()
            raise HeartbeatStartupError(
                f"could not create health socket at {self.path}, {exc}"
            ) from exc

        self._listener = listener
        logger.info(f"Heartbeat socket bound at {self.path}")

    def close(self) -> None:
        if self._listener is None:
            return
        self._listener.close()
        self._listener = None
        self.path.unlink(missing_ok=True)

    async def serve_forever(self) -> None:
        """Accept loop; only returns by raising HeartbeatAcceptError."""
        if self._listener is None:
            self.bind()

        loop = asyncio.get_running_loop()
        while True:
            try:
                conn, _ = await loop.sock_accept(self._listener)
            except OSError as exc:
                raise HeartbeatAcceptError(
                    f"could not accept heartbeat connection, {exc}"
                ) from exc

            with conn:
                await self.handle_connection(conn)

    async def handle_connection(self, conn: socket.socket) -> ReadOutcome | None:
        """Serve a single connection; per-connection I/O errors are logged."""
        loop = asyncio.get_running_loop()
        try:
            outcome = await self.read_query(conn)
            if outcome is ReadOutcome.PING:
                payload = encode_timestamp(self.clock.snapshot())
                await loop.sock_sendall(conn, payload)
            else:
                logger.debug(f"Heartbeat connection dropped without query ({outcome})")
        except OSError as exc:
            heartbeat_queries.add(1, {"outcome": "error"})
            logger.warning(f"Heartbeat connection failed: {exc}")
            return None

        heartbeat_queries.add(1, {"outcome": outcome.value})
        return outcome

    async def read_query(self, conn: socket.socket) -> ReadOutcome:
        try:
            await self._wait_readable(conn)
        except TimeoutError:
            return ReadOutcome.NOT_READY

        try:
            data = conn.recv(1)
        except BlockingIOError:
            return ReadOutcome.NOT_READY

        # zero bytes: the client closed before asking
        return ReadOutcome.PING if data else ReadOutcome.CLOSED

    async def _wait_readable(self, conn: socket.socket) -> None:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()
        fd = conn.fileno()
        loop.add_reader(fd, _mark_ready, ready)
        try:
            await asyncio.wait_for(ready, self.read_timeout)
        finally:
            loop.remove_reader(fd)
