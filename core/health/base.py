"""Transport-independent heartbeat channel contract."""

from __future__ import annotations

from abc import ABC, abstractmethod


class HeartbeatChannel(ABC):
    """Publishes the heartbeat to, and reads it back for, an external prober."""

    transport: str = ""

    @abstractmethod
    async def start(self) -> None:
        """Create the endpoint. Failures are fatal startup errors."""

    @abstractmethod
    def update(self) -> None:
        """Record that a poll cycle just completed."""

    @abstractmethod
    async def serve(self) -> None:
        """Serve liveness queries for the lifetime of the process."""

    @abstractmethod
    async def query(self) -> float:
        """Return the last heartbeat as seconds since the epoch."""
