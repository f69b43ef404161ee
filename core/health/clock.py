"""Shared timestamp of the last completed poll cycle."""

from __future__ import annotations

import threading
import time
from typing import Any


class HeartbeatClock:
    """Guarded cell written by the poll loop and read by the heartbeat server.

    Starts at the epoch so the heartbeat looks infinitely old until the first
    cycle finishes.
    """

    def __init__(self, clock: Any = time.time):
        self.clock = clock
        self._lock = threading.Lock()
        self._last_update = 0.0

    def update(self) -> None:
        now = float(self.clock())
        with self._lock:
            self._last_update = now

    def snapshot(self) -> float:
        with self._lock:
            return self._last_update
