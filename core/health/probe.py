"""One-shot liveness probe used by the container supervisor.

The probe performs a single heartbeat query and maps the outcome to a process
exit code. Every failure, whatever its cause, is reported as unhealthy; the
supervisor is expected to call the probe again on its own schedule.
"""

import logging
import time
from typing import Any

from core.config import HeartbeatSettings
from core.health.base import HeartbeatChannel
from core.health.channel import select_channel
from core.health.errors import HealthError

logger = logging.getLogger(__name__)

HEALTHY = 0
UNHEALTHY = 1


def is_healthy(last_update: float, *, now: float, threshold: float) -> bool:
    """
    Turn heartbeat age into a verdict.

    A heartbeat from the future is healthy: the prober and the server may run
    with skewed clocks. Otherwise the age must be strictly below the threshold.
    """
    if last_update > now:
        logger.info("last update is from the future, this is fine")
        return True

    elapsed = now - last_update
    logger.info(f"last update was {int(elapsed)} seconds ago")
    return elapsed < threshold


class HeartbeatProbe:
    """Queries a heartbeat channel exactly once."""

    def __init__(
        self,
        channel: HeartbeatChannel,
        threshold: float,
        *,
        clock: Any = time.time,
    ):
        self.channel = channel
        self.threshold = threshold
        self.clock = clock

    async def check(self) -> bool:
        try:
            last_update = await self.channel.query()
        except HealthError as exc:
            logger.error(f"Health check failed: {exc}")
            return False

        return is_healthy(last_update, now=float(self.clock()), threshold=self.threshold)


async def run_health_check(
    settings: HeartbeatSettings, *, clock: Any = time.time
) -> int:
    try:
        channel = select_channel(settings)
    except HealthError as exc:
        logger.error(f"Health check failed: {exc}")
        return UNHEALTHY

    probe = HeartbeatProbe(channel, settings.threshold_seconds, clock=clock)
    return HEALTHY if await probe.check() else UNHEALTHY
