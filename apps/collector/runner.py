"""Fixed-interval poll loop: fetch, store, heartbeat, alert."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence

from core.alerting.state_machine import AlertDecision, AlertStateMachine, CollectionFailure
from core.db.influx import build_point
from core.errors import CollectionError
from core.forecast.models import Location
from core.health.base import HeartbeatChannel
from otel_init import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class CollectorLoop:
    """Drives one collection cycle per tick, strictly sequentially."""

    def __init__(
        self,
        locations: Sequence[Location],
        forecast_client: Any,
        writer: Any,
        channel: HeartbeatChannel,
        alerts: AlertStateMachine,
        *,
        interval: float = 120.0,
        clock: Any = time.monotonic,
        sleep: Any = asyncio.sleep,
    ):
        self.locations = list(locations)
        self.forecast_client = forecast_client
        self.writer = writer
        self.channel = channel
        self.alerts = alerts
        self.interval = interval
        self.clock = clock
        self.sleep = sleep

    async def collect_location(self, location: Location) -> None:
        forecast = await self.forecast_client.fetch(location)
        await self.writer.write(build_point(location, forecast))
        logger.info(f"inserted location {location.name!r} into db for {forecast.issued_at}")

    async def collect(self) -> list[CollectionFailure]:
        failures: list[CollectionFailure] = []
        for location in self.locations:
            try:
                await self.collect_location(location)
            except CollectionError as exc:
                logger.error(f"{location.name}: {exc}")
                failures.append(CollectionFailure(subject=location.name, error=exc))
        return failures

    async def run_cycle(self) -> AlertDecision:
        with tracer.start_as_current_span("swat.collector.cycle") as span:
            failures = await self.collect()
            self.channel.update()
            decision = await self.alerts.evaluate(failures)

            span.set_attribute("cycle.locations", len(self.locations))
            span.set_attribute("cycle.failures", len(failures))
            span.set_attribute("cycle.alert_action", decision.action.value)
            return decision

    async def run_forever(self) -> None:
        """Tick every `interval` seconds; an overrun delays, never stacks, ticks."""
        logger.info(
            f"Collector loop started for {len(self.locations)} location(s), "
            f"interval {self.interval}s"
        )
        while True:
            start = self.clock()
            await self.run_cycle()
            elapsed = self.clock() - start
            await self.sleep(max(0.0, self.interval - elapsed))
