"""
swat-collector - SWAT forecast collector with a container liveness probe
"""

import argparse
import asyncio
import logging
import sys

from prometheus_client import CollectorRegistry, start_http_server

from apps.collector.locations import load_locations
from apps.collector.runner import CollectorLoop
from core.alerting.manager import AlertManager, GrafanaChannel, OtelChannel, WebhookChannel
from core.alerting.state_machine import AlertStateMachine
from core.config import TRANSPORTS, CollectorConfig, HeartbeatSettings
from core.db.influx import InfluxWriter
from core.forecast.client import ForecastClient
from core.health.channel import select_channel
from core.health.clock import HeartbeatClock
from core.health.probe import run_health_check
from otel_init import attach_logging_handler, setup_telemetry

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="swat-collector", description="Collect SWAT forecasts into InfluxDB"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--health-check",
        action="store_true",
        help="Run a health check and exit, primarily for Docker to verify the service",
    )
    parser.add_argument(
        "--unchecked-tls",
        action="store_true",
        help="Do not verify TLS certificates of outbound HTTP requests",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default=None,
        help="Heartbeat transport (defaults to HEARTBEAT_TRANSPORT or auto)",
    )
    return parser.parse_args(argv)


async def run_collector(config: CollectorConfig) -> None:
    """Run the heartbeat server and the poll loop until one of them fails."""
    setup_telemetry()
    attach_logging_handler()
    registry = CollectorRegistry()
    if config.metrics_port is not None:
        start_http_server(config.metrics_port, registry=registry)

    clock = HeartbeatClock()
    channel = select_channel(config.heartbeat, clock)
    await channel.start()
    server_task = asyncio.create_task(channel.serve(), name="heartbeat-server")

    verify = not config.unchecked_tls
    webhook = WebhookChannel(config.webhook_id, config.webhook_token, verify=verify)
    # webhook first: a failed delivery must not be counted as sent
    alerts = AlertStateMachine(AlertManager([webhook, OtelChannel(), GrafanaChannel(registry)]))
    writer = InfluxWriter(
        config.influxdb_url,
        config.influxdb_org,
        config.influxdb_token,
        bucket=config.influxdb_bucket,
        verify=verify,
    )

    try:
        async with ForecastClient(config.forecast_base_url, verify=verify) as forecasts:
            await writer.ensure_bucket()
            loop = CollectorLoop(
                load_locations(),
                forecasts,
                writer,
                channel,
                alerts,
                interval=config.poll_interval_seconds,
            )
            collector_task = asyncio.create_task(loop.run_forever(), name="collector")
            tasks = {server_task, collector_task}
            try:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    if task.exception() is not None:
                        raise task.exception()
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        server_task.cancel()
        await asyncio.gather(server_task, return_exceptions=True)
        await writer.close()
        await webhook.close()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)-5s [%(asctime)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M",
    )
    args = parse_args(argv)

    if args.health_check:
        settings = HeartbeatSettings.from_env(transport=args.transport)
        return asyncio.run(run_health_check(settings))

    config = CollectorConfig.from_env(
        unchecked_tls=args.unchecked_tls, transport=args.transport
    )
    try:
        asyncio.run(run_collector(config))
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        logger.critical(f"swat-collector stopped: {exc}", exc_info=True)
        return 1
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
