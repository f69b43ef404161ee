"""Alert delivery: Discord webhook plus telemetry channels."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Sequence

import httpx
from prometheus_client import CollectorRegistry, Counter

from otel_init import get_tracer

DISCORD_API_URL = "https://discord.com/api/v10"

# Discord embed limits
WEBHOOK_FIELD_LIMIT = 25
FIELD_NAME_LIMIT = 256
FIELD_VALUE_LIMIT = 1024

ALERT_DESCRIPTION = (
    "Some errors occurred.\n"
    "As soon as all requests are successful again you will be notified."
)
RESOLVED_DESCRIPTION = (
    "All requests have been successful. Collector working as expected again."
)


class NotificationError(Exception):
    """An alert could not be delivered."""


class AlertKind(StrEnum):
    ALERT = "alert"
    RESOLVED = "resolved"


@dataclass(slots=True)
class AlertField:
    name: str
    value: str


@dataclass(slots=True)
class AlertEvent:
    """Canonical notification payload sent to all channels."""

    kind: AlertKind
    description: str
    fields: list[AlertField] = field(default_factory=list)
    source: str = "swat-collector"
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def _clip(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 1] + "…"


class AlertChannel:
    """Channel interface."""

    async def send(self, event: AlertEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class WebhookChannel(AlertChannel):
    """Discord execute-webhook channel carrying a single embed."""

    COLORS = {AlertKind.ALERT: 0x9E2C2C, AlertKind.RESOLVED: 0x57F287}

    def __init__(
        self,
        webhook_id: str,
        token: str,
        *,
        base_url: str = DISCORD_API_URL,
        verify: bool = True,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_id = webhook_id
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def build_payload(self, event: AlertEvent) -> dict[str, Any]:
        embed: dict[str, Any] = {
            "color": self.COLORS[event.kind],
            "description": event.description,
            "timestamp": event.created_at,
        }
        if event.fields:
            embed["fields"] = [
                {
                    "name": _clip(f.name, FIELD_NAME_LIMIT),
                    "value": _clip(f.value, FIELD_VALUE_LIMIT),
                }
                for f in event.fields[:WEBHOOK_FIELD_LIMIT]
            ]
        return {"embeds": [embed]}

    async def send(self, event: AlertEvent) -> None:
        try:
            response = await self.client.post(
                f"/webhooks/{self.webhook_id}/{self.token}",
                json=self.build_payload(event),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                f"webhook rejected {event.kind}: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook request failed: {exc}") from exc


class OtelChannel(AlertChannel):
    """OpenTelemetry span-based alert channel."""

    def __init__(self, tracer_name: str = "core.alerting.manager"):
        self.tracer = get_tracer(tracer_name)

    async def send(self, event: AlertEvent) -> None:
        with self.tracer.start_as_current_span("swat.alert.dispatch") as span:
            span.set_attribute("alert.source", event.source)
            span.set_attribute("alert.kind", event.kind.value)
            span.set_attribute("alert.field_count", len(event.fields))
            if event.fields:
                span.set_attribute("alert.subjects", [f.name for f in event.fields])


class GrafanaChannel(AlertChannel):
    """Prometheus metric counter channel for Grafana alerting."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.counter = Counter(
            "swat_alert_events_total",
            "Total notifications emitted by the collector alert manager",
            ["kind", "source"],
            registry=registry,
        )

    async def send(self, event: AlertEvent) -> None:
        self.counter.labels(kind=event.kind.value, source=event.source).inc()


class AlertManager:
    """Dispatches notifications to all configured channels."""

    def __init__(self, channels: list[AlertChannel]):
        self.channels = channels

    async def dispatch(self, event: AlertEvent) -> None:
        for channel in self.channels:
            await channel.send(event)

    async def alert(self, failures: Sequence[Any], omitted: int = 0) -> None:
        fields = [AlertField(name=f.subject, value=f.message) for f in failures]
        if omitted:
            fields.append(AlertField(name="…", value=f"and {omitted} more"))
        await self.dispatch(
            AlertEvent(kind=AlertKind.ALERT, description=ALERT_DESCRIPTION, fields=fields)
        )

    async def resolved(self) -> None:
        await self.dispatch(
            AlertEvent(kind=AlertKind.RESOLVED, description=RESOLVED_DESCRIPTION)
        )
