"""Async InfluxDB v2 writer for forecast points."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from core.errors import PointWriteError
from core.forecast.models import Forecast, Location
from otel_init import get_meter

logger = logging.getLogger(__name__)
meter = get_meter(__name__)

points_written = meter.create_counter(
    "influx_points_written_total", description="Forecast points written", unit="1"
)

MEASUREMENT = "forecast"


def _escape_key(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def _escape_string_field(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_point(location: Location, forecast: Forecast) -> str:
    """Render one forecast as a line-protocol point with second precision."""
    tags = {
        "id": str(location.id),
        "lat": repr(location.lat),
        "lon": repr(location.lon),
        "name": location.name,
    }
    label, value = forecast.current
    fields = {
        "current": json.dumps({label: value}, separators=(",", ":")),
        "forecasts": json.dumps(forecast.forecasts, sort_keys=True, separators=(",", ":")),
    }

    tag_set = ",".join(f"{_escape_key(k)}={_escape_key(v)}" for k, v in tags.items())
    field_set = ",".join(
        f"{_escape_key(k)}={_escape_string_field(v)}" for k, v in fields.items()
    )
    return f"{MEASUREMENT},{tag_set} {field_set} {forecast.timestamp()}"


class InfluxWriter:
    """Thin httpx wrapper over the InfluxDB v2 HTTP API."""

    def __init__(
        self,
        url: str,
        org: str,
        token: str,
        *,
        bucket: str = "swat",
        verify: bool = True,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.org = org
        self.bucket = bucket
        self.client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"Authorization": f"Token {token}"},
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _get_json(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.get(endpoint, params=params)
        response.raise_for_status()
        return response.json()

    async def ensure_bucket(self) -> None:
        """Create the bucket on first start. Errors here abort startup."""
        existing = await self._get_json("/api/v2/buckets", {"name": self.bucket})
        if existing.get("buckets"):
            logger.info(f"initialized bucket {self.bucket!r}, swat-collector running")
            return

        orgs = await self._get_json("/api/v2/orgs", {"org": self.org})
        if not orgs.get("orgs"):
            raise ValueError(f"influxdb organization not found: {self.org}")
        org_id = orgs["orgs"][0]["id"]

        response = await self.client.post(
            "/api/v2/buckets",
            json={"orgID": org_id, "name": self.bucket, "retentionRules": []},
        )
        response.raise_for_status()
        logger.info(f"created bucket {self.bucket!r}, swat-collector running")

    async def write(self, line: str) -> None:
        try:
            response = await self.client.post(
                "/api/v2/write",
                params={"org": self.org, "bucket": self.bucket, "precision": "s"},
                content=line.encode(),
                headers={"Content-Type": "text/plain; charset=utf-8"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PointWriteError(
                f"{e.response.status_code} {e.response.text.strip()}"
            ) from e
        except httpx.HTTPError as e:
            raise PointWriteError(str(e) or type(e).__name__) from e

        points_written.add(1)
