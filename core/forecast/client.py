"""
Async client for the SWAT forecast service.
Fetches one forecast per location for the collector loop.
"""

import logging
import time
from typing import Optional

import httpx
import pydantic

from core.errors import ForecastParseError, ForecastRequestError
from core.forecast.models import Forecast, Location
from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

# Metrics
forecast_requests = meter.create_counter(
    "forecast_requests_total", description="Total number of forecast requests", unit="1"
)
forecast_latency = meter.create_histogram(
    "forecast_latency_ms",
    description="Forecast request latency in milliseconds",
    unit="ms",
)


class ForecastClient:
    """Read-only client for the `/Vorhersage` endpoint."""

    def __init__(
        self,
        base_url: str = "https://swat.itwh.de",
        timeout: float = 10.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"User-Agent": "swat-collector/1.0"},
        )
        if not verify:
            logger.warning("TLS certificate verification disabled for forecast requests")
        logger.info(f"ForecastClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def fetch(self, location: Location) -> Forecast:
        """Fetch the current forecast for a location."""
        forecast_requests.add(1, {"location": location.name})
        start_time = time.time()
        status = "success"

        with tracer.start_as_current_span("swat_forecast_fetch") as span:
            span.set_attribute("location.id", location.id)
            span.set_attribute("location.name", location.name)
            try:
                response = await self.client.get(
                    "/Vorhersage", params={"lat": location.lat, "lon": location.lon}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = "error"
                raise ForecastRequestError(
                    f"{e.response.status_code} from {e.request.url}"
                ) from e
            except httpx.HTTPError as e:
                status = "exception"
                raise ForecastRequestError(str(e) or type(e).__name__) from e
            finally:
                latency = (time.time() - start_time) * 1000
                forecast_latency.record(latency, {"status": status})

            try:
                return Forecast.model_validate_json(response.content)
            except pydantic.ValidationError as e:
                logger.error(
                    f"Invalid forecast payload for {location.name!r}, "
                    f"original text:\n{response.text}"
                )
                raise ForecastParseError(
                    f"{e.error_count()} validation error(s)", body=response.text
                ) from e

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
