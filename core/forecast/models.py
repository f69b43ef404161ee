"""Location and forecast payload models."""

from datetime import UTC, datetime
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from core.errors import TimestampParseError

FORECAST_TIME_FORMAT = "%Y-%m-%d %H:%M"


class Location(BaseModel):
    """A point the forecast is collected for."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class Forecast(BaseModel):
    """Upstream forecast; the service speaks German field names."""

    model_config = ConfigDict(populate_by_name=True)

    issued_at: str = Field(alias="vorhersageZeit")
    lat: float
    lon: float
    current: tuple[str, int] = Field(alias="aktuell")
    forecasts: dict[str, int] = Field(alias="vorhersage")

    @pydantic.field_validator("current", mode="before")
    @classmethod
    def first_current_entry(cls, v: Any) -> Any:
        if isinstance(v, dict):
            if not v:
                raise ValueError("expected at least one element")
            return min(v.items())
        return v

    def timestamp(self) -> int:
        """Seconds since the epoch of `issued_at`, read as UTC."""
        try:
            parsed = datetime.strptime(self.issued_at, FORECAST_TIME_FORMAT)
        except ValueError as exc:
            raise TimestampParseError(self.issued_at, str(exc)) from exc
        return int(parsed.replace(tzinfo=UTC).timestamp())
