"""Environment-driven settings for the collector and its liveness probe."""

import os
from typing import Optional

import pydantic
from pydantic import BaseModel, Field

DEFAULT_SOCKET_PATH = "/tmp/wisdom/swat-collector.health.sock"
TRANSPORTS = ("auto", "socket", "file")


class HeartbeatSettings(BaseModel):
    """Everything the heartbeat server and the probe have to agree on."""

    transport: str = "auto"
    socket_path: str = DEFAULT_SOCKET_PATH
    heartbeat_dir: Optional[str] = None
    threshold_seconds: float = Field(180.0, gt=0.0)
    query_timeout_seconds: float = Field(5.0, gt=0.0)

    @pydantic.field_validator("transport")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        if v not in TRANSPORTS:
            raise ValueError(f"Transport must be one of {list(TRANSPORTS)}")
        return v

    @classmethod
    def from_env(cls, transport: Optional[str] = None) -> "HeartbeatSettings":
        return cls(
            transport=transport or os.getenv("HEARTBEAT_TRANSPORT", "auto"),
            socket_path=os.getenv("HEARTBEAT_SOCKET_PATH", DEFAULT_SOCKET_PATH),
            heartbeat_dir=os.getenv("HEARTBEAT_DIR"),
            threshold_seconds=float(os.getenv("HEALTH_THRESHOLD_SECONDS", "180")),
            query_timeout_seconds=float(os.getenv("HEARTBEAT_QUERY_TIMEOUT", "5")),
        )


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"expected {name!r} to be available")
    return value


class CollectorConfig(BaseModel):
    influxdb_url: str
    influxdb_org: str
    influxdb_token: str
    influxdb_bucket: str = "swat"
    webhook_id: str
    webhook_token: str
    forecast_base_url: str = "https://swat.itwh.de"
    poll_interval_seconds: float = Field(120.0, gt=0.0)
    unchecked_tls: bool = False
    metrics_port: Optional[int] = Field(None, ge=1, le=65535)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)

    @pydantic.field_validator("webhook_id")
    @classmethod
    def validate_webhook_id(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("DISCORD_WEBHOOK_ID must be a numeric snowflake")
        return v

    @pydantic.model_validator(mode="after")
    def validate_threshold(self) -> "CollectorConfig":
        # one slow cycle must not trip the probe
        if self.heartbeat.threshold_seconds <= self.poll_interval_seconds:
            raise ValueError(
                "HEALTH_THRESHOLD_SECONDS must be greater than POLL_INTERVAL_SECONDS"
            )
        return self

    @classmethod
    def from_env(
        cls, *, unchecked_tls: bool = False, transport: Optional[str] = None
    ) -> "CollectorConfig":
        return cls(
            influxdb_url=_require_env("INFLUXDB_URL"),
            influxdb_org=_require_env("INFLUXDB_ORG"),
            influxdb_token=_require_env("INFLUXDB_TOKEN"),
            influxdb_bucket=os.getenv("INFLUXDB_BUCKET", "swat"),
            webhook_id=_require_env("DISCORD_WEBHOOK_ID"),
            webhook_token=_require_env("DISCORD_WEBHOOK_TOKEN"),
            forecast_base_url=os.getenv("FORECAST_BASE_URL", "https://swat.itwh.de"),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "120")),
            unchecked_tls=unchecked_tls,
            metrics_port=int(os.environ["METRICS_PORT"]) if os.getenv("METRICS_PORT") else None,
            heartbeat=HeartbeatSettings.from_env(transport=transport),
        )


__all__ = ["CollectorConfig", "HeartbeatSettings"]
