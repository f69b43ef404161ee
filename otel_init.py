"""
OpenTelemetry initialization for swat-collector.

The collector is a plain asyncio service (no web server), so one OTLP logging
handler on the root logger captures everything.

Usage:
1. Call `setup_telemetry()` once at startup, before the loops start
2. Call `attach_logging_handler()` after logging is configured
3. Modules obtain instruments through `get_tracer()` / `get_meter()`; without
   an OTLP endpoint these resolve to no-op providers
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    OTELResourceDetector,
    ProcessResourceDetector,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

SERVICE_NAME = "swat-collector"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str | None) -> dict[str, str] | None:
    """
    Parse OTLP headers from "key1=value1,key2=value2".

    Returns None when the variable is empty or holds no valid pair.
    """
    if not headers_env or not headers_env.strip():
        return None

    pairs = [h.split("=", 1) for h in headers_env.split(",") if "=" in h]
    headers = {k.strip(): v.strip() for k, v in pairs if k.strip()}
    if not headers:
        logger.warning(
            "OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found"
        )
        return None
    return headers


def build_resource() -> Resource:
    """Merge OTEL_RESOURCE_ATTRIBUTES, service attributes and detected ones."""
    manual_resource = Resource.create(
        {
            "service.name": SERVICE_NAME,
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
            "service.instance.id": os.getenv("HOSTNAME", ""),
        }
    )

    detected = Resource.get_empty()
    for detector in (ProcessResourceDetector(), OTELResourceDetector()):
        try:
            detected = detected.merge(detector.detect())
        except Exception as e:
            logger.warning(f"Failed to detect resource attributes: {e}")

    custom = {}
    for attr in os.getenv("OTEL_RESOURCE_ATTRIBUTES", "").split(","):
        key, sep, value = attr.partition("=")
        if sep and key.strip() and value.strip():
            custom[key.strip()] = value.strip()

    # the argument of merge() wins on conflicts
    return detected.merge(manual_resource).merge(Resource(custom))


def _record(component: str, service_name: str, fail_fast: bool, error=None) -> None:
    if error is None:
        logger.info(f"OpenTelemetry {component} enabled for {service_name}")
        return

    logger.error(
        f"Failed to set up OpenTelemetry {component}: {error}",
        exc_info=True,
        extra={"service": service_name, "component": component},
    )
    if fail_fast:
        raise error


def setup_telemetry(
    service_name: str = SERVICE_NAME,
    otlp_endpoint: str | None = None,
    enable_metrics: bool = True,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """
    Set up tracing, metrics and log export over OTLP/gRPC.

    Every component is optional and individually gated by ENABLE_TRACES,
    ENABLE_METRICS and ENABLE_LOGS; ENABLE_OTEL=false disables all of it.
    With OTEL_FAIL_FAST=true the first failing component raises.
    """
    global _global_logger_provider

    if not _env_flag("ENABLE_OTEL"):
        return

    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")
    headers = parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    resource = build_resource()

    if enable_traces and _env_flag("ENABLE_TRACES") and otlp_endpoint:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _record("tracing", service_name, fail_fast)
        except Exception as e:
            _record("tracing", service_name, fail_fast, e)

    if enable_metrics and _env_flag("ENABLE_METRICS") and otlp_endpoint:
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=otlp_endpoint, headers=headers),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _record("metrics", service_name, fail_fast)
        except Exception as e:
            _record("metrics", service_name, fail_fast, e)

    if enable_logs and _env_flag("ENABLE_LOGS") and otlp_endpoint:
        try:
            # set_logging_format=False keeps basicConfig's handlers intact
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            _global_logger_provider = logger_provider
            _record("logs", service_name, fail_fast)
        except Exception as e:
            _record("logs", service_name, fail_fast, e)

    try:
        HTTPXClientInstrumentor().instrument()
        _record("http_instrumentation", service_name, fail_fast)
    except Exception as e:
        _record("http_instrumentation", service_name, fail_fast, e)


def attach_logging_handler() -> bool:
    """Attach the OTLP logging handler to the root logger, once."""
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.debug("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        logger.debug("OTLP logging handler already attached")
        return True

    handler = LoggingHandler(
        level=logging.NOTSET,
        logger_provider=_global_logger_provider,
    )
    root_logger.addHandler(handler)
    _otlp_logging_handler = handler
    logger.info("OTLP logging handler attached to root logger")
    return True


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or SERVICE_NAME)


def get_meter(name: str = None) -> metrics.Meter:
    return metrics.get_meter(name or SERVICE_NAME)
