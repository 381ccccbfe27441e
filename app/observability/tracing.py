"""OpenTelemetry wiring: tracer provider, span helper, OTLP metric and log export.

Call ``configure_tracing()`` (and optionally ``configure_metrics_export()`` /
``configure_log_export()``) once at startup; request code only needs
``begin_span()``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import context as otel_context
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from app.config import Settings
from app.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

_TRACER_NAME = "app.observability.tracing"

_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None
_logger_provider: Any | None = None
_log_handler: logging.Handler | None = None

_GLOBAL_TRACER_INSTALLED = False
_GLOBAL_METER_INSTALLED = False


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Turn ``"authorization=Bearer x,env=prod"`` into a header dict.

    Pairs without ``=`` are skipped.
    """

    if not raw:
        return {}
    out: dict[str, str] = {}
    for pair in (p.strip() for p in raw.split(",")):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if key.strip():
            out[key.strip()] = value.strip()
    return out


def create_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
            "deployment.environment": settings.environment,
        }
    )


class SpanLifecycleProcessor(SpanProcessor):
    """Counts span starts and ends into the in-memory metrics."""

    def on_start(self, span: Span, parent_context: otel_context.Context | None = None) -> None:
        get_metrics().observe_span_started()

    def on_end(self, span: ReadableSpan) -> None:
        get_metrics().observe_span_ended()


def set_tracer_provider(provider: TracerProvider | None) -> None:
    global _tracer_provider
    _tracer_provider = provider


def get_tracer_provider() -> TracerProvider | None:
    return _tracer_provider


def configure_tracing(
    settings: Settings,
    span_exporter: SpanExporter | None = None,
    install_global: bool = True,
) -> TracerProvider:
    """Build the tracer provider used by ``begin_span``.

    When ``span_exporter`` is given, spans go to it synchronously; otherwise
    they are batched to the OTLP/HTTP collector if export is enabled. The
    batch processor drops spans when the collector is unreachable, so the
    request path never waits on it.

    With ``install_global=False`` the OpenTelemetry global provider is left
    untouched, so only ``begin_span`` sees the new provider.
    """

    global _GLOBAL_TRACER_INSTALLED

    sampler = ParentBased(TraceIdRatioBased(settings.tracing_sampling_probability))
    provider = TracerProvider(resource=create_resource(settings), sampler=sampler)
    provider.add_span_processor(SpanLifecycleProcessor())

    if span_exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    elif settings.otel_export_enabled:
        exporter = OTLPSpanExporter(
            endpoint=f"{settings.otlp_base_url}/v1/traces",
            headers=parse_otlp_headers(settings.otlp_headers) or None,
            timeout=10,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("Tracing export enabled: %s -> %s", settings.service_name, settings.otlp_base_url)

    set_tracer_provider(provider)

    # The OTel global can only be set once per process.
    if install_global and not _GLOBAL_TRACER_INSTALLED:
        trace.set_tracer_provider(provider)
        _GLOBAL_TRACER_INSTALLED = True

    return provider


def configure_metrics_export(settings: Settings) -> MeterProvider | None:
    global _meter_provider, _GLOBAL_METER_INSTALLED

    if not settings.otel_export_enabled:
        return None

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(
            endpoint=f"{settings.otlp_base_url}/v1/metrics",
            headers=parse_otlp_headers(settings.otlp_headers) or None,
        ),
        export_interval_millis=settings.metric_export_interval_ms,
    )
    provider = MeterProvider(resource=create_resource(settings), metric_readers=[reader])
    _meter_provider = provider

    if not _GLOBAL_METER_INSTALLED:
        metrics.set_meter_provider(provider)
        _GLOBAL_METER_INSTALLED = True

    return provider


def configure_log_export(settings: Settings) -> logging.Handler | None:
    """Ship stdlib/structlog records to the collector over OTLP.

    Must run after ``configure_logging`` since that replaces the root handlers.
    """

    global _logger_provider, _log_handler

    if not settings.otel_export_enabled:
        return None

    # Lazy import: the logs SDK is only needed when exporting.
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

    from app.observability.logging import build_formatter

    provider = LoggerProvider(resource=create_resource(settings))
    provider.add_log_record_processor(
        BatchLogRecordProcessor(
            OTLPLogExporter(
                endpoint=f"{settings.otlp_base_url}/v1/logs",
                headers=parse_otlp_headers(settings.otlp_headers) or None,
            )
        )
    )
    set_logger_provider(provider)

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=provider)
    handler.setFormatter(build_formatter("json"))
    logging.getLogger().addHandler(handler)

    _logger_provider = provider
    _log_handler = handler
    return handler


def shutdown_telemetry() -> None:
    """Flush and shut down the providers created by this module."""

    global _meter_provider, _logger_provider, _log_handler

    if _log_handler is not None:
        logging.getLogger().removeHandler(_log_handler)
        _log_handler = None
    if _logger_provider is not None:
        _logger_provider.shutdown()
        _logger_provider = None
    if _meter_provider is not None:
        _meter_provider.shutdown()
        _meter_provider = None
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        set_tracer_provider(None)


def get_tracer() -> trace.Tracer:
    if _tracer_provider is None:
        return trace.get_tracer(_TRACER_NAME)
    return _tracer_provider.get_tracer(_TRACER_NAME)


@contextmanager
def begin_span(name: str, attributes: Mapping[str, Any] | None = None) -> Iterator[trace.Span]:
    """Run the enclosed block inside a new current span.

    The span is a child of whatever span is current (or a root span). It is
    ended and the previous current span restored on every exit path; an
    escaping exception is recorded, marks the span ERROR, and propagates.
    """

    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        attributes=dict(attributes) if attributes else None,
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span
