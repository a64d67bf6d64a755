"""
telemetry.py

PURPOSE: OpenTelemetry initialization, tracer lookup and API metrics.
DEPENDENCIES: opentelemetry-api, opentelemetry-sdk, opentelemetry-exporter-otlp (all optional)

ARCHITECTURE NOTES:
Works with or without the otel packages installed. Modules grab a tracer at
import time via get_tracer(); it resolves to the real tracer only once
init_telemetry() has run, and to a no-op otherwise.

The adapter reports raw numbers only (request count, latency, token usage)
through record_api_request() / record_token_usage(). Aggregation and export are
the SDK's job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from llama_cli.observability.constants import (
    METRIC_API_REQUEST_COUNT,
    METRIC_API_REQUEST_LATENCY,
    METRIC_TOKEN_USAGE,
)

if TYPE_CHECKING:
    from llama_cli.config import OpenTelemetrySettings

logger = logging.getLogger(__name__)

# Module-level provider state, set once by init_telemetry()
_initialized = False
_tracer_provider: object | None = None
_meter_provider: object | None = None
_instruments: dict[str, Any] = {}


@runtime_checkable
class Span(Protocol):
    """The subset of the otel span API the adapter uses."""

    def __enter__(self) -> Span: ...
    def __exit__(self, *args: object) -> None: ...
    def set_attribute(self, key: str, value: object) -> None: ...
    def record_exception(self, exception: BaseException) -> None: ...
    def add_event(self, name: str, attributes: dict[str, object] | None = None) -> None: ...


@runtime_checkable
class Tracer(Protocol):
    def start_as_current_span(self, name: str, **kwargs: object) -> Span: ...
    def start_span(self, name: str, **kwargs: object) -> Span: ...


class NoOpSpan:
    """Span used when telemetry is off."""

    def __enter__(self) -> Span:
        return self

    def __exit__(self, *args: object) -> None:
        pass

    def set_attribute(self, key: str, value: object) -> None:  # noqa: ARG002
        pass

    def record_exception(self, exception: BaseException) -> None:  # noqa: ARG002
        pass

    def add_event(  # noqa: ARG002
        self, name: str, attributes: dict[str, object] | None = None
    ) -> None:
        pass


class NoOpTracer:
    def start_as_current_span(
        self,
        name: str,  # noqa: ARG002
        **kwargs: object,  # noqa: ARG002
    ) -> Span:
        return NoOpSpan()

    def start_span(
        self,
        name: str,  # noqa: ARG002
        **kwargs: object,  # noqa: ARG002
    ) -> Span:
        return NoOpSpan()


class LazyTracer:
    """
    A tracer that looks up the real tracer at span creation time.

    Lets modules call get_tracer() at import, before init_telemetry().
    """

    def __init__(self, name: str) -> None:
        self._name = name

    def _resolve(self) -> Tracer:
        if not _initialized or _tracer_provider is None:
            return NoOpTracer()

        try:
            from opentelemetry import trace

            return trace.get_tracer(self._name)  # type: ignore[return-value]
        except ImportError:
            return NoOpTracer()

    def start_as_current_span(self, name: str, **kwargs: object) -> Span:
        return self._resolve().start_as_current_span(name, **kwargs)

    def start_span(self, name: str, **kwargs: object) -> Span:
        return self._resolve().start_span(name, **kwargs)


def get_tracer(name: str) -> Tracer:
    """
    Get a tracer for the given module name.

    Args:
        name: Module name (typically __name__).

    Returns:
        A LazyTracer that resolves to a real or no-op tracer when used.
    """
    return LazyTracer(name)


def telemetry_enabled() -> bool:
    """True once init_telemetry() has installed real providers."""
    return _initialized and _tracer_provider is not None


def init_telemetry(settings: OpenTelemetrySettings) -> None:
    """
    Initialize OpenTelemetry tracing and metrics.

    Safe to call when the otel packages are missing; call once at startup.

    Args:
        settings: OpenTelemetry configuration settings.
    """
    global _initialized, _tracer_provider, _meter_provider

    if _initialized:
        logger.debug("Telemetry already initialized")
        return

    if not settings.enabled:
        logger.debug("Telemetry disabled")
        _initialized = True
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import (
            ConsoleMetricExporter,
            PeriodicExportingMetricReader,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
    except ImportError:
        logger.warning(
            "OpenTelemetry packages not installed. "
            "Install with: pip install llama-cli[observability]"
        )
        _initialized = True
        return

    resource = Resource.create({"service.name": settings.service_name})

    tracer_provider = TracerProvider(resource=resource)
    metric_readers = []

    if settings.endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.endpoint))
            )
            metric_readers.append(
                PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=settings.endpoint))
            )
            logger.info(f"OTLP exporter configured: {settings.endpoint}")
        except ImportError:
            logger.warning("OTLP exporter not available, using console only")

    if not metric_readers:
        # No OTLP endpoint: fall back to console export
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        metric_readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))

    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)
    _tracer_provider = tracer_provider
    _meter_provider = meter_provider
    _initialized = True

    logger.info(f"Telemetry initialized: service={settings.service_name}")


def _instrument(name: str) -> Any | None:
    """Create (once) and return the metric instrument called `name`."""
    if _meter_provider is None:
        return None
    if name in _instruments:
        return _instruments[name]

    try:
        from opentelemetry import metrics
    except ImportError:
        return None

    meter = metrics.get_meter("llama_cli")
    if name == METRIC_API_REQUEST_COUNT:
        instrument = meter.create_counter(name, description="Counts API requests")
    elif name == METRIC_API_REQUEST_LATENCY:
        instrument = meter.create_histogram(
            name, unit="ms", description="Latency of API requests"
        )
    else:
        instrument = meter.create_counter(name, description="Counts tokens used")

    _instruments[name] = instrument
    return instrument


def record_api_request(model: str, latency_ms: float, status: int | str) -> None:
    """
    Report one finished API request.

    Args:
        model: Model identifier the request was sent to.
        latency_ms: Wall-clock duration of the request.
        status: HTTP status code, or an error label when there was none.
    """
    attributes = {"model": model, "status_code": str(status)}

    counter = _instrument(METRIC_API_REQUEST_COUNT)
    if counter is not None:
        counter.add(1, attributes)

    histogram = _instrument(METRIC_API_REQUEST_LATENCY)
    if histogram is not None:
        histogram.record(latency_ms, {"model": model})


def record_token_usage(model: str, input_tokens: int, output_tokens: int) -> None:
    """Report token counters the server returned for one request."""
    counter = _instrument(METRIC_TOKEN_USAGE)
    if counter is None:
        return
    counter.add(input_tokens, {"model": model, "type": "input"})
    counter.add(output_tokens, {"model": model, "type": "output"})


def shutdown_telemetry() -> None:
    """
    Flush and shut down the providers.

    Safe to call even if telemetry was never initialized.
    """
    global _initialized, _tracer_provider, _meter_provider

    for provider in (_tracer_provider, _meter_provider):
        shutdown = getattr(provider, "shutdown", None)
        if shutdown is not None:
            shutdown()
    if _tracer_provider is not None:
        logger.debug("Telemetry shutdown complete")

    _tracer_provider = None
    _meter_provider = None
    _instruments.clear()
    _initialized = False
