"""
observability/__init__.py

PURPOSE: OpenTelemetry tracing and request metrics for the llama.cpp adapter.
DEPENDENCIES: opentelemetry-api, opentelemetry-sdk (optional)

ARCHITECTURE NOTES:
Everything here is opt-in:
- No-op when the otel packages are missing or telemetry is disabled
- Console export by default when enabled
- OTLP export when an endpoint is configured
"""

from llama_cli.observability.telemetry import (
    get_tracer,
    init_telemetry,
    record_api_request,
    record_token_usage,
    shutdown_telemetry,
)

__all__ = [
    "get_tracer",
    "init_telemetry",
    "record_api_request",
    "record_token_usage",
    "shutdown_telemetry",
]
