"""OpenTelemetry tracing for access-layer operations."""

from __future__ import annotations

import functools
import logging
import os

from opentelemetry import trace

from docrel.core.logging import reset_entity_context, set_entity_context

logger = logging.getLogger(__name__)

_TRACER_NAME = "docrel"

# Guard flag: True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real TracerProvider
    with an OTLP gRPC exporter on the first call; later calls reuse it.
    Otherwise the global no-op provider stays in place.

    Args:
        service_name: Reported as ``service.name`` on the resource.

    Returns:
        A Tracer instance (real or no-op depending on config)
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(_TRACER_NAME)

    if _tracer_provider_installed:
        return trace.get_tracer(_TRACER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)

    return trace.get_tracer(_TRACER_NAME)


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(_TRACER_NAME)


class operation_span:
    """Span (and log context) for one access-layer operation.

    Works as a context manager or as a decorator on async functions. The span
    is named ``docrel.<operation>`` and tagged with ``docrel.entity``.
    Exceptions are recorded on the span before being re-raised.
    """

    def __init__(self, operation: str, *, entity_type: str) -> None:
        self._operation = operation
        self._entity_type = entity_type
        self._span: trace.Span | None = None
        self._token: object | None = None
        self._log_token: object | None = None

    def __enter__(self) -> trace.Span:
        self._span = get_tracer().start_span(f"docrel.{self._operation}")
        self._span.set_attribute("docrel.entity", self._entity_type)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        self._log_token = set_entity_context(self._entity_type)
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._log_token is not None:
            reset_entity_context(self._log_token)
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)

    def __call__(self, func):  # noqa: ANN001, ANN204
        # Fresh instance per call: concurrent invocations must not share span state.
        operation = self._operation
        entity_type = self._entity_type

        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
            with operation_span(operation, entity_type=entity_type):
                return await func(*args, **kwargs)

        return _wrapper
