"""OpenTelemetry metrics instruments for the access layer.

Instruments
-----------
  docrel.sequence.issued_total        Counter (label: entity)
      Public sequential ids issued.

  docrel.sequence.failures_total      Counter (label: entity)
      Atomic increments that failed and aborted a create.

  docrel.codes.collisions_total       Counter (label: entity)
      Unique-code candidates rejected because they already existed.

  docrel.codes.fallbacks_total        Counter (label: entity)
      Code generations that exhausted their attempts and fell back to a
      timestamp suffix.

  docrel.relations.lookups_total      Counter (label: entity, relation)
      Batched lookups issued while populating relations.

  docrel.relations.dangling_total     Counter (label: entity, relation)
      Foreign-key values left unresolved during population.

When no MeterProvider is installed every recording is a silent no-op.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "docrel"

# Guard flag: True once the global MeterProvider has been installed.
_meter_provider_installed: bool = False


def init_metrics(service_name: str) -> metrics.Meter:
    """Install an OTLP MeterProvider when OTEL_EXPORTER_OTLP_ENDPOINT is set.

    Later calls reuse the installed provider.

    Returns:
        A Meter bound to the global MeterProvider.
    """
    global _meter_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    if _meter_provider_installed:
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    _meter_provider_installed = True
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(_METER_NAME)


class AccessMetrics:
    """Lazily created counters shared by the access-layer components.

    Safe to construct before ``init_metrics``: instruments are only created
    on first use.
    """

    def __init__(self) -> None:
        self._counters: dict[str, metrics.Counter] = {}

    def _counter(self, name: str, description: str, unit: str) -> metrics.Counter:
        counter = self._counters.get(name)
        if counter is None:
            counter = get_meter().create_counter(name=name, description=description, unit=unit)
            self._counters[name] = counter
        return counter

    def sequence_issued(self, entity_type: str) -> None:
        self._counter(
            "docrel.sequence.issued_total", "Public sequential ids issued", "ids"
        ).add(1, {"entity": entity_type})

    def sequence_failed(self, entity_type: str) -> None:
        self._counter(
            "docrel.sequence.failures_total", "Failed atomic sequence increments", "errors"
        ).add(1, {"entity": entity_type})

    def code_collision(self, entity_type: str) -> None:
        self._counter(
            "docrel.codes.collisions_total", "Unique-code candidates that collided", "codes"
        ).add(1, {"entity": entity_type})

    def code_fallback(self, entity_type: str) -> None:
        self._counter(
            "docrel.codes.fallbacks_total", "Unique codes minted via timestamp fallback", "codes"
        ).add(1, {"entity": entity_type})

    def relation_lookup(self, entity_type: str, relation: str) -> None:
        self._counter(
            "docrel.relations.lookups_total", "Relation population lookups", "queries"
        ).add(1, {"entity": entity_type, "relation": relation})

    def relation_dangling(self, entity_type: str, relation: str, count: int = 1) -> None:
        self._counter(
            "docrel.relations.dangling_total", "Unresolved foreign-key values", "values"
        ).add(count, {"entity": entity_type, "relation": relation})


_default_metrics = AccessMetrics()


def access_metrics() -> AccessMetrics:
    """Process-wide :class:`AccessMetrics` instance."""
    return _default_metrics
