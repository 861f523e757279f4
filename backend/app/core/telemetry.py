"""OpenTelemetry wiring for the journal API and its import pipeline."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.metrics import Counter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.trace import Span
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import AppSettings

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "trade_journal.imports"
_METRIC_EXPORT_INTERVAL_MS = 10000

_telemetry_initialised = False
_import_metrics: "ImportMetrics | None" = None


@dataclass(frozen=True)
class ImportMetrics:
    legs_processed: Counter
    legs_skipped: Counter
    transactions_added: Counter

    @classmethod
    def create(cls) -> "ImportMetrics":
        # Proxy instruments start exporting once setup_telemetry installs a provider
        meter = metrics.get_meter(INSTRUMENTATION_NAME)
        return cls(
            legs_processed=meter.create_counter(
                "journal.import.legs.processed", unit="1", description="Source rows and legs normalized"
            ),
            legs_skipped=meter.create_counter(
                "journal.import.legs.skipped", unit="1", description="Currency, blank or malformed legs skipped"
            ),
            transactions_added=meter.create_counter(
                "journal.import.transactions.added", unit="1", description="Transactions new to the journal"
            ),
        )


def _metrics() -> ImportMetrics:
    global _import_metrics  # noqa: PLW0603 - lazily created instruments

    if _import_metrics is None:
        _import_metrics = ImportMetrics.create()
    return _import_metrics


def record_import(source: str, *, processed: int, skipped: int, added: int) -> None:
    """Add one import's bookkeeping to the journal counters."""

    attributes = {"journal.import.source": source}
    instruments = _metrics()
    instruments.legs_processed.add(processed, attributes)
    instruments.legs_skipped.add(skipped, attributes)
    instruments.transactions_added.add(added, attributes)


@contextmanager
def import_span(source: str, user_id: str, **attributes: Any) -> Iterator[Span]:
    """Wrap one import's read-modify-write in a span tagged with its source."""

    tracer = trace.get_tracer(INSTRUMENTATION_NAME)
    with tracer.start_as_current_span(f"journal.import.{source}") as span:
        span.set_attribute("enduser.id", user_id)
        for key, value in attributes.items():
            span.set_attribute(f"journal.import.{key}", value)
        yield span


def setup_telemetry(app: FastAPI, settings: AppSettings, engine: AsyncEngine | None = None) -> None:
    """Install OTLP exporters and instrument FastAPI, httpx and SQLAlchemy once per process."""

    global _telemetry_initialised  # noqa: PLW0603 - single initialisation guard

    if _telemetry_initialised:
        return
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled via configuration")
        return

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: settings.telemetry_service_name or settings.app_name,
            ResourceAttributes.SERVICE_NAMESPACE: "trade-journal",
        }
    )
    exporter_options: dict[str, Any] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        exporter_options["endpoint"] = settings.telemetry_otlp_endpoint

    tracer_provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio)),
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_options)))
    trace.set_tracer_provider(tracer_provider)

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[
            PeriodicExportingMetricReader(
                OTLPMetricExporter(**exporter_options),
                export_interval_millis=_METRIC_EXPORT_INTERVAL_MS,
            )
        ],
    )
    metrics.set_meter_provider(meter_provider)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**exporter_options)))
    set_logger_provider(logger_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    # Broker sync calls go through httpx
    HTTPXClientInstrumentor().instrument()
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=tracer_provider)

    _telemetry_initialised = True
    logger.info("Telemetry initialised for %s", settings.telemetry_service_name or settings.app_name)


__all__ = ["ImportMetrics", "import_span", "record_import", "setup_telemetry"]
