"""
Tracer, meter and logger providers for the dice generator.

Each setup function builds one SDK provider on top of an exporter, registers it
as the global provider and returns it; callers keep the providers so they can
be shut down during teardown.
"""

import gc
import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, LogRecordExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from .config import Config
from .exporters.otlp_exporter import (
    create_otlp_log_exporter,
    create_otlp_metric_exporter,
    create_otlp_trace_exporter,
)

LIBRARY_LANGUAGE = "python"
RUNTIME_EXPORT_INTERVAL_MS = 10_000


def build_resource(service_name: str) -> Resource:
    """Resource attributes attached to every signal."""
    return Resource.create(
        {
            "service.name": service_name,
            "library.language": LIBRARY_LANGUAGE,
        }
    )


def setup_tracing(
    cfg: Config, resource: Resource, exporter: SpanExporter | None = None
) -> TracerProvider:
    """Sample everything and batch spans to the collector over gRPC."""
    exporter = exporter or create_otlp_trace_exporter(cfg.collector_grpc_url)
    provider = TracerProvider(sampler=ALWAYS_ON, resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def _observe_threads(options: CallbackOptions) -> Iterable[Observation]:
    yield Observation(threading.active_count())


def _observe_gc_collections(options: CallbackOptions) -> Iterable[Observation]:
    for generation, stats in enumerate(gc.get_stats()):
        yield Observation(stats.get("collections", 0), {"generation": generation})


def _observe_cpu_time(options: CallbackOptions) -> Iterable[Observation]:
    yield Observation(time.process_time())


def register_runtime_instruments(provider: MeterProvider) -> None:
    """Process runtime gauges (threads, GC, CPU time) for the meter provider."""
    meter = provider.get_meter("dicesim.runtime")
    meter.create_observable_gauge(
        "process.runtime.thread_count",
        callbacks=[_observe_threads],
        description="Number of live threads",
        unit="{thread}",
    )
    meter.create_observable_counter(
        "process.runtime.gc_count",
        callbacks=[_observe_gc_collections],
        description="Garbage collections per generation",
        unit="{collection}",
    )
    meter.create_observable_counter(
        "process.runtime.cpu_time",
        callbacks=[_observe_cpu_time],
        description="CPU time consumed by the process",
        unit="s",
    )


def setup_metrics(
    cfg: Config,
    resource: Resource,
    exporter: MetricExporter | None = None,
    reader: MetricReader | None = None,
    export_interval_ms: int = RUNTIME_EXPORT_INTERVAL_MS,
) -> MeterProvider:
    """Periodically export metrics over gzip OTLP/HTTP; includes runtime gauges."""
    if reader is None:
        exporter = exporter or create_otlp_metric_exporter(cfg.collector_http_url)
        reader = PeriodicExportingMetricReader(exporter, export_interval_millis=export_interval_ms)

    provider = MeterProvider(resource=resource, metric_readers=[reader])
    register_runtime_instruments(provider)
    metrics.set_meter_provider(provider)
    return provider


def setup_logging(
    cfg: Config, resource: Resource, exporter: LogRecordExporter | None = None
) -> tuple[LoggerProvider, logging.Logger]:
    """Batch log records over gzip OTLP/HTTP and bridge a stdlib logger into them."""
    exporter = exporter or create_otlp_log_exporter(cfg.collector_http_url)
    provider = LoggerProvider(resource=resource)
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    set_logger_provider(provider)

    handler = LoggingHandler(level=logging.DEBUG, logger_provider=provider)

    logger = logging.getLogger(cfg.service_name)
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return provider, logger


@dataclass
class Telemetry:
    """Providers created at startup, plus the bridged application logger."""

    logger_provider: LoggerProvider
    tracer_provider: TracerProvider
    meter_provider: MeterProvider
    logger: logging.Logger


def setup_telemetry(cfg: Config) -> Telemetry:
    """Build all three providers. Construction errors propagate to the caller."""
    resource = build_resource(cfg.service_name)
    logger_provider, logger = setup_logging(cfg, resource)
    tracer_provider = setup_tracing(cfg, resource)
    meter_provider = setup_metrics(cfg, resource)
    return Telemetry(
        logger_provider=logger_provider,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        logger=logger,
    )
