"""Tests for exporter factories and provider setup."""

import inspect
import logging

import pytest
from opentelemetry.sdk._logs import LoggingHandler
from opentelemetry.sdk._logs.export import LogExportResult, LogRecordExporter
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from dicesim.config import Config
from dicesim.exporters.otlp_exporter import (
    create_otlp_log_exporter,
    create_otlp_metric_exporter,
    create_otlp_trace_exporter,
    grpc_endpoint,
    http_signal_endpoint,
)
from dicesim.telemetry import (
    LIBRARY_LANGUAGE,
    build_resource,
    setup_logging,
    setup_metrics,
    setup_tracing,
)

CFG = Config(
    collector_grpc_url="localhost:4317",
    collector_http_url="localhost:4318",
    service_name="dicesim-telemetry-test",
    debug_url="localhost:1777",
)


@pytest.mark.parametrize(
    ("endpoint", "expected"),
    [
        ("localhost:4318", "http://localhost:4318/v1/logs"),
        ("http://collector:4318/", "http://collector:4318/v1/logs"),
        ("https://collector:4318/v1/logs", "https://collector:4318/v1/logs"),
    ],
)
def test_http_signal_endpoint(endpoint: str, expected: str) -> None:
    assert http_signal_endpoint(endpoint, "/v1/logs") == expected


def test_grpc_endpoint_strips_scheme() -> None:
    assert grpc_endpoint("http://localhost:4317") == "localhost:4317"
    assert grpc_endpoint("localhost:4317") == "localhost:4317"


def test_http_exporters_use_gzip() -> None:
    metric_exporter = create_otlp_metric_exporter("localhost:4318")
    log_exporter = create_otlp_log_exporter("localhost:4318")

    assert metric_exporter._compression.value == "gzip"
    assert metric_exporter._endpoint == "http://localhost:4318/v1/metrics"
    assert log_exporter._compression.value == "gzip"
    assert log_exporter._endpoint == "http://localhost:4318/v1/logs"


def test_trace_exporter_is_constructed_without_connecting() -> None:
    exporter = create_otlp_trace_exporter("localhost:4317")
    exporter.shutdown()


@pytest.mark.parametrize(
    ("factory", "params"),
    [
        (create_otlp_trace_exporter, ["endpoint", "insecure"]),
        (create_otlp_metric_exporter, ["endpoint"]),
        (create_otlp_log_exporter, ["endpoint"]),
    ],
)
def test_exporter_factories_take_only_what_callers_pass(factory, params: list[str]) -> None:
    assert list(inspect.signature(factory).parameters) == params


def test_resource_attributes() -> None:
    attrs = build_resource("demo").attributes

    assert attrs["service.name"] == "demo"
    assert attrs["library.language"] == LIBRARY_LANGUAGE


def test_tracing_provider_exports_spans() -> None:
    exporter = InMemorySpanExporter()
    provider = setup_tracing(CFG, build_resource(CFG.service_name), exporter=exporter)

    with provider.get_tracer("test").start_as_current_span("dice_roll"):
        pass
    provider.force_flush()

    (span,) = exporter.get_finished_spans()
    assert span.resource.attributes["service.name"] == CFG.service_name
    provider.shutdown()


def test_metrics_provider_reports_runtime_instruments() -> None:
    reader = InMemoryMetricReader()
    provider = setup_metrics(CFG, build_resource(CFG.service_name), reader=reader)

    names = {
        metric.name
        for rm in reader.get_metrics_data().resource_metrics
        for sm in rm.scope_metrics
        for metric in sm.metrics
    }

    assert {
        "process.runtime.thread_count",
        "process.runtime.gc_count",
        "process.runtime.cpu_time",
    } <= names
    provider.shutdown()


class _CollectingLogExporter(LogRecordExporter):
    def __init__(self) -> None:
        self.records: list = []

    def export(self, batch):
        self.records.extend(batch)
        return LogExportResult.SUCCESS

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True


def test_logging_bridges_stdlib_logger() -> None:
    """Records written to the service logger reach the OTEL log exporter."""
    exporter = _CollectingLogExporter()
    provider, logger = setup_logging(CFG, build_resource(CFG.service_name), exporter=exporter)

    logger.info("Rolled zero", extra={"roll": 0})
    provider.force_flush()

    assert len(exporter.records) == 1
    assert logger.name == CFG.service_name
    assert logger.level == logging.DEBUG
    assert any(isinstance(h, LoggingHandler) for h in logger.handlers)
    provider.shutdown()
