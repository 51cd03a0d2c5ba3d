"""OTLP exporters for the collector."""

from .otlp_exporter import (
    create_otlp_log_exporter,
    create_otlp_metric_exporter,
    create_otlp_trace_exporter,
)

__all__ = [
    "create_otlp_trace_exporter",
    "create_otlp_metric_exporter",
    "create_otlp_log_exporter",
]
