"""
OTLP exporters for traces, metrics, and logs.

Traces go to the collector over gRPC; metrics and logs go over HTTP with gzip
compression. Endpoints may be given as bare ``host:port`` (e.g. localhost:4318).
"""

from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http import Compression
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter


def grpc_endpoint(endpoint: str) -> str:
    """Strip any scheme; the gRPC exporter wants host:port."""
    return endpoint.replace("http://", "").replace("https://", "")


def http_signal_endpoint(endpoint: str, signal_path: str) -> str:
    """Return the full OTLP/HTTP URL for a signal (e.g. http://localhost:4318/v1/logs)."""
    url = endpoint if "://" in endpoint else f"http://{endpoint}"
    url = url.rstrip("/")
    if not url.endswith(signal_path):
        url = f"{url}{signal_path}"
    return url


def create_otlp_trace_exporter(endpoint: str, insecure: bool = True) -> OTLPSpanExporter:
    """
    Create an OTLP/gRPC span exporter.

    Args:
        endpoint: collector gRPC endpoint (host:port)
        insecure: use a plaintext channel
    """
    return OTLPSpanExporter(endpoint=grpc_endpoint(endpoint), insecure=insecure)


def create_otlp_metric_exporter(endpoint: str) -> OTLPMetricExporter:
    """Create a gzip-compressed OTLP/HTTP metric exporter."""
    return OTLPMetricExporter(
        endpoint=http_signal_endpoint(endpoint, "/v1/metrics"),
        compression=Compression.Gzip,
    )


def create_otlp_log_exporter(endpoint: str) -> OTLPLogExporter:
    """Create a gzip-compressed OTLP/HTTP log exporter."""
    return OTLPLogExporter(
        endpoint=http_signal_endpoint(endpoint, "/v1/logs"),
        compression=Compression.Gzip,
    )
