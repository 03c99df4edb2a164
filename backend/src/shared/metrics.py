from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource


def setup_metrics(
    app_name: str, console_export: bool = False, export_interval_ms: int = 60000
) -> MeterProvider:
    """Configure OpenTelemetry metrics.

    The Prometheus reader is always installed; /metrics serves it through
    prometheus_client's default registry. A periodic console dump is added
    only when console_export is set.
    """
    resource = Resource.create({"service.name": app_name})

    readers: list[MetricReader] = [PrometheusMetricReader()]
    if console_export:
        readers.append(
            PeriodicExportingMetricReader(
                ConsoleMetricExporter(), export_interval_millis=export_interval_ms
            )
        )

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)
    return provider
