"""OpenTelemetry metrics for the certificate authority."""

from collections.abc import Iterator

from opentelemetry import metrics

# Get meter for the CA
meter = metrics.get_meter("tinyca")

# Issuance counters
certificates_issued_total = meter.create_counter(
    name="tinyca_certificates_issued_total",
    description="Total leaf certificates issued",
    unit="1",
)

certificate_issuance_failures_total = meter.create_counter(
    name="tinyca_certificate_issuance_failures_total",
    description="Total rejected or failed issuance requests",
    unit="1",
)

# Issuance histogram
certificate_issuance_duration = meter.create_histogram(
    name="tinyca_certificate_issuance_duration_seconds",
    description="Leaf certificate issuance duration in seconds",
    unit="s",
)

# CA key loaded gauge - track storage type
_ca_key_storage_type: str | None = None


def _get_ca_key_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report CA key loaded status."""
    if _ca_key_storage_type:
        yield metrics.Observation(1, {"storage_type": _ca_key_storage_type})
    else:
        yield metrics.Observation(0, {"storage_type": "none"})


ca_key_loaded_gauge = meter.create_observable_gauge(
    name="tinyca_ca_key_loaded",
    description="CA key loaded (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_ca_key_loaded],
)


class CAMetrics:
    """Facade for CA metrics with proper labels."""

    def record_certificate_issued(self, source: str, duration_seconds: float) -> None:
        """Record a leaf certificate. Labels: source=attributes|csr"""
        certificates_issued_total.add(1, {"source": source})
        certificate_issuance_duration.record(duration_seconds, {"source": source})

    def record_issuance_failed(self, source: str, reason: str) -> None:
        """Record a failed issuance. Labels: source=attributes|csr, reason=<error code>"""
        certificate_issuance_failures_total.add(1, {"source": source, "reason": reason})

    def record_ca_key_loaded(self, storage_type: str) -> None:
        """Record CA key loaded with storage type."""
        global _ca_key_storage_type
        _ca_key_storage_type = storage_type


# Singleton instance
ca_metrics = CAMetrics()
