import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import make_asgi_app
from shared.config import settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from tinyca.api import sign as sign_api
from tinyca.api.schemas import HealthResponse
from tinyca.ca import store as ca_store
from tinyca.ca.errors import CAError
from tinyca.ca.issuer import CertificateIssuer
from tinyca.ca.store import CAStore

logger = logging.getLogger(__name__)

# Global CA store instance
_store: CAStore | None = None


def get_store() -> CAStore:
    """Get the initialized CA store."""
    if _store is None:
        raise RuntimeError("CAStore not initialized")
    return _store


# Setup OpenTelemetry Tracing
def setup_tracing() -> TracerProvider:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    return provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global _store

    # Startup
    logger_provider = setup_logging(settings.LOG_LEVEL, settings.APP_NAME)
    tracer_provider = setup_tracing()
    meter_provider = setup_metrics(
        settings.APP_NAME,
        console_export=settings.METRICS_CONSOLE_EXPORT,
        export_interval_ms=settings.METRICS_EXPORT_INTERVAL_MS,
    )

    LoggingInstrumentor().instrument(set_logging_format=True)

    # Initialize Certificate Authority; without a root there is nothing to serve
    _store = ca_store.get_store(
        settings.CAROOT,
        key_name=settings.KEYNAME,
        cert_name=settings.CRTNAME,
        key_size=settings.CA_KEY_SIZE,
    )
    try:
        root = _store.open()
    except CAError as e:
        logger.critical("ca_store_unavailable", extra={"error": str(e), "code": e.code})
        raise

    # Inject issuer into API module
    sign_api.set_issuer(CertificateIssuer(root, key_size=settings.CA_KEY_SIZE))

    yield

    # Shutdown: flush pending batches
    meter_provider.shutdown()
    tracer_provider.shutdown()
    logger_provider.shutdown()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(sign_api.router)

# Prometheus exposition of the OTel metrics
app.mount("/metrics", make_asgi_app())


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", service=settings.APP_NAME)


def run() -> None:
    """Serve the API; uvicorn handles SIGINT/SIGTERM shutdown."""
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
