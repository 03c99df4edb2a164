import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter
from opentelemetry.sdk.resources import Resource

# Names of the root handlers installed here, replaced on every setup call
_OTEL_HANDLER = "tinyca.otel"
_STREAM_HANDLER = "tinyca.stdout"


def _parse_level(level: str) -> int:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level!r}")
    return numeric


def setup_logging(level: str, service_name: str) -> LoggerProvider:
    """Route standard logging to OpenTelemetry and stdout.

    Calling this again (one app started twice in a process) swaps the
    handlers instead of stacking them, so records are not duplicated.

    Args:
        level: Standard level name such as "INFO" or "debug".
        service_name: Value for the service.name resource attribute.

    Returns:
        The logger provider, so the caller can flush it on shutdown.

    Raises:
        ValueError: If level is not a logging level name.
    """
    numeric_level = _parse_level(level)

    logger_provider = LoggerProvider(resource=Resource.create({"service.name": service_name}))
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))
    set_logger_provider(logger_provider)

    otel_handler = LoggingHandler(level=numeric_level, logger_provider=logger_provider)
    otel_handler.set_name(_OTEL_HANDLER)

    # Visible immediately, while OTel batches are still pending
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.set_name(_STREAM_HANDLER)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() in (_OTEL_HANDLER, _STREAM_HANDLER):
            root.removeHandler(handler)
    root.addHandler(otel_handler)
    root.addHandler(stream_handler)
    root.setLevel(numeric_level)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logger_provider
