import logging
import os
import re

from pythonjsonlogger import jsonlogger

from src.core.config import platform_settings

SERVICE_NAME: str = "bbs-platform"
SERVICE_VERSION: str = "1.0.0"

LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s %(message)s"

# user:password@ inside clone URLs
URL_CREDENTIALS_PATTERN = re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@")

BASE_LOGGER_CACHE = {}


class CredentialRedactionFilter(logging.Filter):
    """Masks credentials embedded in URLs before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = URL_CREDENTIALS_PATTERN.sub(r"\1***@", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _add_otel_handler(base_logger: logging.Logger, name: str) -> None:
    if not os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        return

    try:
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
        from opentelemetry.sdk.resources import Resource
    except ImportError as e:
        base_logger.error(f"OTEL exporter requested but not installed (pip install bbs-platform[otel]): {e}")
        return

    logger_provider = LoggerProvider(
        Resource.create(
            {
                "service.name": SERVICE_NAME,
                "service.version": SERVICE_VERSION,
                "deployment.environment": platform_settings.environment,
            }
        )
    )
    exporter = OTLPLogExporter(endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"), insecure=True)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    base_logger.addHandler(LoggingHandler(level=logging.DEBUG, logger_provider=logger_provider))
    base_logger.info(f"Configured OTEL log export for '{name}'")


def get_logger(name: str) -> logging.Logger:
    """
    Returns the cached logger for `name`, creating it on first use.

    Records are written to stderr as JSON tagged with the service and
    environment, with URL credentials masked. When OTEL_EXPORTER_OTLP_ENDPOINT
    is set they are also exported over OTLP.
    """
    if name in BASE_LOGGER_CACHE:
        return BASE_LOGGER_CACHE[name]

    base_logger = logging.getLogger(name)
    base_logger.setLevel(platform_settings.log_level.value)
    base_logger.addFilter(CredentialRedactionFilter())
    BASE_LOGGER_CACHE[name] = base_logger

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        jsonlogger.JsonFormatter(
            LOG_FORMAT,
            static_fields={"service": SERVICE_NAME, "environment": platform_settings.environment},
        )
    )
    base_logger.addHandler(stream_handler)

    _add_otel_handler(base_logger, name)
    return base_logger

