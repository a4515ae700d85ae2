"""
Logging setup: JSON lines in deployed environments, plain text locally.

Every record carries the service name and, when emitted inside a span, the
OpenTelemetry trace and span ids so log lines can be joined to traces.
"""
import logging
import sys
from opentelemetry import trace
from pythonjsonlogger import jsonlogger

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class ContextFilter(logging.Filter):
    """Adds service and trace context to each record"""

    def __init__(self, service_name: str, environment: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        record.environment = self.environment

        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = ""
            record.span_id = ""
        return True


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(service)s %(environment)s %(name)s %(levelname)s "
                "%(trace_id)s %(span_id)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level"
            }
        )
        formatter.default_time_format = "%Y-%m-%dT%H:%M:%S"
        formatter.default_msec_format = "%s.%03dZ"
        return formatter

    return logging.Formatter(
        fmt="%(asctime)s %(levelname)-7s [%(service)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    environment: str = "dev"
) -> logging.Logger:
    """
    Configure the root logger for the service

    Safe to call more than once; previous handlers are replaced.
    """
    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter(service_name, environment))
    handler.setFormatter(build_formatter(log_format.lower()))
    root.addHandler(handler)

    if root.level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging initialized for {service_name} ({environment}) at level {log_level}")
    return root
