"""structlog configuration shared by the service, the CLI tools and the tests."""

import logging
import sys
from functools import cached_property

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from core.config import Settings, get_settings

# HTTP clients and model loaders log every request at INFO
QUIET_LIBRARIES = ("httpx", "httpcore", "groq", "sentence_transformers", "urllib3", "qdrant_client")


class ServiceFields:
    """Processor stamping every event with the service name, version and environment."""

    def __init__(self, settings: Settings) -> None:
        self._fields = {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in self._fields.items():
            event_dict.setdefault(key, value)
        return event_dict


def _renderers(settings: Settings) -> list[Processor]:
    if settings.ENVIRONMENT == "development" and settings.DEBUG:
        return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]
    return [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """
    Send structured events to stderr at ``LOG_LEVEL``.

    Events are JSON lines unless this is a debug development run, which
    gets the console renderer. Stdout stays free for the terminal client's
    answers and the ingest summary. Per-request fields bound with
    ``structlog.contextvars`` are merged into every event.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            ServiceFields(settings),
            structlog.processors.StackInfoRenderer(),
            *_renderers(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr, level=level)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Logger with ``logger_name`` bound when a name is given."""
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


class LoggerMixin:
    """Gives a class a ``logger`` bound to its class name."""

    @cached_property
    def logger(self) -> structlog.typing.FilteringBoundLogger:
        return get_logger(type(self).__name__)


configure_logging()
