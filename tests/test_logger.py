"""Logging setup tests."""

from core.config import get_settings
from core.logger import LoggerMixin, ServiceFields


def test_service_fields_stamp_events_without_overriding() -> None:
    settings = get_settings()

    event = ServiceFields(settings)(None, "info", {"event": "started", "environment": "custom"})

    assert event["service"] == settings.APP_NAME
    assert event["version"] == settings.APP_VERSION
    assert event["environment"] == "custom"


def test_logger_mixin_caches_one_logger_per_instance() -> None:
    class Worker(LoggerMixin):
        pass

    worker = Worker()

    assert worker.logger is worker.logger
    assert Worker().logger is not worker.logger
