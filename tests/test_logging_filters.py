import logging

from kindle_sender.cli import _AccessLogToDebugFilter


def _record(name: str) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='127.0.0.1:50000 - "GET /callback?code=... HTTP/1.1" 200',
        args=(),
        exc_info=None,
    )


def test_access_log_is_downgraded_to_debug() -> None:
    """Ensure callback server access logs are suppressed unless running at DEBUG."""

    record = _record("uvicorn.access")
    root_logger = logging.getLogger()
    previous_level = root_logger.level

    try:
        root_logger.setLevel(logging.INFO)
        f = _AccessLogToDebugFilter()
        assert f.filter(record) is False

        root_logger.setLevel(logging.DEBUG)
        assert f.filter(record) is True
    finally:
        root_logger.setLevel(previous_level)


def test_other_loggers_pass_through() -> None:
    """Application logs are never filtered."""

    assert _AccessLogToDebugFilter().filter(_record("kindle_sender.auth")) is True
