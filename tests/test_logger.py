import logging

from registration_mailer.logger import LOG_FORMAT, configure_logging, get_logger


def test_get_logger_reuses_existing_logger():
    logger = get_logger("TestLogger")
    handler_count = len(logger.handlers)

    same_logger = get_logger("TestLogger")
    assert logger is same_logger
    assert len(same_logger.handlers) == handler_count


def test_get_logger_default_name():
    assert get_logger().name == "RegistrationMailer"


def test_configure_logging_reads_environment(monkeypatch):
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, list(root.handlers)
    monkeypatch.setenv("MAILER_LOG_LEVEL", "warning")
    try:
        configure_logging()
        assert root.level == logging.WARNING
        assert root.handlers[0].formatter._fmt == LOG_FORMAT

        configure_logging("debug")
        assert root.level == logging.DEBUG
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
