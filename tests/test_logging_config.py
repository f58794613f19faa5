import logging

from planstore.logging_config import configure_logging


def test_configure_logging_quiets_driver_loggers():
    configure_logging("debug")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING
