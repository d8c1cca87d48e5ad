import logging

from bridge_alerts.logger import QUIET_LOGGERS, setup_logging


def test_setup_logging_quiets_transport_loggers():
    root = logging.getLogger()
    previous = root.level
    try:
        setup_logging("DEBUG")
        assert root.level == logging.DEBUG
        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING
        assert logging.getLogger("telegram.ext").getEffectiveLevel() == logging.WARNING

        setup_logging("ERROR")
        assert logging.getLogger("httpx").level == logging.ERROR

        setup_logging("nonsense")
        assert root.level == logging.INFO
    finally:
        root.setLevel(previous)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)
