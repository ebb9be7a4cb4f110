"""
stakepool Logging Tests
"""

import logging

from stakepool.logger import LogManager, TerminalSafeFormatter, get_logger


class TestTerminalSafeFormatter:

    def test_strips_ansi_sequences(self):
        assert TerminalSafeFormatter.sanitize("\x1b[31mred\x1b[0m") == "red"

    def test_strips_control_characters(self):
        assert TerminalSafeFormatter.sanitize("a\rb\x07c\td\ne") == "abc\td\ne"

    def test_formats_record(self):
        formatter = TerminalSafeFormatter(fmt="%(message)s")
        record = logging.LogRecord(
            name="stakepool", level=logging.INFO, pathname="", lineno=0,
            msg="operator %s", args=("0xab\x1b[2J",), exc_info=None,
        )
        assert formatter.format(record) == "operator 0xab"


class TestLogManager:

    def test_single_instance(self):
        assert LogManager() is LogManager()

    def test_module_loggers_reach_root(self, caplog):
        logger = get_logger("stakepool.test")
        with caplog.at_level("WARNING"):
            logger.warning("BOUNDARY delay: validator 1")
        assert "BOUNDARY delay" in caplog.text
