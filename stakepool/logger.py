"""
stakepool Logging
=================

Every module logs through ``get_logger(__name__)``. The first call configures
the root logger once: a ``rich`` console handler that colours epochs,
validator ids, amounts and the ``BOUNDARY`` / ``STALLED`` settlement markers,
plus an optional rotating file under ``logs/``. Level, format and outputs
come from ``.env`` (see ``stakepool.constants``).

Usage:
    >>> from stakepool.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Crank started")
"""

import logging
import logging.handlers
import re
import sys
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_FILE_OUTPUT,
)


LOG_FILE_PATH = Path(__file__).parent.parent / "logs" / "stakepool.log"

ENGINE_THEME = Theme(
    {
        "stakepool.amount":          "bold cyan",
        "stakepool.boundary":        "bold yellow",
        "stakepool.epoch":           "bold magenta",
        "stakepool.level_critical":  "bold red reverse",
        "stakepool.level_debug":     "bold dim",
        "stakepool.level_error":     "bold red",
        "stakepool.level_info":      "bold green",
        "stakepool.level_warning":   "bold yellow",
        "stakepool.logger_name":     "magenta",
        "stakepool.stalled":         "bold red",
        "stakepool.timestamp":       "bold cyan",
        "stakepool.validator":       "bold blue",
    }
)


class LogManager:
    """Process-wide logging setup; one shared instance, configured once."""

    _instance: Optional["LogManager"] = None

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._configured = False
        return cls._instance

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Install handlers on the root logger. Later calls are no-ops.

        Arguments left as None fall back to ``LOG_LEVEL``, ``LOG_FILE_PATH``
        and ``LOG_FILE_OUTPUT``.
        """
        if self._configured:
            return

        level_name = str(log_level or LOG_LEVEL).upper()
        level = getattr(logging, level_name, logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        # Timestamps in UTC
        formatter = TerminalSafeFormatter(
            fmt=str(LOG_FORMAT) or str(LOG_FORMAT.default()),
            datefmt=(str(LOG_DATE_FORMAT) or str(LOG_DATE_FORMAT.default())) + " UTC",
        )
        formatter.converter = time.gmtime

        if LOG_CONSOLE_HIGHLIGHTING:
            console_handler = RichHandler(
                console=Console(theme=ENGINE_THEME, highlight=False, stderr=True),
                highlighter=EngineLogHighlighter(),
                keywords=[],
                rich_tracebacks=True,
                show_path=False,
                show_time=False,
                show_level=False,
                markup=False,
            )
        else:
            console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if file_output is None:
            file_output = bool(LOG_FILE_OUTPUT)
        if file_output:
            path = log_file or LOG_FILE_PATH
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(path),
                maxBytes=LOG_MAX_FILE_SIZE,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        self.configure()
        return logging.getLogger(name)


class TerminalSafeFormatter(logging.Formatter):
    """Formatter that strips ANSI sequences and control characters."""

    # CSI sequences and lone two-byte escapes
    _ansi_escape_re = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    # Control characters other than tab and newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        return cls._control_chars_re.sub("", text)

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class EngineLogHighlighter(RegexHighlighter):
    """Colours levels, epochs, validator ids, amounts and settlement markers."""

    base_style = "stakepool."
    highlights = [
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<epoch>\bepoch \d+\b)",
        r"(?P<validator>\bvalidator \d+\b)",
        r"(?P<amount>\b\d{4,}\b)",
        r"(?P<boundary>\bBOUNDARY\b)",
        r"(?P<stalled>\bSTALLED\b)",
        r"(?P<timestamp>^(.*?)UTC)",
    ]


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the shared engine configuration."""
    return _manager.get_logger(name)
