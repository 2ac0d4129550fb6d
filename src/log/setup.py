import os
import sys
import logging
from typing import Optional

# ANSI colour codes per level. Child output and remediation hints use cyan.
RESET = "\x1b[0m"
CYAN = "\x1b[36m"
LEVEL_COLORS = {
    logging.DEBUG: "\x1b[2m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1;31m",
}


class MainFormatter(logging.Formatter):
    """
    A custom formatter to handle regular logs, raw subprocess logs and
    remediation hints, colouring each by level when enabled.
    """

    def __init__(self, use_color: bool = False) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')
        self.use_color = use_color

    def format(self, record):
        # The 'proc.' prefix is used by log_process_output in process_utils.py
        if record.name.startswith('proc.'):
            message = record.getMessage()
            color = CYAN if record.levelno < logging.ERROR else LEVEL_COLORS[logging.ERROR]
        elif getattr(record, 'remediation', False):
            message = f"Run: {record.getMessage()}"
            color = CYAN
        else:
            message = super().format(record)
            color = LEVEL_COLORS.get(record.levelno, "")

        if not self.use_color or not color:
            return message
        return f"{color}{message}{RESET}"


def _stream_supports_color(stream) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def setup_logging(console_level: int = logging.INFO, use_color: Optional[bool] = None) -> None:
    """
    Configures the root logger for the supervisor.
    This sets up a single console handler, clearing any previously configured
    handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param use_color: Force colour on or off. Defaults to colour on a TTY unless NO_COLOR is set.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    if use_color is None:
        use_color = _stream_supports_color(sys.stdout)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)
