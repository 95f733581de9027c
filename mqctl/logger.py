"""
Console logging for mqctl
Colored level names on terminals, plain text everywhere else
"""
import logging
import sys
from typing import Optional, TextIO, Union

import click


ROOT_LOGGER = "mqctl"


class ColorFormatter(logging.Formatter):
    """
    Colored log formatter for console output.
    """

    COLORS = {
        "DEBUG": "magenta",
        "INFO": "blue",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bright_red",
    }

    def __init__(self, use_colors: bool = True, include_timestamp: bool = True,
                 stream: Optional[TextIO] = None):
        """
        Initialize the color formatter.

        Args:
            use_colors: Whether to use colors in the output
            include_timestamp: Whether to include timestamps in log messages
            stream: Stream the handler writes to; colors only apply to terminals
        """
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, "isatty") and stream.isatty()

        if include_timestamp:
            fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
        else:
            fmt = "%(levelname)s %(name)s: %(message)s"

        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        color = self.COLORS.get(record.levelname)
        if self.use_colors and color:
            formatted = formatted.replace(
                record.levelname, click.style(record.levelname, fg=color, bold=True), 1)
        return formatted


def setup_logging(level: Union[int, str] = logging.INFO, use_colors: bool = True,
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Configure the mqctl logger hierarchy.

    Args:
        level: Logging level (name or number)
        use_colors: Whether to color level names
        stream: Output stream (defaults to sys.stderr)

    Returns:
        The configured "mqctl" logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ColorFormatter(use_colors=use_colors, stream=stream))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
