"""
Console logging for the pipeliner.

Records are coloured by level on a terminal, and keyword context is appended
to the message as ``| key=value`` pairs.
"""

import logging
import sys
from typing import Any, Dict, Optional, TextIO

RESET = "\033[0m"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColorFormatter(logging.Formatter):
    """
    Formatter that colours the ``LEVEL [name]:`` prefix of a record.
    """

    COLORS = {
        "DEBUG": "\033[95m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[95m",
        "RESET": RESET,
    }

    def __init__(self, use_colors: bool = True, include_timestamp: bool = True):
        prefix = "%(asctime)s " if include_timestamp else ""
        super().__init__(
            prefix + "%(levelname)s [%(name)s]: %(message)s", datefmt=DATE_FORMAT
        )
        self.use_colors = use_colors and sys.stdout.isatty()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        color = self.COLORS.get(record.levelname)
        if not self.use_colors or color is None:
            return formatted

        head, sep, tail = formatted.partition(": ")
        if not sep:
            return formatted
        return f"{color}{head}: {RESET}{tail}"


def _with_context(message: str, context: Dict[str, Any]) -> str:
    if not context:
        return message
    pairs = " ".join(f"{key}={value}" for key, value in context.items())
    return f"{message} | {pairs}"


class PipelineLogger:
    """
    Wrapper around a standard logger that accepts keyword context.

    Creating a PipelineLogger replaces the handlers of the underlying logger,
    so a name always has exactly one console handler.
    """

    def __init__(
        self,
        name: str = "pipeliner",
        level: int = logging.INFO,
        use_colors: bool = True,
        stream: Optional[TextIO] = None,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(ColorFormatter(use_colors=use_colors))
        self.logger.handlers = [handler]

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log_with_context(logging.WARNING, message, **kwargs)

    def error(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        """
        Log an error, appending the exception text after the message.
        """
        if error is not None:
            message = f"{message}: {error}"
        self.log_with_context(logging.ERROR, message, **kwargs)

    def log_with_context(self, level: int, message: str, **kwargs: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, _with_context(message, kwargs))

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)


_loggers: Dict[str, PipelineLogger] = {}


def get_logger(name: str = "pipeliner") -> PipelineLogger:
    """
    Return the cached PipelineLogger for a name, creating it on first use.
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers[name] = PipelineLogger(name)
    return logger


def setup_logging(
    level: int = logging.INFO, use_colors: bool = True, name: str = "pipeliner"
) -> PipelineLogger:
    """
    Configure the logger for a name and move its children to the same level.

    :param level: Logging level.
    :param use_colors: Whether to colour terminal output.
    :param name: Root name, usually the package name.
    :returns: The configured logger, also returned by get_logger(name).
    """
    logger = _loggers[name] = PipelineLogger(name, level, use_colors)

    children = (
        existing
        for logger_name, existing in _loggers.items()
        if logger_name.startswith(f"{name}.")
    )
    for child in children:
        child.set_level(level)

    return logger
