"""Logging configuration: one `coursepilot` logger tree rendered through rich."""
import logging

from rich.logging import RichHandler

ROOT_LOGGER = "coursepilot"


def get_logger(name: str) -> logging.Logger:
    """Return a child of the package logger for `name` (usually `__name__`)."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: str = "WARNING") -> logging.Logger:
    """Attach a RichHandler to the package logger. Safe to call more than once."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s", "%H:%M:%S"))
        logger.addHandler(handler)

    # Avoid duplicate logs
    logger.propagate = False
    return logger
