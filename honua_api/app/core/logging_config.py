"""
Logging setup for the Honua API.

``setup_logging`` attaches a console handler (and optionally a file
handler) to the root logger exactly once.  Chatty HTTP client loggers
are capped at WARNING so outbound Stripe and link preview calls do not
flood the application log.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str = "INFO", logfile: Optional[str] = None) -> None:
    """Configure the root logger.

    Parameters
    ----------
    level : str
        Logging level name (``"DEBUG"``, ``"INFO"``...).  Unknown names
        fall back to INFO.
    logfile : Optional[str]
        Optional path of a log file, resolved against the current
        working directory.
    """
    root = logging.getLogger()
    if root.handlers:
        # Already configured, e.g. by the test runner or a second create_app().
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if logfile:
        handlers.append(logging.FileHandler(Path(logfile).resolve(), encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the standard library logger for ``name``."""
    return logging.getLogger(name)
