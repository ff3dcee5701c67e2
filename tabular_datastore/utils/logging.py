"""Logging for datastore runs.

Console output goes through rich; every run also writes a DEBUG log to
workdir/logs. Messages about one resource carry a "[RESOURCE key]" prefix,
and source URLs are logged with their credentials masked.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

LOGGER_NAME = "tabular_datastore"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Query parameters whose values are credentials
_SECRET_PARAM = re.compile(
    r"(?<=[?&])(?P<name>(?:api[_-]?key|access[_-]?token|token|secret|password|signature|key)=)"
    r"(?P<value>[^&#\s]+)",
    re.IGNORECASE,
)
_URL_PASSWORD = re.compile(r"(?P<name>://[^/:@\s]+:)(?P<value>[^/@\s]+)(?=@)")


def setup_logging(workdir: Path, verbose: bool = True) -> logging.Logger:
    """Configure the package logger for one CLI run.

    Args:
        workdir: Datastore workdir; the log file goes to its logs/ directory.
        verbose: Show DEBUG messages on the console, not only INFO and up.

    Returns:
        The package logger.
    """
    logs_dir = Path(workdir) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"datastore_{datetime.now():%Y%m%d_%H%M%S}.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = RichHandler(show_path=False, rich_tracebacks=True, markup=False)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console)

    log_file_handler = logging.FileHandler(log_file, encoding="utf-8")
    log_file_handler.setLevel(logging.DEBUG)
    log_file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(log_file_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger.debug(f"Writing run log to {log_file}")
    return logger


class ResourceLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the resource they concern.

    Usage:
        logger = ResourceLogAdapter(base_logger, "abc-123__2")
        logger.info("Localizing")  # [RESOURCE abc-123__2] Localizing
    """

    def __init__(self, logger: logging.Logger, resource_key: str) -> None:
        super().__init__(logger, {"resource_key": resource_key})
        self.resource_key = resource_key

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        return f"[RESOURCE {self.resource_key}] {msg}", kwargs


def mask_url_sensitive_parts(url: str, visible_chars: int = 4) -> str:
    """Mask credential values in a source URL.

    Secret query parameters and the password of a user:password@host URL
    keep only their last visible_chars characters.

    Examples:
        >>> mask_url_sensitive_parts("https://example.com/a.csv?token=abcdef1234")
        'https://example.com/a.csv?token=******1234'
    """

    def mask(match: re.Match) -> str:
        value = match.group("value")
        shown = value[-visible_chars:] if len(value) > visible_chars else ""
        return match.group("name") + "*" * (len(value) - len(shown)) + shown

    return _URL_PASSWORD.sub(mask, _SECRET_PARAM.sub(mask, url))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger, or a child of it."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)
