"""Process logging setup for programs that own a client cache.

Library modules only log through ``logging.getLogger(__name__)``. The process
entry point calls ``configure_logging`` (or ``new_client_cache(...,
setup_logging=True)``) once to install handlers and transport log levels.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from aws_client_cache.config import load_settings
from aws_client_cache.execution.aws_client import wire_logger

if TYPE_CHECKING:
    from aws_client_cache.config import Settings

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_TRANSPORT_LOGGERS = ("botocore", "boto3", "urllib3")

_logger = logging.getLogger(__name__)


def configure_logging(settings: Settings | None = None) -> None:
    """Install stderr (and optional file) handlers and set transport levels."""
    settings = settings or load_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream_handler]

    if settings.logging.file:
        try:
            Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.logging.file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.logging.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    _set_transport_levels(level, settings.cache.debug_transport)


def _set_transport_levels(level: int, debug_transport: bool) -> None:
    if debug_transport:
        # Transport debugging logs requests whatever LOG_LEVEL is.
        wire_logger.setLevel(logging.DEBUG)
        logging.getLogger("botocore").setLevel(logging.DEBUG)
        return

    wire_logger.setLevel(logging.NOTSET)
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
