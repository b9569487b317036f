"""Logging bootstrap shared by the API and the batch script."""

from __future__ import annotations

import logging

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", format_string: str = DEFAULT_LOG_FORMAT) -> None:
    resolved = logging.getLevelName(level.upper().strip())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=format_string)
    logging.getLogger("package_changes").setLevel(resolved)
