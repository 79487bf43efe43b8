#!/usr/bin/env python3
"""Logging setup and per-operation log capture.

Diagnostics recorded while an operation runs are returned to the caller in
the envelope's ``logs`` field; stderr only shows warnings unless debugging.
"""

from __future__ import annotations

import io
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOGGER_NAME = "apple_mail"
MAX_LOG_SIZE = 5 * 1024 * 1024
BACKUP_COUNT = 3


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def setup_logging(debug: bool = False, log_file: Optional[Path] = None) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        if not isinstance(handler, _CaptureHandler):
            logger.removeHandler(handler)
            handler.close()

    # stdout carries the JSON envelope, so console output goes to stderr.
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s - %(name)s - %(message)s"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_file),
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)


class _CaptureHandler(logging.StreamHandler):
    pass


class OperationLogCapture:
    """Collect everything logged under ``apple_mail`` while the block runs.

    Usage::

        with OperationLogCapture() as capture:
            ...
            logs = capture.text()
    """

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level
        self.buffer = io.StringIO()
        self.handler = _CaptureHandler(self.buffer)
        self.handler.setLevel(level)
        self.handler.setFormatter(logging.Formatter("%(message)s"))
        self._previous_level: Optional[int] = None

    def __enter__(self) -> "OperationLogCapture":
        logger = logging.getLogger(LOGGER_NAME)
        self._previous_level = logger.level
        if logger.level == logging.NOTSET or logger.level > self.level:
            logger.setLevel(self.level)
        logger.addHandler(self.handler)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        logger = logging.getLogger(LOGGER_NAME)
        try:
            logger.removeHandler(self.handler)
        finally:
            self.handler.close()
            if self._previous_level is not None:
                logger.setLevel(self._previous_level)

    def text(self) -> str:
        return self.buffer.getvalue().rstrip("\n")
