"""Logging helpers for build runs."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_build_logger(
    dist_name: str | None,
    *,
    log_dir: str | None = None,
    quiet: bool = False,
    verbose: bool = False,
) -> tuple[logging.Logger, str | None]:
    """
    Configure the logger used by one builder.

    Messages go to stderr and, when `log_dir` is given, to a UTF-8 file
    `build.log` inside it. `quiet` limits the stream to warnings; `verbose`
    lets debug records through.
    """

    logger_name = f"distbuild.{dist_name or 'build'}"
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    if quiet:
        stream_handler.setLevel(logging.WARNING)
    elif verbose:
        stream_handler.setLevel(logging.DEBUG)
    else:
        stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, "build.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.debug("Build logging initialized for %s", logger_name)
    if log_file:
        logger.debug("Build log file: %s", log_file)

    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
