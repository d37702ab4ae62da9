"""Logging helpers for build runs."""

from __future__ import annotations

import logging
import os


def setup_operational_logger(log_dir: str, build_id: str) -> tuple[logging.Logger, str]:
    """
    Configure a logger that writes an operational log for one build.
    Logs go to both the console and a UTF-8 file under the provided directory.
    """

    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"{build_id}_oplog.log")

    logger = logging.getLogger(f"imagebuild.{build_id}")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    logger.info("Operational logging initialized for build %s", build_id)
    logger.debug("Operational log file: %s", log_file)

    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
