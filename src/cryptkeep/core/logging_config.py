"""Logging setup for callers that drive the pipelines from a terminal."""

import logging
import sys


def configure_logging(level: int = logging.INFO, stream=None) -> logging.Logger:
    # Root handler once; per-file pipeline messages go through the package logger.
    logging.basicConfig(
        level=logging.WARNING,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=stream or sys.stderr,
    )
    logger = logging.getLogger("cryptkeep")
    logger.setLevel(level)
    return logger
