"""
Logging setup for bsvclaw.

All module loggers live under the "bsvclaw" namespace so one call to
setup_logging() at process start configures the agent, the bridge and the
web surface alike.

Log Format:
    2026-10-19 10:15:30 [INFO    ] bsvclaw.poller - New tx: 5f1c2a9e07b3...
    2026-10-19 10:15:32 [INFO    ] bsvclaw.job - [5f1c2a9e] Received: 3000 sats

Usage:
    from bsvclaw.logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO)
    logger = get_logger(__name__)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "bsvclaw"


def setup_logging(
    log_level: Union[int, str] = logging.INFO,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the bsvclaw logger tree.

    Console output is always enabled. When log_dir is given, a rotating
    bsvclaw.log (all levels) and bsvclaw_error.log (ERROR and above) are
    written there as well.
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            filename=log_dir / f"{ROOT_LOGGER}.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            filename=log_dir / f"{ROOT_LOGGER}_error.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        logger.addHandler(error_handler)

        logger.info(f"File logging enabled: {log_dir}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger under the bsvclaw namespace (pass __name__)."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes each message with the short job id and carries the full txid in `extra`."""

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.extra['job_id']}] {msg}", kwargs


def get_job_logger(txid: str) -> logging.LoggerAdapter:
    """Logger for one job; all jobs share the bsvclaw.job logger."""
    return JobLogAdapter(logging.getLogger(f"{ROOT_LOGGER}.job"), {"txid": txid, "job_id": txid[:8]})
