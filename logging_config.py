"""
logging_config.py - Centralized logging configuration.

Provides consistent logging setup across all modules. Entry points
(CLI and HTTP API) call setup_logging() or setup_logging_from_env();
library modules only ever call get_logger(__name__).
"""

from __future__ import annotations

import logging
import os
import sys

LEVEL_NAMES: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(level: int = logging.INFO, json_format: bool = False) -> None:
    """Configure root logger with consistent formatting.

    Args:
        level: Logging level.
        json_format: If True, emit JSON-like log lines.
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
            '"module":"%(name)s","message":"%(message)s"}',
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(name)-20s] %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def setup_logging_from_env() -> None:
    """Configure logging from RECON_LOG_LEVEL and RECON_LOG_JSON."""
    level_name = os.getenv("RECON_LOG_LEVEL", "info").strip().lower()
    json_flag = os.getenv("RECON_LOG_JSON", "").strip().lower()
    setup_logging(
        level=LEVEL_NAMES.get(level_name, logging.INFO),
        json_format=json_flag in {"1", "true", "yes", "on"},
    )


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)
