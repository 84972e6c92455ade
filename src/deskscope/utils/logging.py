"""Logging setup utilities for deskscope.

All narration goes to stderr (and optionally a file); stdout is
reserved for JSON payloads.
"""

from __future__ import annotations

import logging
import sys

from deskscope.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ``deskscope`` logger.

    Args:
        config: Logging configuration. If None, uses defaults
                (WARNING level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger("deskscope")
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.WARNING))

    formatter = logging.Formatter(config.format)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.debug("Logging initialized at %s level", config.level)
