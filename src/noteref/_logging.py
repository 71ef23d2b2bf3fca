"""Logging configuration for noteref.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

The log level can be configured via the NOTEREF_LOG_LEVEL environment variable:
    - DEBUG: Cycle breaks, depth cut-offs and per-reference resolution
    - INFO: General operational messages (default)
    - WARNING: Unresolved references and unknown vaults
    - ERROR: Errors that prevented an operation
"""

import logging
import os
import sys

_quiet = False


def configure_logging() -> None:
    """Configure logging for the noteref package.

    Call this once at application startup (the CLI does).
    Subsequent calls are no-ops.
    """
    root_logger = logging.getLogger("noteref")

    if root_logger.handlers:
        return

    level_name = os.environ.get("NOTEREF_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if _quiet:
        level = max(level, logging.ERROR)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    # [level] logger: message
    formatter = logging.Formatter(
        fmt="[%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False


def set_quiet_mode(quiet: bool) -> None:
    """Only show errors on the package logger (used by ``--quiet``)."""
    global _quiet
    _quiet = quiet

    root_logger = logging.getLogger("noteref")
    if quiet:
        root_logger.setLevel(logging.ERROR)
        for handler in root_logger.handlers:
            handler.setLevel(logging.ERROR)
