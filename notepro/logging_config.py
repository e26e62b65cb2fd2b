"""
Logging configuration for notepro.

Library code only creates module loggers; the CLI decides what is shown.
Quiet by default, debug output to stderr with --verbose or NOTEPRO_VERBOSE=1.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Third-party loggers that are noisy at INFO
_LIBRARY_LOGGERS = ("aiosqlite", "openai", "httpx", "httpcore")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("notepro").setLevel(logging.DEBUG)
    # aiosqlite logs every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)


def configure_ops_log(profile_path):
    """Configure a persistent operations log for a profile.

    Writes to {profile_path}/notepro-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close.
    """
    log_path = Path(profile_path) / "notepro-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    notepro_logger = logging.getLogger("notepro")
    notepro_logger.addHandler(handler)
    # Ensure notepro logger allows INFO through even in quiet mode
    if notepro_logger.level == logging.NOTSET or notepro_logger.level > logging.INFO:
        notepro_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    logging.getLogger("notepro").removeHandler(handler)
    handler.close()
