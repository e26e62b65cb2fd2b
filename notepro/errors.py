"""
Error types and error logging for notepro.

Validation errors are raised before a dispatch and leave state untouched.
Persistence errors are non-fatal: the in-memory state stays authoritative
and the failure is logged for diagnostics.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class NoteproError(Exception):
    """Base class for notepro errors."""


class ValidationError(NoteproError, ValueError):
    """A required field is missing or malformed; nothing was dispatched."""


class PersistenceError(NoteproError):
    """The durable store or the snapshot cache failed."""


class QuotaExceededError(PersistenceError):
    """The key-value cache refused a write because it is over quota."""


class MigrationError(NoteproError):
    """A single legacy note could not be converted."""

    def __init__(self, note_id: str, reason: str):
        super().__init__(f"Cannot migrate note {note_id!r}: {reason}")
        self.note_id = note_id
        self.reason = reason


def _error_log_path() -> Path:
    """Resolve error log path, respecting NOTEPRO_PROFILE_PATH."""
    profile = os.environ.get("NOTEPRO_PROFILE_PATH")
    if profile:
        return Path(profile) / "notepro-errors.log"
    return Path.home() / ".notepro" / "notepro-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
