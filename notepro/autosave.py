"""
Debounced autosave keyed by note id.

Each note has at most one pending save: a newer edit cancels and replaces
the scheduled one, so a burst of edits produces a single write after the
quiet interval. ``flush`` saves pending edits immediately (navigation away
from a note, shutdown).
"""

import asyncio
import logging
from typing import Callable, Optional

from .errors import NoteproError
from .types import Note

logger = logging.getLogger(__name__)

AUTOSAVE_DELAY = 1.0  # seconds


class AutoSave:
    """Debounced save scheduled on the running event loop."""

    def __init__(self, save_callback: Callable[[Note], object], delay: float = AUTOSAVE_DELAY):
        self._save_callback = save_callback
        self._delay = delay
        self._pending: dict[str, tuple[asyncio.Task, Note]] = {}

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> list[str]:
        """Ids of notes with a scheduled save."""
        return list(self._pending)

    def schedule(self, note: Note) -> None:
        """Schedule a save of ``note``, superseding any pending save for it."""
        self.cancel(note.id)
        task = asyncio.get_running_loop().create_task(self._save_later(note))
        self._pending[note.id] = (task, note)

    def cancel(self, note_id: Optional[str] = None) -> None:
        """Drop the pending save for one note, or for all notes."""
        ids = [note_id] if note_id is not None else list(self._pending)
        for nid in ids:
            entry = self._pending.pop(nid, None)
            if entry is not None:
                entry[0].cancel()

    def flush(self, note_id: Optional[str] = None) -> None:
        """Save pending edits now, for one note or for all notes."""
        ids = [note_id] if note_id is not None else list(self._pending)
        for nid in ids:
            entry = self._pending.pop(nid, None)
            if entry is None:
                continue
            task, note = entry
            task.cancel()
            self._save(note)

    async def _save_later(self, note: Note) -> None:
        await asyncio.sleep(self._delay)
        entry = self._pending.get(note.id)
        if entry is None or entry[1] is not note:
            return
        del self._pending[note.id]
        self._save(note)

    def _save(self, note: Note) -> None:
        try:
            self._save_callback(note)
        except NoteproError as e:
            logger.warning("Autosave of %s failed: %s", note.id, e)
