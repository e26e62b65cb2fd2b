"""
Notes context: the live store wrapped around the reducer.

A NotesContext owns the current AppState and references to the two
persistence layers:

- the snapshot cache, written synchronously after every state change so a
  reload at any point resumes from the latest local state
- the durable note store, written asynchronously (fire-and-forget) for
  every note mutation, with writes for one note id applied strictly in
  dispatch order

Durable write failures are logged and never reach the dispatcher; the
in-memory state stays authoritative for the session.

Typical usage::

    async def main():
        ctx = open_context()
        await ctx.start()                 # one-time migration
        ctx.dispatch(AddProject(name="Inbox"))
        ...
        await ctx.aclose()                # flush autosave and pending writes
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .autosave import AutoSave
from .cache import KeyValueStore, SettingsCache, SnapshotCache
from .config import ProfileConfig, load_or_create_config, resolve_profile_path
from .document_store import NoteStore
from .errors import PersistenceError
from .protocol import NoteStoreProtocol, SnapshotCacheProtocol
from .reducer import (
    NOTE_MUTATIONS,
    Action,
    AddNote,
    DeleteNote,
    DeleteProject,
    InitFromDb,
    UpdateNote,
    reduce,
    removed_note_ids,
    validate_action,
)
from .types import EMPTY_STATE, AppState, Note

logger = logging.getLogger(__name__)

# Retry backoff for durable writes: BASE * 2^(attempt-1) seconds
WRITE_RETRY_BACKOFF_BASE = 0.5

Listener = Callable[[AppState, Action], None]


@dataclass
class LocalChanges:
    """Note ids touched by dispatches since the context was created."""
    created: set[str] = field(default_factory=set)
    updated: set[str] = field(default_factory=set)
    deleted: set[str] = field(default_factory=set)

    @property
    def touched(self) -> set[str]:
        return self.created | self.updated

    def __bool__(self) -> bool:
        return bool(self.created or self.updated or self.deleted)


class NotesContext:
    """
    Reducer state plus its persistence side effects.

    Construct once per session and pass it to every consumer.
    ``dispatch`` runs to completion before returning; durable writes it
    triggers run later on the event loop.
    """

    def __init__(
        self,
        store: NoteStoreProtocol,
        cache: SnapshotCacheProtocol,
        *,
        settings: Optional[SettingsCache] = None,
        autosave_delay: float = 1.0,
        write_retries: int = 0,
    ):
        """
        Args:
            store: Durable note store
            cache: Snapshot cache; its snapshot seeds the initial state
            settings: Settings entries (API key etc.), if available
            autosave_delay: Quiet interval before a debounced save fires
            write_retries: Extra attempts for a failed durable write
        """
        self.store = store
        self.cache = cache
        self.settings = settings
        self._write_retries = max(0, write_retries)

        self._state = cache.load_snapshot() or EMPTY_STATE
        self._listeners: list[Listener] = []
        self._chains: dict[str, asyncio.Task] = {}
        self._changes = LocalChanges()
        self._migration = None
        self._on_close: list[Callable[[], None]] = []

        self.autosave = AutoSave(self._autosave_note, delay=autosave_delay)

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def local_changes(self) -> LocalChanges:
        return self._changes

    @property
    def pending_writes(self) -> int:
        return len(self._chains)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(self, action: Action) -> AppState:
        """
        Apply an action and persist the result.

        Raises:
            ValidationError: required fields missing; state unchanged
            RuntimeError: a note mutation was dispatched outside a running
                event loop
        """
        validate_action(action)
        mirrors_notes = isinstance(action, NOTE_MUTATIONS) or (
            isinstance(action, DeleteProject) and bool(self._state.notes_in(action.id))
        )
        if mirrors_notes:
            # Fail before touching state rather than after
            asyncio.get_running_loop()

        before = self._state
        after = reduce(before, action)
        if after is before:
            return after

        self._state = after
        self.cache.save_snapshot(after)
        if mirrors_notes:
            self._mirror(action, before, after)
        self._notify(action)
        return after

    def _mirror(self, action: Action, before: AppState, after: AppState) -> None:
        if isinstance(action, AddNote):
            note = after.note(after.active_note)
            self._changes.created.add(note.id)
            self._enqueue_put(note)
        elif isinstance(action, UpdateNote):
            note = after.note(action.note.id)
            self._changes.updated.add(note.id)
            self._enqueue_put(note)
        elif isinstance(action, DeleteNote):
            self._changes.deleted.add(action.id)
            self._enqueue_remove(action.id)
        elif isinstance(action, DeleteProject):
            # Cascaded notes leave the durable store too
            for note_id in removed_note_ids(before, after):
                self._changes.deleted.add(note_id)
                self._enqueue_remove(note_id)

    def replace_notes(self, notes: list[Note]) -> AppState:
        """Bulk-replace the notes (projects unchanged) without mirroring."""
        return self.dispatch(InitFromDb.of(notes, self._state.projects))

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(state, action)`` after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, action: Action) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, action)
            except Exception:
                logger.exception("State listener failed")

    # -------------------------------------------------------------------------
    # Durable writes
    # -------------------------------------------------------------------------

    def _enqueue_put(self, note: Note) -> None:
        self._enqueue(note.id, "put", lambda: self.store.put(note))

    def _enqueue_remove(self, note_id: str) -> None:
        self._enqueue(note_id, "remove", lambda: self.store.remove(note_id))

    def _enqueue(self, note_id: str, op: str, make_call: Callable) -> None:
        """Chain a write behind any earlier write for the same note."""
        previous = self._chains.get(note_id)
        task = asyncio.get_running_loop().create_task(
            self._run_write(previous, note_id, op, make_call)
        )
        self._chains[note_id] = task

        def _done(t: asyncio.Task) -> None:
            if self._chains.get(note_id) is t:
                del self._chains[note_id]

        task.add_done_callback(_done)

    async def _run_write(self, previous: Optional[asyncio.Task], note_id: str,
                         op: str, make_call: Callable) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        attempts = 1 + self._write_retries
        for attempt in range(1, attempts + 1):
            try:
                await make_call()
                return
            except PersistenceError as e:
                if attempt < attempts:
                    delay = WRITE_RETRY_BACKOFF_BASE * 2 ** (attempt - 1)
                    logger.info("Durable %s of %s failed (attempt %d), retrying in %.1fs: %s",
                                op, note_id, attempt, delay, e)
                    await asyncio.sleep(delay)
                    continue
                logger.warning("Durable %s of %s failed: %s", op, note_id, e)
            except Exception as e:
                logger.warning("Durable %s of %s failed: %s", op, note_id, e, exc_info=True)
                return

    async def flush(self) -> None:
        """Wait for every queued durable write to finish."""
        while self._chains:
            await asyncio.wait(set(self._chains.values()))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _autosave_note(self, note: Note) -> None:
        self.dispatch(UpdateNote(note))

    async def start(self):
        """
        Run the startup migration. Later calls return the first result.

        Returns:
            MigrationResult
        """
        if self._migration is None:
            from .migration import migrate
            self._migration = await migrate(self)
        return self._migration

    async def aclose(self) -> None:
        """Flush pending saves and writes, then close the stores."""
        self.autosave.flush()
        await self.flush()
        await self.store.close()
        for close in self._on_close:
            close()
        self._on_close.clear()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False


def open_context(
    profile_path: Optional[Path] = None,
    config: Optional[ProfileConfig] = None,
) -> NotesContext:
    """
    Build a context over the stores of one profile directory.

    Args:
        profile_path: Profile directory (default: NOTEPRO_PROFILE_PATH or ~/.notepro)
        config: Already-loaded configuration (overrides profile_path)
    """
    if config is None:
        config = load_or_create_config(resolve_profile_path(profile_path))

    kv = KeyValueStore(config.path / "cache.db", quota_bytes=config.cache_quota_bytes)
    ctx = NotesContext(
        NoteStore(config.path / "notes.db"),
        SnapshotCache(kv),
        settings=SettingsCache(kv),
        autosave_delay=config.autosave_delay,
        write_retries=config.write_retries,
    )
    ctx._on_close.append(kv.close)
    logger.debug("Opened profile %s", config.path)
    return ctx
