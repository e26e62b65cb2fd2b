"""
One-time startup migration.

Runs after the context has been seeded from the snapshot cache:

1. Ask the durable store for every note.
2. If it has any, they become the authoritative ``notes`` collection
   (projects stay as loaded from the snapshot).
3. Otherwise, if the snapshot holds notes, convert any legacy string
   content into a single text block, persist every note once, and make
   the result the ``notes`` collection. A note whose content cannot be
   converted is logged and left in memory unconverted.
4. Otherwise there is nothing to do.

Dispatches can land while the store is being read. When any did, the bulk
replace becomes a merge by note id so those edits survive: local deletes
stay deleted, local creations are kept, and a note present on both sides
keeps whichever copy has the newer ``updated_at`` (the local copy on ties).
"""

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional

from .errors import MigrationError, PersistenceError
from .types import AppState, Note, new_text_block

if TYPE_CHECKING:
    from .context import LocalChanges, NotesContext

logger = logging.getLogger(__name__)

SOURCE_STORE = "store"
SOURCE_SNAPSHOT = "snapshot"
SOURCE_NONE = "none"
SOURCE_FAILED = "failed"


@dataclass
class MigrationResult:
    """What the startup migration did."""
    source: str
    notes: int = 0
    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    merged: bool = False
    error: Optional[str] = None


def convert_legacy_note(note: Note) -> Note:
    """
    Wrap a legacy note's string content in a single generated text block.

    Raises:
        MigrationError: the legacy content is not a string
    """
    if not note.is_legacy:
        return note
    if not isinstance(note.content, str):
        raise MigrationError(note.id, f"content is {type(note.content).__name__}, not text")
    return replace(note, content=(new_text_block(note.content),))


def merge_notes(stored: list[Note], state: AppState, changes: "LocalChanges") -> list[Note]:
    """
    Combine store notes with notes touched locally since boot.

    With no local changes the store copy wins outright.
    """
    if not changes:
        return list(stored)

    local = {n.id: n for n in state.notes}
    touched = changes.touched
    result = []
    seen = set()
    for note in stored:
        if note.id in changes.deleted:
            continue
        seen.add(note.id)
        mine = local.get(note.id)
        if (note.id in touched and mine is not None and not mine.is_legacy
                and mine.updated_at >= note.updated_at):
            result.append(mine)
        else:
            result.append(note)
    for note in state.notes:
        if note.id in touched and note.id not in seen and not note.is_legacy:
            result.append(note)
    return result


async def migrate(context: "NotesContext") -> MigrationResult:
    """Reconcile the snapshot-seeded state with the durable store."""
    try:
        stored = await context.store.get_all()
    except PersistenceError as e:
        logger.warning("Startup migration skipped, note store unavailable: %s", e)
        return MigrationResult(source=SOURCE_FAILED, error=str(e))

    if stored:
        changes = context.local_changes
        notes = merge_notes(stored, context.state, changes)
        context.replace_notes(notes)
        logger.info("Loaded %d notes from the note store%s",
                    len(notes), " (merged with local edits)" if changes else "")
        return MigrationResult(source=SOURCE_STORE, notes=len(notes), merged=bool(changes))

    if not context.state.notes:
        return MigrationResult(source=SOURCE_NONE)

    return await _migrate_snapshot_notes(context)


async def _migrate_snapshot_notes(context: "NotesContext") -> MigrationResult:
    result = MigrationResult(source=SOURCE_SNAPSHOT)
    converted: dict[str, Note] = {}

    for seeded in context.state.notes:
        note = context.state.note(seeded.id)
        if note is None:
            continue  # deleted while we were writing
        if not note.is_legacy and note.id in context.local_changes.touched:
            continue  # already mirrored by its own dispatch
        try:
            new = convert_legacy_note(note)
        except MigrationError as e:
            logger.warning("%s; skipping", e)
            result.skipped.append(note.id)
            continue
        if new is not note:
            result.migrated.append(note.id)
        converted[note.id] = new
        try:
            await context.store.put(new)
        except PersistenceError as e:
            # Kept in memory; the next save of this note writes it again
            logger.warning("Could not persist migrated note %s: %s", note.id, e)

    # Rebuild from the current state: dispatches may have landed meanwhile.
    # Skipped notes stay as they are so the snapshot still holds them.
    notes = [converted.get(note.id, note) if note.is_legacy else note
             for note in context.state.notes]
    context.replace_notes(notes)

    result.notes = len(notes)
    logger.info("Migrated %d legacy notes (%d skipped)",
                len(result.migrated), len(result.skipped))
    return result
