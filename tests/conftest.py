"""
Shared pytest fixtures for notepro tests.

Provides in-memory stand-ins for the durable note store and the snapshot
cache so coordinator and migration tests run without SQLite.
"""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from notepro.errors import PersistenceError
from notepro.types import AppState, Note, NoteFormat, Project, TextBlock


class MemoryNoteStore:
    """
    Dict-backed note store that records every call.

    ``delay`` makes each operation yield to the event loop for that long,
    which lets tests interleave dispatches with in-flight writes.
    """

    def __init__(self, notes: Optional[list[Note]] = None, delay: float = 0.0):
        self.notes: dict[str, Note] = {n.id: n for n in notes or []}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.fail_puts = 0  # number of upcoming puts that fail
        self.closed = False

    async def _pause(self):
        if self.delay:
            await asyncio.sleep(self.delay)

    async def put(self, note: Note) -> None:
        await self._pause()
        self.calls.append(("put", note.id))
        if self.fail_puts:
            self.fail_puts -= 1
            raise PersistenceError(f"simulated put failure for {note.id}")
        self.notes[note.id] = note

    async def get_by_id(self, id: str) -> Optional[Note]:
        await self._pause()
        return self.notes.get(id)

    async def get_by_project(self, project_id: str) -> list[Note]:
        await self._pause()
        return [n for n in self.notes.values() if n.project_id == project_id]

    async def get_all(self) -> list[Note]:
        await self._pause()
        self.calls.append(("get_all", ""))
        return list(self.notes.values())

    async def remove(self, id: str) -> None:
        await self._pause()
        self.calls.append(("remove", id))
        self.notes.pop(id, None)

    async def close(self) -> None:
        self.closed = True

    def puts(self, note_id: Optional[str] = None) -> list[str]:
        return [nid for op, nid in self.calls if op == "put" and (note_id is None or nid == note_id)]


class FailingNoteStore(MemoryNoteStore):
    """Note store whose every operation fails."""

    async def put(self, note: Note) -> None:
        self.calls.append(("put", note.id))
        raise PersistenceError("store unavailable")

    async def get_all(self) -> list[Note]:
        raise PersistenceError("store unavailable")

    async def remove(self, id: str) -> None:
        self.calls.append(("remove", id))
        raise PersistenceError("store unavailable")


class MemorySnapshotCache:
    """Snapshot cache that keeps the last saved state in memory."""

    def __init__(self, snapshot: Optional[AppState] = None):
        self.snapshot = snapshot
        self.saves = 0

    def load_snapshot(self) -> Optional[AppState]:
        return self.snapshot

    def save_snapshot(self, state: AppState) -> bool:
        self.snapshot = state
        self.saves += 1
        return True


def make_project(id: str = "p1", name: str = "Project", ts: int = 1) -> Project:
    return Project(id=id, name=name, created_at=ts, updated_at=ts)


def make_note(
    id: str = "n1",
    project_id: str = "p1",
    title: str = "Note",
    text: str = "",
    legacy=None,
    updated_at: int = 1,
    created_at: int = 1,
    format: NoteFormat = NoteFormat.TEXT,
    tags=None,
) -> Note:
    """Note with one text block, or raw ``legacy`` content when given."""
    content = (TextBlock(id=f"text-{id}", content=text),) if legacy is None else legacy
    return Note(
        id=id,
        title=title,
        content=content,
        format=format,
        project_id=project_id,
        created_at=created_at,
        updated_at=updated_at,
        tags=tuple(tags) if tags is not None else None,
    )


@pytest.fixture
def memory_store():
    return MemoryNoteStore()


@pytest.fixture
def memory_cache():
    return MemorySnapshotCache()


@pytest.fixture
def profile_path(tmp_path, monkeypatch) -> Path:
    """Temporary profile directory, also used for the error log."""
    path = tmp_path / "profile"
    monkeypatch.setenv("NOTEPRO_PROFILE_PATH", str(path))
    return path
