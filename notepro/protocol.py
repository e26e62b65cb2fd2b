"""
Protocol definitions for the persistence layers.

- NoteStoreProtocol: the durable per-note store (SQLite locally; any
  async document store with a project index can stand in)
- SnapshotCacheProtocol: the whole-state fast-path cache
"""

from typing import Optional, Protocol, runtime_checkable

from .types import AppState, Note


@runtime_checkable
class NoteStoreProtocol(Protocol):
    """
    Async CRUD over note records keyed by id.

    Every operation may fail with PersistenceError.
    """

    async def put(self, note: Note) -> None: ...

    async def get_by_id(self, id: str) -> Optional[Note]: ...

    async def get_by_project(self, project_id: str) -> list[Note]: ...

    async def get_all(self) -> list[Note]: ...

    async def remove(self, id: str) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class SnapshotCacheProtocol(Protocol):
    """Whole-state snapshot. Neither method raises."""

    def load_snapshot(self) -> Optional[AppState]: ...

    def save_snapshot(self, state: AppState) -> bool: ...
