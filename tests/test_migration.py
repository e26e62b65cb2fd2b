"""Tests for the one-time startup migration."""

import asyncio
import json
from dataclasses import replace

import pytest

from conftest import FailingNoteStore, MemoryNoteStore, MemorySnapshotCache, make_note, make_project
from notepro.cache import STATE_KEY, KeyValueStore, SnapshotCache
from notepro.context import LocalChanges, NotesContext
from notepro.errors import MigrationError
from notepro.migration import (
    SOURCE_FAILED,
    SOURCE_NONE,
    SOURCE_SNAPSHOT,
    SOURCE_STORE,
    convert_legacy_note,
    merge_notes,
)
from notepro.reducer import AddNote, DeleteNote, UpdateNote
from notepro.types import AppState, TextBlock


def _context(store, *notes):
    snapshot = AppState(projects=(make_project("p1"),), notes=tuple(notes))
    return NotesContext(store, MemorySnapshotCache(snapshot))


class TestConvertLegacyNote:

    def test_wraps_string_in_text_block(self):
        note = convert_legacy_note(make_note("n1", legacy="hello world"))
        assert len(note.content) == 1
        block = note.content[0]
        assert isinstance(block, TextBlock)
        assert block.content == "hello world"
        assert block.id.startswith("text-")

    def test_block_notes_unchanged(self):
        note = make_note("n1", text="x")
        assert convert_legacy_note(note) is note

    def test_non_string_legacy_content_fails(self):
        with pytest.raises(MigrationError) as exc_info:
            convert_legacy_note(make_note("n1", legacy={"weird": True}))
        assert exc_info.value.note_id == "n1"


class TestMergeNotes:

    def test_store_wins_without_local_changes(self):
        stored = [make_note("a", text="store")]
        state = AppState(notes=(make_note("a", text="local", updated_at=99),))
        assert merge_notes(stored, state, LocalChanges()) == stored

    def test_newer_local_edit_wins(self):
        stored = [make_note("a", text="store", updated_at=5)]
        state = AppState(notes=(make_note("a", text="local", updated_at=6),))
        merged = merge_notes(stored, state, LocalChanges(updated={"a"}))
        assert merged[0].content[0].content == "local"

    def test_newer_store_copy_wins(self):
        stored = [make_note("a", text="store", updated_at=7)]
        state = AppState(notes=(make_note("a", text="local", updated_at=6),))
        merged = merge_notes(stored, state, LocalChanges(updated={"a"}))
        assert merged[0].content[0].content == "store"

    def test_tie_goes_to_local(self):
        stored = [make_note("a", text="store", updated_at=5)]
        state = AppState(notes=(make_note("a", text="local", updated_at=5),))
        merged = merge_notes(stored, state, LocalChanges(updated={"a"}))
        assert merged[0].content[0].content == "local"

    def test_local_delete_and_create(self):
        stored = [make_note("a"), make_note("b")]
        state = AppState(notes=(make_note("b"), make_note("new")))
        merged = merge_notes(stored, state, LocalChanges(created={"new"}, deleted={"a"}))
        assert [n.id for n in merged] == ["b", "new"]


class TestMigrate:

    @pytest.mark.asyncio
    async def test_legacy_note_migrated_and_persisted_once(self):
        store = MemoryNoteStore()
        ctx = _context(store, make_note("n1", legacy="hello world"))
        result = await ctx.start()
        await ctx.flush()

        assert result.source == SOURCE_SNAPSHOT
        assert result.migrated == ["n1"]
        note = ctx.state.note("n1")
        assert not note.is_legacy
        assert [b.content for b in note.content] == ["hello world"]
        assert store.puts("n1") == ["n1"]
        assert store.notes["n1"] == note

    @pytest.mark.asyncio
    async def test_block_notes_in_snapshot_are_persisted_too(self):
        store = MemoryNoteStore()
        ctx = _context(store, make_note("n1", text="already blocks"), make_note("n2", legacy="old"))
        result = await ctx.start()
        assert result.migrated == ["n2"]
        assert result.notes == 2
        assert sorted(store.notes) == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_store_notes_are_authoritative(self):
        store = MemoryNoteStore([make_note("n1", text="from store"), make_note("n9")])
        ctx = _context(store, make_note("n1", text="from snapshot", updated_at=50))
        result = await ctx.start()
        assert result.source == SOURCE_STORE
        assert result.merged is False
        assert ctx.state.note("n1").content[0].content == "from store"
        assert ctx.state.note("n9") is not None
        assert store.puts() == []

    @pytest.mark.asyncio
    async def test_nothing_to_do(self):
        store = MemoryNoteStore()
        ctx = _context(store)
        result = await ctx.start()
        assert result.source == SOURCE_NONE
        assert store.puts() == []

    @pytest.mark.asyncio
    async def test_store_unavailable_keeps_snapshot_state(self, caplog):
        ctx = _context(FailingNoteStore(), make_note("n1", legacy="hello"))
        result = await ctx.start()
        assert result.source == SOURCE_FAILED
        assert result.error
        assert ctx.state.note("n1").content == "hello"
        assert "note store unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_bad_record_skipped_rest_migrated(self, caplog):
        store = MemoryNoteStore()
        ctx = _context(
            store,
            make_note("good1", legacy="one"),
            make_note("bad", legacy=42),
            make_note("good2", legacy="two"),
        )
        result = await ctx.start()
        assert result.skipped == ["bad"]
        assert sorted(result.migrated) == ["good1", "good2"]
        assert [n.id for n in ctx.state.notes] == ["good1", "bad", "good2"]
        assert ctx.state.note("bad").content == 42
        assert result.notes == 3
        assert "bad" not in store.notes
        assert "Cannot migrate note 'bad'" in caplog.text

    @pytest.mark.asyncio
    async def test_unreadable_snapshot_note_does_not_lose_projects(self, tmp_path, caplog):
        legacy = {
            "id": "n1", "title": "Old", "content": "hello", "format": "text",
            "projectId": "p1", "createdAt": 1, "updatedAt": 1,
        }
        with KeyValueStore(tmp_path / "cache.db") as kv:
            kv.set(STATE_KEY, json.dumps({
                "projects": [{"id": "p1", "name": "Work", "createdAt": 1, "updatedAt": 1}],
                "notes": [legacy, dict(legacy, id="n2", format="plain")],
                "activeProject": "p1",
                "activeNote": None,
            }))
            store = MemoryNoteStore()
            ctx = NotesContext(store, SnapshotCache(kv))
            result = await ctx.start()

            assert result.source == SOURCE_SNAPSHOT
            assert result.migrated == ["n1"]
            assert ctx.state.project("p1").name == "Work"
            assert [n.id for n in ctx.state.notes] == ["n1"]
            assert list(store.notes) == ["n1"]
            assert "Dropping unreadable note 'n2'" in caplog.text

            reloaded = SnapshotCache(kv).load_snapshot()
            assert reloaded.project("p1").name == "Work"
            assert reloaded.note("n1").content[0].content == "hello"

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_note_in_memory(self, caplog):
        store = MemoryNoteStore()
        store.fail_puts = 1
        ctx = _context(store, make_note("n1", legacy="hello"))
        await ctx.start()
        assert ctx.state.note("n1").content[0].content == "hello"
        assert "Could not persist migrated note n1" in caplog.text


class TestMigrationRace:

    @pytest.mark.asyncio
    async def test_local_edits_during_load_are_merged(self):
        store = MemoryNoteStore(
            [make_note("n1", text="store", updated_at=5), make_note("n2"), make_note("n3")],
            delay=0.02,
        )
        ctx = _context(store, make_note("n1", text="snapshot"), make_note("n2"))
        task = asyncio.create_task(ctx.start())
        await asyncio.sleep(0)

        note = ctx.state.note("n1")
        ctx.dispatch(UpdateNote(replace(note, content=(replace(note.content[0], content="local"),))))
        ctx.dispatch(DeleteNote("n2"))
        ctx.dispatch(AddNote(project_id="p1", title="Fresh"))
        fresh_id = ctx.state.active_note

        result = await task
        await ctx.flush()

        assert result.source == SOURCE_STORE
        assert result.merged is True
        assert [n.id for n in ctx.state.notes] == ["n1", "n3", fresh_id]
        assert ctx.state.note("n1").content[0].content == "local"
        assert "n2" not in store.notes

    @pytest.mark.asyncio
    async def test_delete_during_snapshot_migration(self):
        store = MemoryNoteStore(delay=0.02)
        ctx = _context(store, make_note("n1", legacy="keep me"), make_note("n2", legacy="drop me"))
        task = asyncio.create_task(ctx.start())
        await asyncio.sleep(0)
        ctx.dispatch(DeleteNote("n2"))

        result = await task
        await ctx.flush()

        assert [n.id for n in ctx.state.notes] == ["n1"]
        assert store.puts("n2") == []
        assert store.puts("n1") == ["n1"]
        assert result.migrated == ["n1"]
