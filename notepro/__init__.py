"""
notepro

Local-first notes organised into projects. Notes hold ordered text and
image blocks; their format (text, markdown, code, task, link) is detected
from the text.

Quick Start:
    import asyncio
    from notepro import open_context, AddProject, AddNote, search_notes

    async def main():
        ctx = open_context()            # ~/.notepro/ by default
        await ctx.start()               # one-time migration from the cache
        ctx.dispatch(AddProject(name="Inbox"))
        project = ctx.state.projects[-1]
        ctx.dispatch(AddNote(project_id=project.id, title="Groceries"))
        await ctx.aclose()              # flush pending writes

    asyncio.run(main())

CLI Usage:
    notepro project-add "Inbox"
    notepro add "Groceries" --project Inbox --text "- milk"
    notepro find milk --global

Default Profile:
    ~/.notepro/ (note store, cache and notepro.toml).
    Override with NOTEPRO_PROFILE_PATH or --profile.

Environment Variables:
    NOTEPRO_PROFILE_PATH    - Override default profile location
    NOTEPRO_OPENAI_API_KEY  - API key for AI note processing
    NOTEPRO_VERBOSE         - Set to 1 for debug logging in the CLI
"""

from .context import NotesContext, open_context
from .errors import NoteproError, PersistenceError, ValidationError
from .formats import detect_format
from .reducer import (
    AddNote,
    AddProject,
    DeleteNote,
    DeleteProject,
    InitFromDb,
    SetActiveNote,
    SetActiveProject,
    UpdateNote,
    UpdateProject,
    reduce,
)
from .search import SearchFilters, SearchSession, search_notes
from .types import AppState, ImageBlock, Note, NoteFormat, Project, TextBlock

__version__ = "0.1.0"
__all__ = [
    "NotesContext",
    "open_context",
    "NoteproError",
    "PersistenceError",
    "ValidationError",
    "detect_format",
    "AddNote",
    "AddProject",
    "DeleteNote",
    "DeleteProject",
    "InitFromDb",
    "SetActiveNote",
    "SetActiveProject",
    "UpdateNote",
    "UpdateProject",
    "reduce",
    "SearchFilters",
    "SearchSession",
    "search_notes",
    "AppState",
    "ImageBlock",
    "Note",
    "NoteFormat",
    "Project",
    "TextBlock",
]
