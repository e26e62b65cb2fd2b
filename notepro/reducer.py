"""
State reducer: the only place the application state changes.

``reduce(state, action)`` is a pure function returning the next state.
Actions that reference unknown projects or notes are no-ops (the same
state object is returned), so callers can tell "nothing changed" by
identity. Missing required fields are caught earlier by
``validate_action``, which raises ValidationError before anything is
dispatched.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Union

from .errors import ValidationError
from .types import (
    AppState,
    Note,
    NoteFormat,
    Project,
    generate_id,
    new_text_block,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_NOTE_TITLE = "Untitled Note"


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AddProject:
    name: str
    description: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class UpdateProject:
    project: Project


@dataclass(frozen=True)
class DeleteProject:
    id: str


@dataclass(frozen=True)
class AddNote:
    project_id: str
    title: str = DEFAULT_NOTE_TITLE
    format: Optional[NoteFormat] = None
    tags: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class UpdateNote:
    note: Note


@dataclass(frozen=True)
class DeleteNote:
    id: str


@dataclass(frozen=True)
class SetActiveProject:
    id: Optional[str]


@dataclass(frozen=True)
class SetActiveNote:
    id: Optional[str]


@dataclass(frozen=True)
class InitFromDb:
    notes: tuple[Note, ...]
    projects: tuple[Project, ...]

    @classmethod
    def of(cls, notes: Sequence[Note], projects: Sequence[Project]) -> "InitFromDb":
        return cls(notes=tuple(notes), projects=tuple(projects))


Action = Union[
    AddProject, UpdateProject, DeleteProject,
    AddNote, UpdateNote, DeleteNote,
    SetActiveProject, SetActiveNote, InitFromDb,
]

# Actions whose effect must be mirrored to the durable note store
NOTE_MUTATIONS = (AddNote, UpdateNote, DeleteNote)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

def validate_action(action: Action) -> None:
    """
    Reject actions with missing required fields.

    Raises:
        ValidationError: with a message suitable for showing inline
    """
    if isinstance(action, AddProject):
        if not action.name or not action.name.strip():
            raise ValidationError("Project name is required")
    elif isinstance(action, UpdateProject):
        if not action.project.name or not action.project.name.strip():
            raise ValidationError("Project name is required")
    elif isinstance(action, AddNote):
        if not action.project_id:
            raise ValidationError("A project is required to add a note")
    elif isinstance(action, UpdateNote):
        if not action.note.project_id:
            raise ValidationError("A project is required for a note")
        if action.note.is_legacy:
            raise ValidationError("Note content must be a sequence of blocks")
    elif isinstance(action, (DeleteProject, DeleteNote)):
        if not action.id:
            raise ValidationError("An id is required")


# -----------------------------------------------------------------------------
# Reducer
# -----------------------------------------------------------------------------

def reduce(state: AppState, action: Action, *, now: Optional[int] = None) -> AppState:
    """
    Compute the next state.

    Args:
        state: Current state
        action: Action to apply
        now: Timestamp to use for created/updated times (default: current time)

    Returns:
        The next state, or ``state`` itself when the action is a no-op
    """
    ts = now_ms() if now is None else now

    if isinstance(action, AddProject):
        project = Project(
            id=generate_id(),
            name=action.name,
            description=action.description,
            color=action.color,
            created_at=ts,
            updated_at=ts,
        )
        return replace(state, projects=state.projects + (project,))

    if isinstance(action, UpdateProject):
        existing = state.project(action.project.id)
        if existing is None:
            logger.debug("UpdateProject: unknown project %s", action.project.id)
            return state
        updated = replace(action.project, created_at=existing.created_at, updated_at=ts)
        return replace(state, projects=tuple(
            updated if p.id == updated.id else p for p in state.projects
        ))

    if isinstance(action, DeleteProject):
        return _delete_project(state, action.id)

    if isinstance(action, AddNote):
        if state.project(action.project_id) is None:
            logger.debug("AddNote: unknown project %s", action.project_id)
            return state
        note = Note(
            id=generate_id(),
            title=action.title,
            content=(new_text_block(),),
            format=action.format or NoteFormat.TEXT,
            project_id=action.project_id,
            created_at=ts,
            updated_at=ts,
            tags=action.tags,
        )
        return replace(state, notes=state.notes + (note,), active_note=note.id)

    if isinstance(action, UpdateNote):
        existing = state.note(action.note.id)
        if existing is None:
            logger.debug("UpdateNote: unknown note %s", action.note.id)
            return state
        if state.project(action.note.project_id) is None:
            logger.debug("UpdateNote: note %s points at unknown project %s",
                          action.note.id, action.note.project_id)
            return state
        updated = replace(action.note, created_at=existing.created_at, updated_at=ts)
        return replace(state, notes=tuple(
            updated if n.id == updated.id else n for n in state.notes
        ))

    if isinstance(action, DeleteNote):
        if state.note(action.id) is None:
            logger.debug("DeleteNote: unknown note %s", action.id)
            return state
        return replace(
            state,
            notes=tuple(n for n in state.notes if n.id != action.id),
            active_note=None if state.active_note == action.id else state.active_note,
        )

    if isinstance(action, SetActiveProject):
        if action.id is not None and state.project(action.id) is None:
            logger.debug("SetActiveProject: unknown project %s", action.id)
            return state
        current = state.note(state.active_note)
        keep_note = (
            action.id is not None
            and current is not None
            and current.project_id == action.id
        )
        return replace(
            state,
            active_project=action.id,
            active_note=current.id if keep_note else None,
        )

    if isinstance(action, SetActiveNote):
        if action.id is not None and state.note(action.id) is None:
            logger.debug("SetActiveNote: unknown note %s", action.id)
            return state
        return replace(state, active_note=action.id)

    if isinstance(action, InitFromDb):
        return _init_from_db(state, action)

    raise TypeError(f"Unknown action: {action!r}")


def _delete_project(state: AppState, project_id: str) -> AppState:
    if state.project(project_id) is None:
        logger.debug("DeleteProject: unknown project %s", project_id)
        return state
    # Both selections are checked independently
    active = state.note(state.active_note)
    active_note = state.active_note
    if active is not None and active.project_id == project_id:
        active_note = None
    return replace(
        state,
        projects=tuple(p for p in state.projects if p.id != project_id),
        notes=tuple(n for n in state.notes if n.project_id != project_id),
        active_project=None if state.active_project == project_id else state.active_project,
        active_note=active_note,
    )


def _init_from_db(state: AppState, action: InitFromDb) -> AppState:
    notes = tuple(action.notes)
    projects = tuple(action.projects)
    note_ids = {n.id for n in notes}
    project_ids = {p.id for p in projects}
    return replace(
        state,
        notes=notes,
        projects=projects,
        active_project=state.active_project if state.active_project in project_ids else None,
        active_note=state.active_note if state.active_note in note_ids else None,
    )


def removed_note_ids(before: AppState, after: AppState) -> list[str]:
    """Ids of notes present in ``before`` but gone from ``after``."""
    remaining = {n.id for n in after.notes}
    return [n.id for n in before.notes if n.id not in remaining]
