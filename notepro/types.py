"""
Data types for notes, projects and the application state tree.

All types are frozen dataclasses with tuple-valued sequences, so a state
can be shared freely and two states built from the same data compare equal.
The ``*_to_dict`` / ``*_from_dict`` helpers convert to and from the
camelCase JSON layout used by both the snapshot cache and the durable store.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


# URL-safe alphabet, same shape as nanoid's default
_ID_ALPHABET = "useandom-26T198340PX75pxJACKVERYMINDBUSHWOLF_GQZbfghjklqvwyzrict"
ID_LENGTH = 21
BLOCK_SUFFIX_LENGTH = 6


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_id(size: int = ID_LENGTH) -> str:
    """Random, collision-resistant identifier (not sequential)."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def generate_block_id(kind: str) -> str:
    """Block id of the form ``<kind>-<ms>-<random>``, e.g. ``text-1700000000000-a1B2c3``."""
    return f"{kind}-{now_ms()}-{generate_id(BLOCK_SUFFIX_LENGTH)}"


class NoteFormat(str, Enum):
    """Derived classification of a note's text content."""
    TEXT = "text"
    MARKDOWN = "markdown"
    CODE = "code"
    TASK = "task"
    LINK = "link"

    def __str__(self) -> str:
        return self.value


# -----------------------------------------------------------------------------
# Content blocks
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TextBlock:
    id: str
    content: str = ""

    type = "text"


@dataclass(frozen=True)
class ImageBlock:
    id: str
    data_url: str
    alt: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None

    type = "image"


ContentBlock = Union[TextBlock, ImageBlock]


def new_text_block(content: str = "") -> TextBlock:
    return TextBlock(id=generate_block_id("text"), content=content)


def new_image_block(data_url: str, alt: Optional[str] = None) -> ImageBlock:
    return ImageBlock(id=generate_block_id("img"), data_url=data_url, alt=alt)


def block_to_dict(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "id": block.id, "content": block.content}
    if isinstance(block, ImageBlock):
        d: dict[str, Any] = {"type": "image", "id": block.id, "dataUrl": block.data_url}
        if block.alt is not None:
            d["alt"] = block.alt
        if block.width is not None:
            d["width"] = block.width
        if block.height is not None:
            d["height"] = block.height
        return d
    raise TypeError(f"Unknown content block: {block!r}")


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Parse one block. Raises ValueError for unknown or incomplete blocks."""
    kind = data.get("type")
    if kind == "text":
        return TextBlock(id=str(data["id"]), content=str(data.get("content", "")))
    if kind == "image":
        return ImageBlock(
            id=str(data["id"]),
            data_url=str(data["dataUrl"]),
            alt=data.get("alt"),
            width=data.get("width"),
            height=data.get("height"),
        )
    raise ValueError(f"Unknown content block type: {kind!r}")


# -----------------------------------------------------------------------------
# Projects and notes
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Project:
    id: str
    name: str
    created_at: int
    updated_at: int
    description: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class Note:
    """
    A note: ordered content blocks inside one project.

    ``content`` is a tuple of blocks. Notes read from a pre-block snapshot
    carry their raw content (normally a bare string) until migrated, see
    ``is_legacy``.
    """
    id: str
    title: str
    content: Union[tuple[ContentBlock, ...], str]
    format: NoteFormat
    project_id: str
    created_at: int
    updated_at: int
    tags: Optional[tuple[str, ...]] = None

    @property
    def is_legacy(self) -> bool:
        return not isinstance(self.content, tuple)

    def block(self, block_id: str) -> Optional[ContentBlock]:
        if self.is_legacy:
            return None
        for b in self.content:
            if b.id == block_id:
                return b
        return None


def note_text(note: Note, sep: str = "\n") -> str:
    """Concatenated content of the note's text blocks (legacy content as-is)."""
    if note.is_legacy:
        return note.content if isinstance(note.content, str) else ""
    parts = []
    for block in note.content:
        if isinstance(block, TextBlock):
            parts.append(block.content)
        elif isinstance(block, ImageBlock):
            continue
        else:
            raise TypeError(f"Unknown content block: {block!r}")
    return sep.join(parts)


def project_to_dict(project: Project) -> dict[str, Any]:
    d: dict[str, Any] = {"id": project.id, "name": project.name}
    if project.description is not None:
        d["description"] = project.description
    if project.color is not None:
        d["color"] = project.color
    d["createdAt"] = project.created_at
    d["updatedAt"] = project.updated_at
    return d


def project_from_dict(data: dict[str, Any]) -> Project:
    return Project(
        id=str(data["id"]),
        name=str(data["name"]),
        description=data.get("description"),
        color=data.get("color"),
        created_at=int(data["createdAt"]),
        updated_at=int(data["updatedAt"]),
    )


def note_to_dict(note: Note) -> dict[str, Any]:
    if note.is_legacy:
        content: Any = note.content
    else:
        content = [block_to_dict(b) for b in note.content]
    d: dict[str, Any] = {
        "id": note.id,
        "title": note.title,
        "content": content,
        "format": note.format.value,
        "projectId": note.project_id,
        "createdAt": note.created_at,
        "updatedAt": note.updated_at,
    }
    if note.tags is not None:
        d["tags"] = list(note.tags)
    return d


def note_from_dict(data: dict[str, Any], *, allow_legacy: bool = False) -> Note:
    """
    Parse a note record.

    Args:
        data: camelCase note dict
        allow_legacy: keep non-list (legacy) content instead of rejecting it

    Raises:
        ValueError / KeyError: malformed record
    """
    raw = data.get("content", [])
    if isinstance(raw, list):
        content: Union[tuple[ContentBlock, ...], str] = tuple(block_from_dict(b) for b in raw)
    elif allow_legacy:
        content = raw
    else:
        raise ValueError(f"Note {data.get('id')!r} has unreadable content: {type(raw).__name__}")

    tags = data.get("tags")
    return Note(
        id=str(data["id"]),
        title=str(data.get("title", "")),
        content=content,
        format=NoteFormat(data.get("format", NoteFormat.TEXT.value)),
        project_id=str(data["projectId"]),
        created_at=int(data["createdAt"]),
        updated_at=int(data["updatedAt"]),
        tags=tuple(str(t) for t in tags) if tags is not None else None,
    )


# -----------------------------------------------------------------------------
# Application state
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AppState:
    """Root of the in-memory state tree."""
    projects: tuple[Project, ...] = ()
    notes: tuple[Note, ...] = ()
    active_project: Optional[str] = None
    active_note: Optional[str] = None

    def project(self, project_id: Optional[str]) -> Optional[Project]:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def note(self, note_id: Optional[str]) -> Optional[Note]:
        for n in self.notes:
            if n.id == note_id:
                return n
        return None

    def notes_in(self, project_id: str) -> list[Note]:
        return [n for n in self.notes if n.project_id == project_id]


EMPTY_STATE = AppState()


def state_to_dict(state: AppState) -> dict[str, Any]:
    return {
        "projects": [project_to_dict(p) for p in state.projects],
        "notes": [note_to_dict(n) for n in state.notes],
        "activeProject": state.active_project,
        "activeNote": state.active_note,
    }


_RECORD_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


def state_from_dict(data: dict[str, Any]) -> AppState:
    """
    Parse a whole-state snapshot. Legacy string content is preserved.

    Records are parsed one at a time: an unreadable project or note is
    logged and dropped, the rest of the snapshot survives. Selection
    pointing at a dropped record is cleared.
    """
    projects = []
    for raw in data.get("projects") or []:
        try:
            projects.append(project_from_dict(raw))
        except _RECORD_ERRORS as e:
            logger.warning("Dropping unreadable project %r from snapshot: %s", _record_id(raw), e)

    notes = []
    for raw in data.get("notes") or []:
        try:
            notes.append(note_from_dict(raw, allow_legacy=True))
        except _RECORD_ERRORS as e:
            logger.warning("Dropping unreadable note %r from snapshot: %s", _record_id(raw), e)

    active_project = data.get("activeProject")
    if active_project is not None and not any(p.id == active_project for p in projects):
        active_project = None
    active_note = data.get("activeNote")
    if active_note is not None and not any(n.id == active_note for n in notes):
        active_note = None

    return AppState(
        projects=tuple(projects),
        notes=tuple(notes),
        active_project=active_project,
        active_note=active_note,
    )


def _record_id(raw: Any) -> Any:
    return raw.get("id") if isinstance(raw, dict) else None
