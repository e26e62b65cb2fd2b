"""
Search, filter and sort over the in-memory notes.

Results are derived from the current state on every call; nothing here is
persisted. The working set is one user's local notes, so a linear scan
is fine.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from .types import AppState, ImageBlock, Note, NoteFormat, TextBlock

SORT_KEYS = ("updatedAt", "createdAt", "title")
SORT_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class SearchFilters:
    format: Optional[NoteFormat] = None
    sort_by: str = "updatedAt"
    sort_direction: str = "desc"
    tags: Optional[tuple[str, ...]] = None

    def __post_init__(self):
        if self.sort_by not in SORT_KEYS:
            raise ValueError(f"sort_by must be one of {SORT_KEYS}: {self.sort_by!r}")
        if self.sort_direction not in SORT_DIRECTIONS:
            raise ValueError(
                f"sort_direction must be one of {SORT_DIRECTIONS}: {self.sort_direction!r}"
            )


DEFAULT_FILTERS = SearchFilters()


def _matches_term(note: Note, term: str) -> bool:
    if term in note.title.lower():
        return True
    if note.is_legacy:
        return isinstance(note.content, str) and term in note.content.lower()
    for block in note.content:
        if isinstance(block, TextBlock):
            if term in block.content.lower():
                return True
        elif isinstance(block, ImageBlock):
            continue
        else:
            raise TypeError(f"Unknown content block: {block!r}")
    return False


def _sort_key(sort_by: str):
    if sort_by == "title":
        return lambda n: n.title.casefold()
    if sort_by == "createdAt":
        return lambda n: n.created_at
    return lambda n: n.updated_at


def sort_notes(notes: list[Note], filters: SearchFilters) -> list[Note]:
    """Stable sort; equal keys keep their input order in both directions."""
    return sorted(
        notes,
        key=_sort_key(filters.sort_by),
        reverse=filters.sort_direction == "desc",
    )


def search_notes(
    state: AppState,
    search_term: str = "",
    global_search: bool = False,
    filters: SearchFilters = DEFAULT_FILTERS,
) -> list[Note]:
    """
    Filtered, sorted view of the notes.

    Args:
        state: Current application state
        search_term: Case-insensitive substring of the title or any text block
        global_search: Search every project instead of the active one
        filters: Format, tag and sort settings

    Returns:
        All matching notes (no pagination)
    """
    if global_search:
        notes = list(state.notes)
    elif state.active_project is None:
        return []
    else:
        notes = state.notes_in(state.active_project)

    term = search_term.lower() if search_term else ""
    if term:
        notes = [n for n in notes if _matches_term(n, term)]

    if filters.format is not None:
        notes = [n for n in notes if n.format == filters.format]

    if filters.tags:
        wanted = set(filters.tags)
        notes = [n for n in notes if n.tags and wanted.intersection(n.tags)]

    return sort_notes(notes, filters)


@dataclass
class SearchSession:
    """
    Ephemeral search settings for one session.

    Defaults reset on every load; ``clear()`` restores them.
    """
    search_term: str = ""
    global_search: bool = False
    filters: SearchFilters = field(default_factory=SearchFilters)

    def results(self, state: AppState) -> list[Note]:
        return search_notes(state, self.search_term, self.global_search, self.filters)

    def set_filters(self, **changes) -> SearchFilters:
        self.filters = replace(self.filters, **changes)
        return self.filters

    def active_filter_count(self) -> int:
        """Non-default settings; each selected tag counts once."""
        count = 0
        if self.filters.format is not None:
            count += 1
        if self.filters.sort_by != DEFAULT_FILTERS.sort_by:
            count += 1
        if self.filters.sort_direction != DEFAULT_FILTERS.sort_direction:
            count += 1
        if self.filters.tags:
            count += len(self.filters.tags)
        if self.global_search:
            count += 1
        return count

    def clear(self) -> None:
        self.search_term = ""
        self.global_search = False
        self.filters = SearchFilters()
