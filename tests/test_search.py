"""Tests for search, filtering and sorting."""

from dataclasses import replace

import pytest

from conftest import make_note, make_project
from notepro.search import DEFAULT_FILTERS, SearchFilters, SearchSession, search_notes, sort_notes
from notepro.types import AppState, ImageBlock, NoteFormat, TextBlock


@pytest.fixture
def state():
    return AppState(
        projects=(make_project("p1"), make_project("p2")),
        notes=(
            make_note("a", "p1", title="Alpha", updated_at=100, created_at=20),
            make_note("b", "p1", title="Beta", updated_at=200, created_at=10),
        ),
        active_project="p1",
    )


def _titles(notes):
    return [n.title for n in notes]


class TestSearchNotes:

    def test_sort_updated_desc(self, state):
        filters = SearchFilters(sort_by="updatedAt", sort_direction="desc")
        assert _titles(search_notes(state, filters=filters)) == ["Beta", "Alpha"]

    def test_sort_updated_asc(self, state):
        filters = SearchFilters(sort_by="updatedAt", sort_direction="asc")
        assert _titles(search_notes(state, filters=filters)) == ["Alpha", "Beta"]

    def test_term_is_case_insensitive_substring(self, state):
        assert _titles(search_notes(state, "alp")) == ["Alpha"]
        assert _titles(search_notes(state, "ALP")) == ["Alpha"]

    def test_term_matches_text_blocks_not_images(self):
        note = replace(
            make_note("a", title="Untitled"),
            content=(TextBlock("t", "Buy MILK"), ImageBlock("i", "data:x", alt="cheese")),
        )
        state = AppState(projects=(make_project("p1"),), notes=(note,), active_project="p1")
        assert search_notes(state, "milk") == [note]
        assert search_notes(state, "cheese") == []

    def test_legacy_content_is_searchable(self):
        note = make_note("a", legacy="old plain text")
        state = AppState(projects=(make_project("p1"),), notes=(note,), active_project="p1")
        assert search_notes(state, "plain") == [note]

    def test_no_active_project_and_not_global(self, state):
        assert search_notes(replace(state, active_project=None)) == []

    def test_global_search_spans_projects(self, state):
        other = make_note("c", "p2", title="Alpine", updated_at=300)
        state = replace(state, notes=state.notes + (other,))
        assert _titles(search_notes(state, "alp")) == ["Alpha"]
        assert _titles(search_notes(state, "alp", global_search=True)) == ["Alpine", "Alpha"]

    def test_format_filter(self, state):
        code = make_note("c", "p1", title="Snippet", format=NoteFormat.CODE)
        state = replace(state, notes=state.notes + (code,))
        filters = SearchFilters(format=NoteFormat.CODE)
        assert _titles(search_notes(state, filters=filters)) == ["Snippet"]

    def test_tag_filter_matches_any(self, state):
        notes = (
            make_note("x", "p1", title="X", tags=["work"]),
            make_note("y", "p1", title="Y", tags=["home", "urgent"]),
            make_note("z", "p1", title="Z"),
        )
        state = replace(state, notes=notes)
        filters = SearchFilters(tags=("urgent", "work"), sort_by="title", sort_direction="asc")
        assert _titles(search_notes(state, filters=filters)) == ["X", "Y"]

    def test_title_sort_ignores_case(self):
        notes = [make_note("1", title="beta"), make_note("2", title="Alpha"), make_note("3", title="alpha2")]
        filters = SearchFilters(sort_by="title", sort_direction="asc")
        assert _titles(sort_notes(notes, filters)) == ["Alpha", "alpha2", "beta"]

    def test_sort_by_created(self, state):
        filters = SearchFilters(sort_by="createdAt", sort_direction="asc")
        assert _titles(search_notes(state, filters=filters)) == ["Beta", "Alpha"]

    def test_sort_is_stable(self):
        notes = [make_note(str(i), title=f"n{i}", updated_at=5) for i in range(5)]
        for direction in ("asc", "desc"):
            filters = SearchFilters(sort_direction=direction)
            assert _titles(sort_notes(notes, filters)) == [f"n{i}" for i in range(5)]

    def test_invalid_filters_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters(sort_by="size")
        with pytest.raises(ValueError):
            SearchFilters(sort_direction="sideways")


class TestSearchSession:

    def test_defaults(self):
        session = SearchSession()
        assert session.filters == DEFAULT_FILTERS
        assert session.active_filter_count() == 0

    def test_active_filter_count(self):
        session = SearchSession(global_search=True)
        session.set_filters(format=NoteFormat.TASK, sort_by="title", sort_direction="asc",
                            tags=("a", "b"))
        assert session.active_filter_count() == 6

    def test_results_and_clear(self, state):
        session = SearchSession(search_term="bet")
        assert _titles(session.results(state)) == ["Beta"]
        session.set_filters(sort_direction="asc")
        session.clear()
        assert session.search_term == ""
        assert session.filters == DEFAULT_FILTERS
        assert _titles(session.results(state)) == ["Beta", "Alpha"]

    def test_set_filters_validates(self):
        session = SearchSession()
        with pytest.raises(ValueError):
            session.set_filters(sort_by="nope")
        assert session.filters == DEFAULT_FILTERS
