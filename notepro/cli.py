"""
CLI interface for notepro.

Usage:
    notepro project-add "Inbox"
    notepro add "Groceries" --text "- milk"
    notepro find milk --global
"""

import asyncio
import json
import os
import select
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from typing_extensions import Annotated

from .ai import process_note_with_ai, resolve_api_key
from .config import load_or_create_config, resolve_profile_path
from .context import NotesContext, open_context
from .editor import EditSession
from .errors import ValidationError
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode, remove_ops_log
from .reducer import (
    DEFAULT_NOTE_TITLE,
    AddNote,
    AddProject,
    DeleteNote,
    DeleteProject,
    SetActiveNote,
    SetActiveProject,
    UpdateProject,
)
from .search import SORT_KEYS, SearchSession
from .types import Note, NoteFormat, Project, TextBlock, note_text, note_to_dict, project_to_dict

T = TypeVar("T")

# Configure quiet mode by default (suppress verbose library output)
# Set NOTEPRO_VERBOSE=1 to enable debug mode via environment
if os.environ.get("NOTEPRO_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"notepro {version('notepro')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_profile_override: Optional[Path] = None


def _get_json_output() -> bool:
    return _json_output


def _get_profile_override() -> Optional[Path]:
    return _profile_override


app = typer.Typer(
    name="notepro",
    help="Local-first notes organised into projects.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    profile: Annotated[Optional[Path], typer.Option(
        "--profile", "-p",
        envvar="NOTEPRO_PROFILE_PATH",
        help="Path to the profile directory",
    )] = None,
):
    """Local-first notes organised into projects."""
    global _json_output, _profile_override
    _json_output = output_json
    _profile_override = profile
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


# -----------------------------------------------------------------------------
# Session plumbing
# -----------------------------------------------------------------------------

def _run(fn: Callable[[NotesContext], Awaitable[T]]) -> T:
    """
    Open the profile, run the startup migration, run ``fn`` and close.

    Closing flushes autosave and every queued durable write, so nothing
    is lost when the process exits.
    """
    try:
        config = load_or_create_config(resolve_profile_path(_get_profile_override()))
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    ops_handler = configure_ops_log(config.path)

    async def _session() -> T:
        ctx = open_context(config=config)
        try:
            await ctx.start()
            return await fn(ctx)
        finally:
            await ctx.aclose()

    try:
        return asyncio.run(_session())
    except ValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        remove_ops_log(ops_handler)


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _find_project(ctx: NotesContext, ref: Optional[str]) -> Project:
    """Resolve a project by id or (case-insensitive) name; default is the active one."""
    state = ctx.state
    if ref is None:
        project = state.project(state.active_project)
        if project is None:
            _fail("No active project. Use --project or `notepro project-add`")
        return project
    project = state.project(ref)
    if project is not None:
        return project
    matches = [p for p in state.projects if p.name.casefold() == ref.casefold()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        _fail(f"Project name is ambiguous: {ref}")
    _fail(f"Project not found: {ref}")


def _find_note(ctx: NotesContext, ref: str) -> Note:
    """Resolve a note by id or unique id prefix."""
    note = ctx.state.note(ref)
    if note is not None:
        return note
    matches = [n for n in ctx.state.notes if n.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        _fail(f"Note id is ambiguous: {ref}")
    _fail(f"Note not found: {ref}")


def _parse_format(value: Optional[str]) -> Optional[NoteFormat]:
    if value is None:
        return None
    try:
        return NoteFormat(value.lower())
    except ValueError:
        choices = ", ".join(f.value for f in NoteFormat)
        _fail(f"Unknown format '{value}'. Use one of: {choices}")


def _notice(message: str) -> None:
    typer.echo(message, err=True)


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns True only when stdin is a pipe with data ready to read.
    """
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_project_line(project: Project, active: bool, count: int) -> str:
    marker = "*" if active else " "
    return f"{marker} {project.id}  {project.name}  ({count} notes)"


def _format_note_line(note: Note) -> str:
    tags = f"  [{', '.join(note.tags)}]" if note.tags else ""
    return f"{note.id}  {note.format.value:<8}  {note.title}{tags}"


def _format_note(note: Note) -> str:
    lines = [
        f"id: {note.id}",
        f"title: {note.title}",
        f"format: {note.format.value}",
        f"project: {note.project_id}",
    ]
    if note.tags:
        lines.append(f"tags: {', '.join(note.tags)}")
    lines.append("")
    if note.is_legacy:
        lines.append(note_text(note))
    else:
        for block in note.content:
            if isinstance(block, TextBlock):
                lines.append(block.content)
            else:
                lines.append(f"[image {block.id}{': ' + block.alt if block.alt else ''}]")
    return "\n".join(lines)


def _echo_notes(notes: list[Note]) -> None:
    if _get_json_output():
        typer.echo(json.dumps([note_to_dict(n) for n in notes], indent=2))
    elif not notes:
        typer.echo("No notes.")
    else:
        typer.echo("\n".join(_format_note_line(n) for n in notes))


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------

@app.command("project-add")
def project_add(
    name: Annotated[str, typer.Argument(help="Project name")],
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    color: Annotated[Optional[str], typer.Option("--color", "-c")] = None,
):
    """Create a project and make it the active one."""
    async def _add(ctx: NotesContext) -> Project:
        ctx.dispatch(AddProject(name=name, description=description, color=color))
        project = ctx.state.projects[-1]
        ctx.dispatch(SetActiveProject(project.id))
        return project

    project = _run(_add)
    if _get_json_output():
        typer.echo(json.dumps(project_to_dict(project), indent=2))
    else:
        typer.echo(project.id)


@app.command("project-list")
def project_list():
    """List projects; the active one is marked with *."""
    async def _list(ctx: NotesContext):
        return ctx.state

    state = _run(_list)
    if _get_json_output():
        typer.echo(json.dumps([project_to_dict(p) for p in state.projects], indent=2))
        return
    if not state.projects:
        typer.echo("No projects.")
        return
    for p in state.projects:
        typer.echo(_format_project_line(p, p.id == state.active_project, len(state.notes_in(p.id))))


@app.command("project-update")
def project_update(
    project: Annotated[str, typer.Argument(help="Project id or name")],
    name: Annotated[Optional[str], typer.Option("--name", "-n")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    color: Annotated[Optional[str], typer.Option("--color", "-c")] = None,
):
    """Rename or re-describe a project."""
    async def _update(ctx: NotesContext) -> Project:
        current = _find_project(ctx, project)
        changes = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if color is not None:
            changes["color"] = color
        ctx.dispatch(UpdateProject(replace(current, **changes)))
        return ctx.state.project(current.id)

    updated = _run(_update)
    if _get_json_output():
        typer.echo(json.dumps(project_to_dict(updated), indent=2))
    else:
        typer.echo(f"Updated {updated.id}  {updated.name}")


@app.command("project-delete")
def project_delete(
    project: Annotated[str, typer.Argument(help="Project id or name")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete a project and every note in it."""
    async def _delete(ctx: NotesContext) -> tuple[Project, int]:
        target = _find_project(ctx, project)
        count = len(ctx.state.notes_in(target.id))
        if not yes and count and not typer.confirm(
            f"Delete project '{target.name}' and its {count} notes?"
        ):
            raise typer.Exit(1)
        ctx.dispatch(DeleteProject(target.id))
        return target, count

    target, count = _run(_delete)
    typer.echo(f"Deleted {target.name} ({count} notes)")


# -----------------------------------------------------------------------------
# Notes
# -----------------------------------------------------------------------------

@app.command()
def add(
    title: Annotated[Optional[str], typer.Argument(help="Note title")] = None,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-P", help="Project id or name (default: active project)"
    )] = None,
    text: Annotated[Optional[str], typer.Option("--text", "-t", help="Initial text")] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", help="Tag (repeatable)")] = None,
):
    """
    Add a note to a project.

    \b
    Examples:
        notepro add "Groceries" --text "- milk"
        echo "def f(): pass" | notepro add "Snippet"
    """
    if text is None and _has_stdin_data():
        piped = sys.stdin.read()
        text = piped if piped.strip() else None

    async def _add(ctx: NotesContext) -> Note:
        target = _find_project(ctx, project)
        ctx.dispatch(AddNote(
            project_id=target.id,
            title=title or DEFAULT_NOTE_TITLE,
            tags=tuple(dict.fromkeys(tag)) if tag else None,
        ))
        note = ctx.state.note(ctx.state.active_note)
        if text:
            session = EditSession(ctx, note.id, on_notice=_notice)
            session.update_text_block(note.content[0].id, text)
            session.close()
        ctx.dispatch(SetActiveProject(target.id))
        return ctx.state.note(note.id)

    note = _run(_add)
    if _get_json_output():
        typer.echo(json.dumps(note_to_dict(note), indent=2))
    else:
        typer.echo(note.id)


@app.command()
def edit(
    note: Annotated[str, typer.Argument(help="Note id (or unique prefix)")],
    title: Annotated[Optional[str], typer.Option("--title", "-T")] = None,
    text: Annotated[Optional[str], typer.Option(
        "--text", "-t", help="Replace the first text block"
    )] = None,
    append: Annotated[Optional[str], typer.Option(
        "--append", "-a", help="Add a new text block at the end"
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", help="Replace tags (repeatable)")] = None,
):
    """Edit a note's title, text or tags."""
    if title is None and text is None and append is None and tag is None:
        _fail("Nothing to change. Use --title, --text, --append or --tag")

    async def _edit(ctx: NotesContext) -> Note:
        target = _find_note(ctx, note)
        try:
            session = EditSession(ctx, target.id, on_notice=_notice)
        except ValueError as e:
            _fail(str(e))
        if title is not None:
            session.set_title(title)
        if tag is not None:
            session.set_tags(tag)
        if text is not None:
            first = next((b for b in session.note.content if isinstance(b, TextBlock)), None)
            if first is None:
                session.add_text_block(text)
            else:
                session.update_text_block(first.id, text)
        if append is not None:
            session.add_text_block(append)
        session.close()
        return ctx.state.note(target.id)

    updated = _run(_edit)
    if _get_json_output():
        typer.echo(json.dumps(note_to_dict(updated), indent=2))
    else:
        typer.echo(_format_note_line(updated))


@app.command()
def show(
    note: Annotated[str, typer.Argument(help="Note id (or unique prefix)")],
):
    """Show a note and make it the active one."""
    async def _show(ctx: NotesContext) -> Note:
        target = _find_note(ctx, note)
        ctx.dispatch(SetActiveProject(target.project_id))
        ctx.dispatch(SetActiveNote(target.id))
        return target

    target = _run(_show)
    if _get_json_output():
        typer.echo(json.dumps(note_to_dict(target), indent=2))
    else:
        typer.echo(_format_note(target))


@app.command("list")
def list_notes(
    project: Annotated[Optional[str], typer.Option(
        "--project", "-P", help="Project id or name (default: active project)"
    )] = None,
):
    """List the notes of a project, most recently updated first."""
    async def _list(ctx: NotesContext) -> list[Note]:
        target = _find_project(ctx, project)
        return SearchSession().results(replace(ctx.state, active_project=target.id))

    _echo_notes(_run(_list))


@app.command()
def delete(
    note: Annotated[str, typer.Argument(help="Note id (or unique prefix)")],
):
    """Delete a note."""
    async def _delete(ctx: NotesContext) -> Note:
        target = _find_note(ctx, note)
        ctx.dispatch(DeleteNote(target.id))
        return target

    target = _run(_delete)
    typer.echo(f"Deleted {target.id}")


@app.command()
def find(
    term: Annotated[Optional[str], typer.Argument(help="Text to look for in titles and text")] = None,
    global_search: Annotated[bool, typer.Option(
        "--global", "-g", help="Search every project, not just the active one"
    )] = False,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-P", help="Search this project instead of the active one"
    )] = None,
    format: Annotated[Optional[str], typer.Option(
        "--format", "-f", help="Only notes of this format"
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", help="Only notes with any of these tags (repeatable)"
    )] = None,
    sort: Annotated[str, typer.Option(
        "--sort", "-s", help=f"Sort key: {', '.join(SORT_KEYS)}"
    )] = "updatedAt",
    ascending: Annotated[bool, typer.Option("--asc/--desc", help="Sort direction")] = False,
):
    """
    Search, filter and sort notes.

    \b
    Examples:
        notepro find milk                  # Active project
        notepro find milk --global         # Every project
        notepro find -f code --sort title --asc
    """
    fmt = _parse_format(format)
    try:
        session = SearchSession(search_term=term or "", global_search=global_search)
        session.set_filters(
            format=fmt,
            sort_by=sort,
            sort_direction="asc" if ascending else "desc",
            tags=tuple(tag) if tag else None,
        )
    except ValueError as e:
        _fail(str(e))

    async def _find(ctx: NotesContext) -> list[Note]:
        state = ctx.state
        if project is not None and not global_search:
            state = replace(state, active_project=_find_project(ctx, project).id)
        elif state.active_project is None and not global_search:
            _fail("No active project. Use --project or --global")
        return session.results(state)

    _echo_notes(_run(_find))


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

@app.command()
def migrate():
    """Run the startup migration and report what it did."""
    async def _migrate(ctx: NotesContext):
        return await ctx.start()

    result = _run(_migrate)
    if _get_json_output():
        typer.echo(json.dumps(asdict(result), indent=2))
        return
    typer.echo(f"source: {result.source}")
    typer.echo(f"notes: {result.notes}")
    if result.migrated:
        typer.echo(f"migrated: {len(result.migrated)}")
    if result.skipped:
        typer.echo(f"skipped: {', '.join(result.skipped)}")
    if result.merged:
        typer.echo("merged with local edits")
    if result.error:
        typer.echo(f"error: {result.error}", err=True)


@app.command()
def config(
    api_key: Annotated[Optional[str], typer.Option(
        "--api-key", help="Save an OpenAI API key in this profile"
    )] = None,
    use_env_key: Annotated[Optional[bool], typer.Option(
        "--use-env-key/--no-use-env-key",
        help="Use the API key from the environment",
    )] = None,
    theme: Annotated[Optional[str], typer.Option(
        "--theme", help="Theme mode: light, dark or system"
    )] = None,
):
    """Show the profile configuration, or change settings."""
    if theme is not None and theme not in ("light", "dark", "system"):
        _fail(f"Unknown theme mode '{theme}'. Use light, dark or system")

    async def _config(ctx: NotesContext) -> dict:
        settings = ctx.settings
        if api_key is not None:
            settings.set_api_key(api_key)
        if use_env_key is not None:
            settings.set_use_env_api_key(use_env_key)
        if theme is not None:
            current = settings.get_theme_settings()
            settings.set_theme_settings({**current, "mode": theme, "followSystem": theme == "system"})
        return {
            "theme": settings.get_theme_settings(),
            "use_env_api_key": settings.get_use_env_api_key(),
            "api_key_set": settings.get_api_key() is not None,
        }

    info = _run(_config)
    cfg = load_or_create_config(resolve_profile_path(_get_profile_override()))
    data = {
        "profile": str(cfg.path),
        "autosave_delay": cfg.autosave_delay,
        "cache_quota_bytes": cfg.cache_quota_bytes,
        "write_retries": cfg.write_retries,
        "ai_model": cfg.ai_model,
        "ai_temperature": cfg.ai_temperature,
        **info,
    }
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
    else:
        for key, value in data.items():
            typer.echo(f"{key}: {value}")


@app.command()
def ai(
    note: Annotated[str, typer.Argument(help="Note id (or unique prefix)")],
    instruction: Annotated[str, typer.Argument(help="What to do with the note")],
    model: Annotated[Optional[str], typer.Option("--model", "-m", help="Chat model")] = None,
    apply: Annotated[bool, typer.Option(
        "--apply", help="Replace the note text with the result"
    )] = False,
):
    """
    Rewrite a note with an AI model.

    \b
    Examples:
        notepro ai abc123 "summarise in three bullets"
        notepro ai abc123 "fix the spelling" --apply
    """
    cfg = load_or_create_config(resolve_profile_path(_get_profile_override()))

    async def _ai(ctx: NotesContext):
        target = _find_note(ctx, note)
        if target.is_legacy:
            _fail(f"Note {target.id} has not been migrated yet")
        key = resolve_api_key(None, ctx.settings)
        result = await process_note_with_ai(
            target, instruction, key,
            model=model or cfg.ai_model,
            temperature=cfg.ai_temperature,
        )
        if result.success and apply:
            session = EditSession(ctx, target.id, on_notice=_notice)
            session.apply_ai_content(result.data)
            session.close()
        return result

    result = _run(_ai)
    if not result.success:
        _fail(result.error)
    if _get_json_output():
        typer.echo(json.dumps(asdict(result), indent=2))
    else:
        typer.echo(result.data)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="notepro CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
