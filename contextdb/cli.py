"""
CLI interface for the context store.

Usage:
    contextdb init
    contextdb seed --docs docs --todo todo
    contextdb retrieve "auth flow"
    contextdb todo-section 2
    contextdb journal entry.json
"""

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from . import retrieval, storage
from .api import ContextDB
from .logging_config import configure_quiet_mode, enable_debug_mode
from .parsers import (
    checklist_to_indexed_sections,
    find_checklist_section,
    parse_checklist,
    parse_journal,
    parse_sections,
)
from .types import (
    ChecklistSection,
    ContextBundle,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    SessionSummary,
    utc_now,
)

# Content longer than this is truncated in text output
PREVIEW_CHARS = 500

DEFAULT_TODO_FILE = Path("todo") / "tasks.md"


# Configure quiet mode by default (suppress verbose library output)
# Set CONTEXTDB_VERBOSE=1 to enable debug mode via environment
if os.environ.get("CONTEXTDB_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"contextdb {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="contextdb",
    help="Index project markdown into a vector store and retrieve targeted context.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="CONTEXTDB_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Index project markdown into a vector store and retrieve targeted context."""


def _get_db() -> ContextDB:
    """Open a handle on the configured store, reporting config errors cleanly."""
    import atexit

    from .errors import ConfigError

    try:
        db = ContextDB(_get_store_override(), ops_log=True)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(db.close)
    return db


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _markdown_files(directory: Path) -> list[Path]:
    """Markdown files directly inside a directory, sorted by name."""
    return sorted(
        p for p in directory.iterdir()
        if p.suffix == ".md" and p.is_file() and not p.name.startswith(".")
    )


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _preview(text: str) -> str:
    if len(text) > PREVIEW_CHARS:
        return text[:PREVIEW_CHARS] + "..."
    return text


def _checkbox(completed: bool) -> str:
    return "[x]" if completed else "[ ]"


def _done_icon(pct: int) -> str:
    return "✓" if pct == 100 else "○"


def render_sessions(sessions: list[SessionSummary]) -> str:
    if not sessions:
        return "No session summaries found."
    blocks = []
    for session in sessions:
        lines = [f"[{session.timestamp}]", session.summary]
        if session.focus_areas:
            lines.append(f"Focus: {', '.join(session.focus_areas)}")
        if session.next_steps:
            lines.append(f"Next: {', '.join(session.next_steps)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_checklist_sections(sections: list[IndexedChecklistSection]) -> str:
    if not sections:
        return "No relevant checklist sections found."
    blocks = []
    for section in sections:
        lines = [
            f"{_done_icon(section.completion_pct)} Section {section.section_id}: "
            f"{section.name} ({section.completion_pct}%)",
            f"   Source: {section.source_file}",
        ]
        lines.extend(f"    {_checkbox(i.completed)} {i.description}" for i in section.items)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_sections(sections: list[Section]) -> str:
    if not sections:
        return "No relevant document sections found."
    return "\n\n".join(f"### {s.title}\n{_preview(s.content)}" for s in sections)


def render_journal_entries(entries: list[JournalEntry]) -> str:
    if not entries:
        return "No relevant journal entries found."
    blocks = []
    for entry in entries:
        line = f"[{entry.timestamp}] {entry.summary}"
        if entry.topics:
            line += f"\nTopics: {', '.join(entry.topics)}"
        blocks.append(line)
    return "\n\n".join(blocks)


def render_bundle(bundle: ContextBundle, query: str) -> str:
    """Render a context bundle as plain text, one titled block per source."""
    out = [f'Query: "{query}"', "=" * 60]

    out += ["", "=== RECENT SESSIONS ===", "", render_sessions(bundle.recent_sessions)]
    out += ["", "=== RELEVANT CHECKLIST SECTIONS ===", "",
            render_checklist_sections(bundle.relevant_checklist_sections)]

    out += ["", "=== CHECKLIST STATE (latest snapshot) ===", ""]
    state = bundle.todo_state
    if state is None:
        out.append("No checklist snapshot found.")
    else:
        out.append(
            f"Overall: {state.overall_completion_pct}% complete "
            f"({state.completed_items}/{state.total_items})  [{state.timestamp}]"
        )
        for section in state.sections:
            out.append(
                f"{_done_icon(section.completion_pct)} {section.section_id}. "
                f"{section.name} ({section.completion_pct}%)"
            )
            out.extend(f"    {_checkbox(i.completed)} {i.description}" for i in section.items)

    out += ["", "=== RELEVANT DOCUMENT SECTIONS ===", "", render_sections(bundle.relevant_sections)]
    out += ["", "=== RELEVANT JOURNAL ENTRIES ===", "", render_journal_entries(bundle.journal_entries)]
    out += ["", "=" * 60]
    return "\n".join(out)


def render_checklist_section(section: ChecklistSection) -> str:
    lines = [
        f"Name: {section.name}",
        f"ID: {section.section_id}",
        f"Completion: {section.completion_pct}%",
        "",
        "Tasks:",
    ]
    lines.extend(f"  {_checkbox(i.completed)} {i.id}: {i.description}" for i in section.items)
    return "\n".join(lines)


def render_available_sections(sections: list[ChecklistSection]) -> str:
    lines = ["Section not found. Available sections:"]
    lines.extend(f"  - {s.section_id}: {s.name} ({s.completion_pct}%)" for s in sections)
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init():
    """Create the store directory, config file and collections."""
    db = _get_db()
    created = asyncio.run(storage.initialize(db))
    if _get_json_output():
        typer.echo(json.dumps({"store": str(db.path), "created": created}))
        return
    typer.echo(f"Context store initialized at {db.path}")
    for name in created:
        typer.echo(f"  created {name}")


async def _seed(db: ContextDB, docs: Path, todo: Path, journal: Path) -> dict:
    report = {"store": str(db.path), "docs": {}, "todo": {}, "journal_sessions": None}
    await storage.initialize(db)

    if docs.is_dir():
        for path in _markdown_files(docs):
            sections = parse_sections(_read_text(path), path.name)
            count = await storage.reindex_sections(db, sections, path.name)
            report["docs"][path.name] = count

    if todo.is_dir():
        for path in _markdown_files(todo):
            state = parse_checklist(_read_text(path))
            if state.total_items == 0:
                continue
            source_file = path.as_posix()
            await storage.snapshot_checklist(db, state)
            await storage.reindex_checklist_sections(
                db, checklist_to_indexed_sections(state, source_file), source_file
            )
            report["todo"][source_file] = {
                "sections": len(state.sections),
                "items": state.total_items,
                "completion_pct": state.overall_completion_pct,
            }

    if journal.is_file():
        report["journal_sessions"] = len(parse_journal(_read_text(journal)))
    return report


@app.command()
def seed(
    docs: Annotated[Path, typer.Option(
        "--docs", help="Directory of markdown documents to index",
    )] = Path("docs"),
    todo: Annotated[Path, typer.Option(
        "--todo", help="Directory of markdown checklists to snapshot and index",
    )] = Path("todo"),
    journal: Annotated[Path, typer.Option(
        "--journal", help="Session journal to scan",
    )] = Path("journal.md"),
):
    """Initialize the store and index documents and checklists."""
    db = _get_db()
    report = asyncio.run(_seed(db, docs, todo, journal))
    if _get_json_output():
        typer.echo(json.dumps(report, indent=2))
        return

    typer.echo(f"Seeding context store at {report['store']}")
    if not docs.is_dir():
        typer.echo(f"No {docs}/ directory found, skipping documents.")
    for name, count in report["docs"].items():
        typer.echo(f"  - {name}: {count} sections")
    typer.echo(f"Documents: {sum(report['docs'].values())} sections indexed.")

    if not todo.is_dir():
        typer.echo(f"No {todo}/ directory found, skipping checklists.")
    for name, info in report["todo"].items():
        typer.echo(
            f"  - {name}: {info['sections']} sections, {info['items']} items "
            f"({info['completion_pct']}% complete)"
        )
    typer.echo(f"Checklists: {sum(i['items'] for i in report['todo'].values())} items indexed.")

    if report["journal_sessions"] is None:
        typer.echo(f"No {journal} found, skipping journal.")
    else:
        typer.echo(
            f"Journal: {report['journal_sessions']} sessions found "
            f"(entries are stored with `contextdb journal`)."
        )


async def _retrieve(db: ContextDB, query: str) -> Optional[ContextBundle]:
    if not await retrieval.is_available(db):
        return None
    return await retrieval.get_context_bundle(db, query)


@app.command()
def retrieve(
    query: Annotated[str, typer.Argument(help="What the context is for")] = "project context",
):
    """Print the context bundle for a query."""
    db = _get_db()
    bundle = asyncio.run(_retrieve(db, query))
    if bundle is None:
        typer.echo("Context store: not available", err=True)
        typer.echo("Run `contextdb seed` to initialize.", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps({"query": query, **bundle.to_dict()}, indent=2))
    else:
        typer.echo(render_bundle(bundle, query))


@app.command("todo-section")
def todo_section(
    query: Annotated[str, typer.Argument(help="Section id (e.g. 2, 1.1) or part of its name")],
    file: Annotated[Path, typer.Option(
        "--file", "-f", help="Checklist file to read",
    )] = DEFAULT_TODO_FILE,
):
    """Show one checklist section, read directly from the file."""
    if not file.is_file():
        typer.echo(f"Error: no checklist at {file}", err=True)
        raise typer.Exit(1)

    state = parse_checklist(_read_text(file))
    section = find_checklist_section(state, query)
    if section is None:
        if _get_json_output():
            typer.echo(json.dumps({"found": False, "sections": [
                {"section_id": s.section_id, "name": s.name, "completion_pct": s.completion_pct}
                for s in state.sections
            ]}))
        else:
            typer.echo(render_available_sections(state.sections))
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps(section.to_dict(), indent=2))
    else:
        typer.echo(render_checklist_section(section))


def _string_list(data: dict, *keys: str) -> list[str]:
    for key in keys:
        if key in data and data[key] is not None:
            value = data[key]
            if not isinstance(value, list):
                raise ValueError(f"'{key}' must be a list of strings")
            return [str(v) for v in value]
    return []


def _load_journal_json(path: Path) -> dict:
    """Read and validate a journal entry JSON file. Accepts camelCase or snake_case keys."""
    data = json.loads(_read_text(path))
    if not isinstance(data, dict):
        raise ValueError("journal entry must be a JSON object")
    for key in ("summary", "content"):
        if not isinstance(data.get(key), str) or not data[key].strip():
            raise ValueError(f"'{key}' is required and must be a non-empty string")
    return {
        "summary": data["summary"].strip(),
        "content": data["content"].strip(),
        "topics": _string_list(data, "topics"),
        "work_completed": _string_list(data, "workCompleted", "work_completed"),
        "open_items": _string_list(data, "openItems", "open_items"),
    }


async def _store_journal(db: ContextDB, data: dict, todo_file: Path) -> Optional[dict]:
    if not await retrieval.is_available(db):
        return None

    millis = time.time_ns() // 1_000_000
    timestamp = utc_now()
    entry = JournalEntry(
        id=f"journal-{millis}",
        timestamp=timestamp,
        summary=data["summary"],
        content=data["content"],
        topics=data["topics"],
        work_completed=data["work_completed"],
        open_items=data["open_items"],
    )
    summary = SessionSummary(
        id=f"session-{millis}",
        timestamp=timestamp,
        summary=data["summary"],
        focus_areas=data["topics"],
        next_steps=data["open_items"],
    )
    result = {
        "journal_entry": await storage.store_journal_entry(db, entry),
        "session_summary": await storage.store_session_summary(db, summary),
        "snapshot": None,
    }
    if todo_file.is_file():
        state = parse_checklist(_read_text(todo_file))
        result["snapshot"] = await storage.snapshot_checklist(db, state)
    return result


@app.command()
def journal(
    path: Annotated[Path, typer.Argument(help="JSON file with summary, content, topics, ...")],
    todo_file: Annotated[Path, typer.Option(
        "--todo-file", help="Checklist to snapshot alongside the entry",
    )] = DEFAULT_TODO_FILE,
):
    """Store a journal entry and session summary from a JSON file."""
    if not path.is_file():
        typer.echo(f"Error: {path} not found", err=True)
        raise typer.Exit(1)
    try:
        data = _load_journal_json(path)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        typer.echo(f"Error: invalid journal entry: {e}", err=True)
        raise typer.Exit(1)

    db = _get_db()
    result = asyncio.run(_store_journal(db, data, todo_file))
    if result is None:
        typer.echo("Context store: not available", err=True)
        typer.echo("Run `contextdb seed` first.", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps(result))
        return
    typer.echo(f"Journal entry stored: {result['journal_entry']}")
    typer.echo(f"Session summary stored: {result['session_summary']}")
    if result["snapshot"]:
        typer.echo(f"Checklist snapshot stored: {result['snapshot']}")


async def _status(db: ContextDB) -> dict:
    available = await retrieval.is_available(db)
    counts = await retrieval.collection_counts(db)
    return {
        "store": str(db.path),
        "available": available,
        "embedding": db.config.embedding.name,
        "model": db.config.embedding_model,
        "dimensions": db.config.embedding_dimensions,
        "collections": counts,
    }


@app.command()
def status():
    """Show store availability and row counts."""
    db = _get_db()
    info = asyncio.run(_status(db))
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"Store: {info['store']}")
    typer.echo(f"Available: {'yes' if info['available'] else 'no'}")
    typer.echo(f"Embedding: {info['embedding']} ({info['model']}, {info['dimensions']} dims)")
    for name, count in info["collections"].items():
        typer.echo(f"  {name}: {count}")


@app.command()
def mcp():
    """Start MCP stdio server for AI agent integration."""
    if _get_store_override() is not None:
        os.environ["CONTEXTDB_STORE_PATH"] = str(_get_store_override())
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

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
        log_path = log_exception(e, context="contextdb CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
