"""
MCP stdio server for contextdb: read-only context tools for AI agents.

Usage:
    contextdb mcp                                   # stdio server (via CLI)
    claude --mcp-server contextdb="contextdb mcp"   # agent integration

All store access is serialized through a single asyncio.Lock.
"""

import asyncio
import os
from pathlib import Path
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from . import retrieval
from .api import ContextDB
from .cli import (
    DEFAULT_TODO_FILE,
    render_available_sections,
    render_bundle,
    render_checklist_section,
    render_checklist_sections,
    render_sections,
)
from .parsers import find_checklist_section, parse_checklist

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "contextdb",
    instructions=(
        "Targeted project context from an indexed vector store. "
        "Search documentation and checklists by meaning instead of reading whole files."
    ),
)

_db: Optional[ContextDB] = None
_lock = asyncio.Lock()

NOT_AVAILABLE = "Context store not available. Run `contextdb seed` to initialize."


def _get_db() -> ContextDB:
    """Lazy-init the store handle (respects CONTEXTDB_STORE_PATH).

    Must be called inside ``async with _lock``.
    """
    global _db
    if _db is None:
        store_path = os.environ.get("CONTEXTDB_STORE_PATH")
        _db = ContextDB(store_path=Path(store_path) if store_path else None)
    return _db


_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Assemble project context for a task: recent sessions, the latest checklist "
        "snapshot, and the documentation, checklist sections and journal entries "
        "most relevant to the query."
    ),
    annotations=_READ_ONLY,
)
async def context_bundle(
    query: Annotated[str, Field(
        description="What the context is for, in natural language.",
    )] = "project context",
) -> str:
    """Return the rendered context bundle."""
    async with _lock:
        db = _get_db()
        if not await retrieval.is_available(db):
            return NOT_AVAILABLE
        bundle = await retrieval.get_context_bundle(db, query)
    return render_bundle(bundle, query)


@mcp.tool(
    description="Search indexed documentation sections by meaning.",
    annotations=_READ_ONLY,
)
async def search_docs(
    query: Annotated[str, Field(description="Natural language search query.")],
    limit: Annotated[int, Field(description="Maximum results.", ge=1, le=50)] = 5,
) -> str:
    async with _lock:
        db = _get_db()
        if not await retrieval.is_available(db):
            return NOT_AVAILABLE
        sections = await retrieval.query_sections(db, query, limit)
    return render_sections(sections)


@mcp.tool(
    description="Search indexed checklist sections by meaning, optionally within one checklist file.",
    annotations=_READ_ONLY,
)
async def search_todo(
    query: Annotated[str, Field(description="Natural language search query.")],
    limit: Annotated[int, Field(description="Maximum results.", ge=1, le=50)] = 3,
    source_file: Annotated[Optional[str], Field(
        description="Restrict to one checklist, e.g. todo/tasks.md.",
    )] = None,
) -> str:
    async with _lock:
        db = _get_db()
        if not await retrieval.is_available(db):
            return NOT_AVAILABLE
        sections = await retrieval.query_checklist_sections(db, query, limit, source_file)
    return render_checklist_sections(sections)


@mcp.tool(
    description=(
        "Show one checklist section by id (e.g. 2, 1.1) or by part of its name, "
        "read directly from the checklist file."
    ),
    annotations=_READ_ONLY,
)
async def todo_section(
    query: Annotated[str, Field(description="Section id or part of the section name.")],
    file: Annotated[str, Field(description="Checklist file path.")] = str(DEFAULT_TODO_FILE),
) -> str:
    path = Path(file)
    if not path.is_file():
        return f"Error: no checklist at {file}"
    state = parse_checklist(path.read_text(encoding="utf-8"))
    section = find_checklist_section(state, query)
    if section is None:
        return render_available_sections(state.sections)
    return render_checklist_section(section)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import signal
    # First Ctrl+C can't cancel the blocking stdin reader; exit directly.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
