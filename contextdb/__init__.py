"""
contextdb: semantic index of project docs, checklists and session journals.

Parsers turn markdown into typed records, ``storage`` embeds and writes them
to a local ChromaDB store, and ``retrieval`` answers similarity queries and
assembles a context bundle for a coding agent.

    from contextdb import ContextDB, storage, retrieval, parse_sections

    db = ContextDB()
    await storage.initialize(db)
    await storage.index_sections(db, parse_sections(text, "prd.md"))
    bundle = await retrieval.get_context_bundle(db, "auth flow")
"""

__version__ = "0.3.0"

from . import retrieval, storage
from .api import ContextDB
from .config import StoreConfig, load_config, save_config
from .errors import (
    ConfigError,
    ContextDBError,
    EmbeddingError,
    IndexingError,
    StoreNotInitializedError,
)
from .parsers import (
    checklist_to_indexed_sections,
    find_checklist_section,
    parse_checklist,
    parse_journal,
    parse_sections,
)
from .retrieval import (
    get_context_bundle,
    get_latest_snapshot,
    get_recent_sessions,
    is_available,
    list_checklist_sections,
    query_checklist_sections,
    query_journal_entries,
    query_sections,
    query_similar,
)
from .storage import (
    index_checklist_sections,
    index_sections,
    initialize,
    reindex_checklist_sections,
    reindex_sections,
    snapshot_checklist,
    store_journal_entry,
    store_session_summary,
)
from .types import (
    ChecklistItem,
    ChecklistSection,
    ChecklistState,
    ContextBundle,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    SessionSummary,
)

__all__ = [
    "__version__",
    "ContextDB",
    "StoreConfig",
    "load_config",
    "save_config",
    # Errors
    "ContextDBError",
    "ConfigError",
    "EmbeddingError",
    "IndexingError",
    "StoreNotInitializedError",
    # Types
    "Section",
    "ChecklistItem",
    "ChecklistSection",
    "ChecklistState",
    "IndexedChecklistSection",
    "JournalEntry",
    "SessionSummary",
    "ContextBundle",
    # Parsers
    "parse_sections",
    "parse_checklist",
    "checklist_to_indexed_sections",
    "find_checklist_section",
    "parse_journal",
    # Storage
    "storage",
    "initialize",
    "index_sections",
    "reindex_sections",
    "snapshot_checklist",
    "index_checklist_sections",
    "reindex_checklist_sections",
    "store_journal_entry",
    "store_session_summary",
    # Retrieval
    "retrieval",
    "query_similar",
    "query_sections",
    "query_checklist_sections",
    "query_journal_entries",
    "list_checklist_sections",
    "get_recent_sessions",
    "get_latest_snapshot",
    "get_context_bundle",
    "is_available",
]
