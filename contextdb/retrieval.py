"""
Retrieval layer: read paths over the context store.

Reads are best-effort. A failure in any one query (store missing,
provider unreachable, undecodable row) is logged and yields an empty
result for that query only, so a context bundle is still assembled from
whatever sources are healthy. Nothing here writes to the store.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from .api import ContextDB
from .schema import (
    COLLECTIONS,
    JOURNAL_ENTRIES,
    PRD_SECTIONS,
    SESSION_SUMMARIES,
    TODO_SECTIONS,
    TODO_SNAPSHOTS,
    decode_row,
    real_rows,
)
from .types import (
    ChecklistState,
    ContextBundle,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    SessionSummary,
    timestamp_sort_key,
)

logger = logging.getLogger(__name__)


async def _search(
    db: ContextDB,
    collection: str,
    embedding: list[float],
    limit: int,
    where: Optional[dict] = None,
) -> list[Any]:
    store = await db.get_store()
    results = await asyncio.to_thread(store.query, collection, embedding, limit, real_rows(where))
    return [decode_row(collection, r.metadata) for r in results]


async def query_similar(
    db: ContextDB,
    collection: str,
    query_text: str,
    limit: int = 5,
    where: Optional[dict] = None,
) -> list[Any]:
    """
    Records of ``collection`` nearest to ``query_text``, closest first.

    Args:
        db: Store handle
        collection: One of the collection names in ``schema``
        query_text: Free-text query, embedded with the configured model
        limit: Maximum number of records
        where: Extra metadata filter, e.g. ``{"source_file": "todo/tasks.md"}``

    Returns:
        Decoded records, or an empty list on any failure
    """
    try:
        embedding = await db.embed(query_text)
        return await _search(db, collection, embedding, limit, where)
    except Exception as e:
        logger.warning("Similarity query on %s failed: %s", collection, e)
        return []


async def query_sections(db: ContextDB, query_text: str, limit: int = 5) -> list[Section]:
    return await query_similar(db, PRD_SECTIONS, query_text, limit)


async def query_checklist_sections(
    db: ContextDB,
    query_text: str,
    limit: int = 3,
    source_file: Optional[str] = None,
) -> list[IndexedChecklistSection]:
    where = {"source_file": source_file} if source_file else None
    return await query_similar(db, TODO_SECTIONS, query_text, limit, where)


async def query_journal_entries(db: ContextDB, query_text: str, limit: int = 3) -> list[JournalEntry]:
    return await query_similar(db, JOURNAL_ENTRIES, query_text, limit)


async def _all_rows(db: ContextDB, collection: str, where: Optional[dict] = None) -> list[Any]:
    store = await db.get_store()
    results = await asyncio.to_thread(store.get_where, collection, real_rows(where))
    return [decode_row(collection, r.metadata) for r in results]


def _section_order(section: IndexedChecklistSection) -> list[tuple]:
    # "2" < "2.1" < "10", numeric runs compared as numbers
    return [(0, int(part)) if part.isdigit() else (1, part)
            for part in re.findall(r"\d+|\D+", section.section_id)]


async def list_checklist_sections(db: ContextDB, source_file: str) -> list[IndexedChecklistSection]:
    """Every indexed checklist section of ``source_file``, in natural section-id order."""
    try:
        sections = await _all_rows(db, TODO_SECTIONS, {"source_file": source_file})
    except Exception as e:
        logger.warning("Listing checklist sections of %s failed: %s", source_file, e)
        return []
    return sorted(sections, key=_section_order)


async def get_recent_sessions(db: ContextDB, limit: int = 3) -> list[SessionSummary]:
    """The ``limit`` newest session summaries by stored timestamp."""
    try:
        sessions = await _all_rows(db, SESSION_SUMMARIES)
    except Exception as e:
        logger.warning("Reading recent sessions failed: %s", e)
        return []
    sessions.sort(key=lambda s: timestamp_sort_key(s.timestamp), reverse=True)
    return sessions[:limit]


async def get_latest_snapshot(db: ContextDB, collection: str = TODO_SNAPSHOTS) -> Optional[ChecklistState]:
    """
    Newest checklist snapshot by stored timestamp.

    Insertion order is ignored, so snapshots written out of order still
    resolve to the latest capture. Returns None if there are no snapshots
    or the store can't be read.
    """
    try:
        snapshots = await _all_rows(db, collection)
    except Exception as e:
        logger.warning("Reading latest snapshot from %s failed: %s", collection, e)
        return None
    if not snapshots:
        return None
    return max(snapshots, key=lambda s: timestamp_sort_key(s.timestamp))


async def get_context_bundle(db: ContextDB, query_text: str = "project context") -> ContextBundle:
    """
    Assemble recent sessions, the latest checklist snapshot, and the document
    sections, checklist sections and journal entries most similar to
    ``query_text``.

    All slices start at once. The query is embedded once, in a task shared
    by the similarity slices, so sessions and the snapshot never wait on the
    embedding provider. If embedding fails only the similarity slices come
    back empty. Each slice degrades on its own.
    """
    limits = db.config.retrieval
    embedding_task = asyncio.ensure_future(db.embed(query_text))

    async def similar(collection: str, limit: int) -> list[Any]:
        try:
            embedding = await asyncio.shield(embedding_task)
        except Exception as e:
            logger.warning("Embedding bundle query failed, %s results skipped: %s", collection, e)
            return []
        try:
            return await _search(db, collection, embedding, limit)
        except Exception as e:
            logger.warning("Similarity query on %s failed: %s", collection, e)
            return []

    try:
        sessions, snapshot, sections, checklist, journal = await asyncio.gather(
            get_recent_sessions(db, limits.recent_sessions),
            get_latest_snapshot(db),
            similar(PRD_SECTIONS, limits.section_limit),
            similar(TODO_SECTIONS, limits.checklist_limit),
            similar(JOURNAL_ENTRIES, limits.journal_limit),
        )
    finally:
        if not embedding_task.done():
            embedding_task.cancel()
    return ContextBundle(
        recent_sessions=sessions,
        todo_state=snapshot,
        relevant_sections=sections,
        relevant_checklist_sections=checklist,
        journal_entries=journal,
    )


async def collection_counts(db: ContextDB) -> dict[str, int]:
    """Real-row count per existing collection. Missing collections are omitted."""
    try:
        store = await db.get_store()
    except Exception as e:
        logger.warning("Opening store failed: %s", e)
        return {}
    counts = {}
    for name in COLLECTIONS:
        try:
            rows = await asyncio.to_thread(store.get_where, name, real_rows())
        except Exception as e:
            logger.debug("Counting %s failed: %s", name, e)
            continue
        counts[name] = len(rows)
    return counts


async def is_available(db: ContextDB) -> bool:
    """True if the store opens and all collections exist. Never raises."""
    try:
        store = await db.get_store()
        for name in COLLECTIONS:
            if not await asyncio.to_thread(store.has_collection, name):
                logger.debug("Collection %s missing", name)
                return False
    except Exception as e:
        logger.debug("Store not available: %s", e)
        return False
    return True
