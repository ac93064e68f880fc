"""
Storage layer: write paths into the context store.

Every operation here either completes or raises. A record that can't be
embedded or written is never skipped behind a log line:

- missing store or collection: StoreNotInitializedError (names it)
- provider failure: EmbeddingError, wrapped in IndexingError for batches
- partial batch failure: IndexingError with the failing record ids and the
  number of records already written

Writes only ever append. The one update path, reindexing, is
delete-then-insert and is not atomic: a reader running between the delete
and the insert sees no rows for that source file.
"""

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING

from .api import ContextDB
from .config import save_config
from .errors import ContextDBError, IndexingError, StoreNotInitializedError
from .schema import (
    JOURNAL_ENTRIES,
    PRD_SECTIONS,
    REAL_ROWS,
    SCHEMAS,
    SESSION_SUMMARIES,
    TODO_SECTIONS,
    TODO_SNAPSHOTS,
    Row,
    encode_checklist_section,
    encode_journal_entry,
    encode_section,
    encode_session_summary,
    encode_snapshot,
    real_rows,
)
from .types import (
    ChecklistState,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    SessionSummary,
)

if TYPE_CHECKING:
    from .store import ChromaStore

logger = logging.getLogger(__name__)


async def initialize(db: ContextDB) -> list[str]:
    """
    Create the store directory, config file and all collections.

    Idempotent: existing collections and their placeholder rows are left
    alone.

    Returns:
        Names of the collections that were created by this call
    """
    config = db.config
    config.path.mkdir(parents=True, exist_ok=True)
    if not config.exists():
        save_config(config)

    store = await db.get_store()
    created = []
    for name, schema in SCHEMAS.items():
        if await asyncio.to_thread(
            store.ensure_collection, name, schema.placeholder(), config.embedding_dimensions
        ):
            created.append(name)

    logger.info("Context store initialized at %s (%d new collections)", config.path, len(created))
    return created


async def _require_collection(db: ContextDB, collection: str) -> "ChromaStore":
    store = await db.get_store()
    if not await asyncio.to_thread(store.has_collection, collection):
        raise StoreNotInitializedError(store.path, collection)
    return store


async def _append(db: ContextDB, collection: str, rows: list[Row]) -> int:
    """Embed and append rows batch by batch. Returns the number written."""
    if not rows:
        return 0
    store = await _require_collection(db, collection)
    zero = [0.0] * db.config.embedding_dimensions

    written = 0
    size = db.config.batch_size
    for start in range(0, len(rows), size):
        batch = rows[start:start + size]
        try:
            texts = [r.text for r in batch if r.text is not None]
            vectors = iter(await db.embed_batch(texts) if texts else [])
            embeddings = [next(vectors) if r.text is not None else zero for r in batch]
            await asyncio.to_thread(
                store.add,
                collection,
                embeddings,
                [{**r.metadata, **REAL_ROWS} for r in batch],
                [r.text or "" for r in batch],
            )
        except StoreNotInitializedError:
            raise
        except Exception as e:
            raise IndexingError(collection, [r.record_id for r in batch], written, e) from e
        written += len(batch)
    return written


def _attribute(sections: list, source_file: str) -> list:
    return [
        s if s.source_file == source_file else dataclasses.replace(s, source_file=source_file)
        for s in sections
    ]


async def index_sections(db: ContextDB, sections: list[Section]) -> int:
    """Embed ``title + "\\n" + content`` of each section and append it."""
    count = await _append(db, PRD_SECTIONS, [encode_section(s) for s in sections])
    logger.info("Indexed %d document sections", count)
    return count


async def reindex_sections(db: ContextDB, sections: list[Section], source_file: str) -> int:
    """
    Replace all document sections of ``source_file`` with ``sections``.

    Every section is stored under ``source_file``, whatever its own
    ``source_file`` says, so the next reindex of that file removes it.
    """
    store = await _require_collection(db, PRD_SECTIONS)
    deleted = await asyncio.to_thread(
        store.delete_where, PRD_SECTIONS, real_rows({"source_file": source_file})
    )
    logger.info("Removed %d document sections from %s", deleted, source_file)
    if not sections:
        return 0
    return await index_sections(db, _attribute(sections, source_file))


async def snapshot_checklist(db: ContextDB, state: ChecklistState) -> str:
    """
    Append a point-in-time snapshot of a checklist.

    Always a new row, never an update. Snapshots are history rather than
    search targets, so they carry a zero vector.

    Returns:
        Snapshot id, ``todo-<epoch milliseconds>`` at capture time
    """
    snapshot_id = f"todo-{time.time_ns() // 1_000_000}"
    await _append(db, TODO_SNAPSHOTS, [encode_snapshot(state, snapshot_id)])
    logger.info(
        "Stored checklist snapshot %s (%d/%d items, %d%%)",
        snapshot_id, state.completed_items, state.total_items, state.overall_completion_pct,
    )
    return snapshot_id


async def index_checklist_sections(db: ContextDB, sections: list[IndexedChecklistSection]) -> int:
    """Embed each section as its heading plus [DONE]/[TODO] item lines and append it."""
    count = await _append(db, TODO_SECTIONS, [encode_checklist_section(s) for s in sections])
    logger.info("Indexed %d checklist sections", count)
    return count


async def reindex_checklist_sections(
    db: ContextDB,
    sections: list[IndexedChecklistSection],
    source_file: str,
) -> int:
    """
    Delete every indexed checklist section of ``source_file``, then index ``sections``.

    Sections are stored under ``source_file``. Not atomic with respect to
    concurrent readers.
    """
    store = await _require_collection(db, TODO_SECTIONS)
    deleted = await asyncio.to_thread(
        store.delete_where, TODO_SECTIONS, real_rows({"source_file": source_file})
    )
    logger.info("Removed %d checklist sections from %s", deleted, source_file)
    if not sections:
        return 0
    return await index_checklist_sections(db, _attribute(sections, source_file))


async def store_journal_entry(db: ContextDB, entry: JournalEntry) -> str:
    """
    Append a journal entry, embedded as ``summary + "\\n" + content``.

    A precomputed ``entry.embedding`` is stored as given instead of calling
    the provider.
    """
    row = encode_journal_entry(entry)
    if entry.embedding is not None:
        await _append_vector(db, JOURNAL_ENTRIES, row, entry.embedding)
    else:
        await _append(db, JOURNAL_ENTRIES, [row])
    logger.info("Stored journal entry %s", entry.id)
    return entry.id


async def _append_vector(db: ContextDB, collection: str, row: Row, vector: list[float]) -> None:
    store = await _require_collection(db, collection)
    expected = db.config.embedding_dimensions
    if len(vector) != expected:
        raise ContextDBError(
            f"Embedding for {row.record_id} has {len(vector)} dimensions, store expects {expected}"
        )
    await asyncio.to_thread(
        store.add, collection, [list(vector)], [{**row.metadata, **REAL_ROWS}], [row.text or ""]
    )


async def store_session_summary(db: ContextDB, summary: SessionSummary) -> str:
    """Append a session summary, embedded by its summary text."""
    await _append(db, SESSION_SUMMARIES, [encode_session_summary(summary)])
    logger.info("Stored session summary %s", summary.id)
    return summary.id
