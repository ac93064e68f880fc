"""Tests for the read paths: similarity search, latest snapshot, context bundle.

Reads degrade instead of raising: a failing source yields an empty slice
and the rest of the bundle is still assembled.
"""

import asyncio

import pytest

from contextdb import retrieval, storage
from contextdb.parsers import checklist_to_indexed_sections, parse_checklist, parse_sections
from contextdb.schema import encode_snapshot, real_rows
from contextdb.types import (
    ChecklistState,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    SessionSummary,
)

from conftest import FailingEmbeddingProvider, MockEmbeddingProvider


async def _seed(db, prd_md, checklist_md):
    await storage.initialize(db)
    await storage.index_sections(db, parse_sections(prd_md, "prd.md"))
    state = parse_checklist(checklist_md)
    await storage.snapshot_checklist(db, state)
    await storage.index_checklist_sections(db, checklist_to_indexed_sections(state, "todo/tasks.md"))
    await storage.store_journal_entry(db, JournalEntry(
        id="journal-1", timestamp="2026-03-01T10:00:00.000+00:00",
        summary="Auth work", content="Built login", topics=["auth"],
    ))
    for day in (1, 3, 2, 4):
        await storage.store_session_summary(db, SessionSummary(
            id=f"session-{day}", timestamp=f"2026-03-0{day}T10:00:00.000+00:00",
            summary=f"Day {day}",
        ))


class TestQuerySimilar:

    @pytest.mark.asyncio
    async def test_nearest_first_and_decoded(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)

        results = await retrieval.query_sections(
            db, "Authentication\nUsers sign in with email and password.", limit=2
        )

        assert len(results) == 2
        assert isinstance(results[0], Section)
        assert results[0].title == "Authentication"
        assert results[0].source_file == "prd.md"

    @pytest.mark.asyncio
    async def test_never_returns_placeholder(self, db):
        await storage.initialize(db)
        assert await retrieval.query_sections(db, "anything", limit=10) == []

    @pytest.mark.asyncio
    async def test_limit_respected(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        assert len(await retrieval.query_sections(db, "x", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_checklist_items_decoded(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)

        results = await retrieval.query_checklist_sections(db, "setup", limit=4)

        assert len(results) == 4
        assert all(isinstance(r, IndexedChecklistSection) for r in results)
        setup = next(r for r in results if r.section_id == "1")
        assert [i.completed for i in setup.items] == [True, True, False]

    @pytest.mark.asyncio
    async def test_source_file_filter(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        other = checklist_to_indexed_sections(parse_checklist("## Z\n- [ ] z\n"), "todo/other.md")
        await storage.index_checklist_sections(db, other)

        results = await retrieval.query_checklist_sections(db, "z", limit=10, source_file="todo/other.md")
        assert [r.source_file for r in results] == ["todo/other.md"]

    @pytest.mark.asyncio
    async def test_journal_topics_decoded(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        entries = await retrieval.query_journal_entries(db, "auth")
        assert entries[0].topics == ["auth"]

    @pytest.mark.asyncio
    async def test_uninitialized_store_returns_empty(self, db):
        assert await retrieval.query_sections(db, "anything") == []

    @pytest.mark.asyncio
    async def test_provider_failure_returns_empty(self, make_db, prd_md, checklist_md):
        db = make_db()
        await _seed(db, prd_md, checklist_md)
        failing = make_db(embedder=FailingEmbeddingProvider())
        assert await retrieval.query_sections(failing, "auth") == []

    @pytest.mark.asyncio
    async def test_reindexed_file_has_only_new_sections(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        new = checklist_to_indexed_sections(
            parse_checklist("## 9. Fresh\n- [ ] one\n## 10. Also\n- [x] two\n"), "todo/tasks.md"
        )
        await storage.reindex_checklist_sections(db, new, "todo/tasks.md")

        results = await retrieval.query_checklist_sections(
            db, "anything", limit=50, source_file="todo/tasks.md"
        )
        assert sorted(r.id for r in results) == sorted(s.id for s in new)


class TestListChecklistSections:

    @pytest.mark.asyncio
    async def test_lists_one_file(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        sections = await retrieval.list_checklist_sections(db, "todo/tasks.md")
        assert [s.section_id for s in sections] == ["1", "2", "2.1", "section-4"]

    @pytest.mark.asyncio
    async def test_numeric_section_order(self, db):
        await storage.initialize(db)
        markdown = "".join(f"## {n}. Part {n}\n- [ ] task\n" for n in (10, 2, 1, 11))
        await storage.index_checklist_sections(
            db, checklist_to_indexed_sections(parse_checklist(markdown), "tasks.md"),
        )

        sections = await retrieval.list_checklist_sections(db, "tasks.md")
        assert [s.section_id for s in sections] == ["1", "2", "10", "11"]

    @pytest.mark.asyncio
    async def test_missing_store(self, db):
        assert await retrieval.list_checklist_sections(db, "todo/tasks.md") == []


class TestRecentAndLatest:

    @pytest.mark.asyncio
    async def test_recent_sessions_newest_first(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        sessions = await retrieval.get_recent_sessions(db, limit=3)
        assert [s.id for s in sessions] == ["session-4", "session-3", "session-2"]

    @pytest.mark.asyncio
    async def test_latest_snapshot_by_timestamp_not_insertion(self, db, mock_store):
        await storage.initialize(db)
        for snapshot_id, ts, total in [
            ("todo-1", "2026-03-02T00:00:00.000+00:00", 2),
            ("todo-2", "2026-03-05T00:00:00.000+00:00", 5),
            ("todo-3", "2026-03-01T00:00:00.000+00:00", 1),
        ]:
            row = encode_snapshot(ChecklistState(timestamp=ts, total_items=total), snapshot_id)
            mock_store.add("todo_snapshots", [[0.0] * 8], [{**row.metadata, **real_rows()}])

        latest = await retrieval.get_latest_snapshot(db)
        assert latest.total_items == 5

    @pytest.mark.asyncio
    async def test_latest_snapshot_empty(self, db):
        await storage.initialize(db)
        assert await retrieval.get_latest_snapshot(db) is None

    @pytest.mark.asyncio
    async def test_latest_snapshot_missing_store(self, db):
        assert await retrieval.get_latest_snapshot(db) is None


class TestContextBundle:

    @pytest.mark.asyncio
    async def test_all_slices(self, db, mock_embedding_provider, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        mock_embedding_provider.embed_calls = 0

        bundle = await retrieval.get_context_bundle(db, "auth")

        assert [s.id for s in bundle.recent_sessions] == ["session-4", "session-3", "session-2"]
        assert bundle.todo_state.total_items == 7
        assert len(bundle.relevant_sections) == 3
        assert len(bundle.relevant_checklist_sections) == 3
        assert len(bundle.journal_entries) == 1
        # Query embedded once, shared across similarity slices
        assert mock_embedding_provider.embed_calls == 1

    @pytest.mark.asyncio
    async def test_sessions_do_not_wait_for_query_embedding(
        self, make_db, monkeypatch, prd_md, checklist_md,
    ):
        await _seed(make_db(), prd_md, checklist_md)
        gate = asyncio.Event()

        class GatedEmbedder(MockEmbeddingProvider):
            async def embed(self, text):
                await gate.wait()
                return await super().embed(text)

        read_sessions = retrieval.get_recent_sessions

        async def sessions_then_release(db, limit=3):
            result = await read_sessions(db, limit)
            gate.set()
            return result

        monkeypatch.setattr(retrieval, "get_recent_sessions", sessions_then_release)
        db = make_db(embedder=GatedEmbedder())

        # Embedding only finishes once sessions were read
        bundle = await asyncio.wait_for(retrieval.get_context_bundle(db, "auth"), timeout=2)

        assert len(bundle.recent_sessions) == 3
        assert len(bundle.relevant_sections) == 3

    @pytest.mark.asyncio
    async def test_limits_from_config(self, make_db, prd_md, checklist_md):
        from contextdb.config import RetrievalConfig
        db = make_db(retrieval=RetrievalConfig(recent_sessions=1, section_limit=1))
        await _seed(db, prd_md, checklist_md)

        bundle = await retrieval.get_context_bundle(db)
        assert len(bundle.recent_sessions) == 1
        assert len(bundle.relevant_sections) == 1

    @pytest.mark.asyncio
    async def test_provider_down_keeps_sessions_and_state(self, make_db, mock_store, prd_md, checklist_md):
        await _seed(make_db(), prd_md, checklist_md)
        db = make_db(embedder=FailingEmbeddingProvider())

        bundle = await retrieval.get_context_bundle(db, "auth")

        assert len(bundle.recent_sessions) == 3
        assert bundle.todo_state is not None
        assert bundle.relevant_sections == []
        assert bundle.relevant_checklist_sections == []
        assert bundle.journal_entries == []

    @pytest.mark.asyncio
    async def test_one_broken_collection_does_not_block_others(self, db, mock_store, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        del mock_store._data["journal_entries"]

        bundle = await retrieval.get_context_bundle(db, "auth")

        assert bundle.journal_entries == []
        assert len(bundle.relevant_sections) == 3
        assert bundle.todo_state is not None

    @pytest.mark.asyncio
    async def test_uninitialized_store_gives_empty_bundle(self, db):
        bundle = await retrieval.get_context_bundle(db)
        assert bundle.recent_sessions == []
        assert bundle.todo_state is None
        assert bundle.to_dict()["relevant_sections"] == []


class TestAvailability:

    @pytest.mark.asyncio
    async def test_available_after_initialize(self, db):
        assert await retrieval.is_available(db) is False
        await storage.initialize(db)
        assert await retrieval.is_available(db) is True

    @pytest.mark.asyncio
    async def test_missing_collection(self, db, mock_store):
        await storage.initialize(db)
        del mock_store._data["session_summaries"]
        assert await retrieval.is_available(db) is False

    @pytest.mark.asyncio
    async def test_store_cannot_open(self, tmp_path):
        from contextdb.api import ContextDB
        from contextdb.config import StoreConfig
        from unittest.mock import patch

        db = ContextDB(config=StoreConfig(path=tmp_path / "missing"))
        with patch.object(ContextDB, "_open_store", side_effect=OSError("disk on fire")):
            assert await retrieval.is_available(db) is False

    @pytest.mark.asyncio
    async def test_collection_counts(self, db, prd_md, checklist_md):
        await _seed(db, prd_md, checklist_md)
        counts = await retrieval.collection_counts(db)
        assert counts["prd_sections"] == 3
        assert counts["session_summaries"] == 4
        assert counts["todo_snapshots"] == 1
