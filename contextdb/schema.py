"""
Collection schema and row serialization.

Each record type lives in its own collection. A row is scalar metadata plus
one embedding vector. Nested data (checklist items, topic lists, snapshot
sections) is stored as a JSON-encoded string and must be decoded on read;
the encode/decode pairs below are that serialization boundary.

Every collection is created with a placeholder row (id ``init``) so its
vector dimensionality is fixed before real writes. Real rows carry
``is_placeholder=False`` and readers filter on it.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple, Optional

from .types import (
    ChecklistSection,
    ChecklistState,
    IndexedChecklistSection,
    ChecklistItem,
    JournalEntry,
    Section,
    SessionSummary,
)


PRD_SECTIONS = "prd_sections"
TODO_SNAPSHOTS = "todo_snapshots"
TODO_SECTIONS = "todo_sections"
JOURNAL_ENTRIES = "journal_entries"
SESSION_SUMMARIES = "session_summaries"

PLACEHOLDER_ID = "init"
PLACEHOLDER_KEY = "is_placeholder"

# Where-clause selecting real (non-placeholder) rows
REAL_ROWS = {PLACEHOLDER_KEY: False}


class Row(NamedTuple):
    """An encoded record ready to be written."""
    record_id: str
    metadata: dict[str, Any]
    text: Optional[str]  # embedding input; None for rows that are not search targets


def encode_list(values: list[str]) -> str:
    return json.dumps(list(values), ensure_ascii=False)


def decode_list(blob: Optional[str]) -> list[str]:
    if not blob:
        return []
    return [str(v) for v in json.loads(blob)]


def _optional(value: Any) -> Optional[str]:
    # Chroma metadata can't hold None; empty string stands in for "unset"
    return value if value else None


def real_rows(where: Optional[dict] = None) -> dict:
    """Combine the placeholder filter with an optional extra where clause."""
    if not where:
        return dict(REAL_ROWS)
    return {"$and": [dict(REAL_ROWS), where]}


# -----------------------------------------------------------------------------
# Document sections
# -----------------------------------------------------------------------------

def encode_section(section: Section) -> Row:
    return Row(
        record_id=section.id,
        metadata={
            "id": section.id,
            "title": section.title,
            "content": section.content,
            "section_number": section.section_number or "",
            "parent_section": section.parent_section or "",
            "source_file": section.source_file or "",
        },
        text=f"{section.title}\n{section.content}",
    )


def decode_section(meta: dict[str, Any]) -> Section:
    return Section(
        id=meta["id"],
        title=meta["title"],
        content=meta["content"],
        section_number=_optional(meta.get("section_number")),
        parent_section=_optional(meta.get("parent_section")),
        source_file=_optional(meta.get("source_file")),
    )


# -----------------------------------------------------------------------------
# Checklist snapshots
# -----------------------------------------------------------------------------

def encode_snapshot(state: ChecklistState, snapshot_id: str) -> Row:
    return Row(
        record_id=snapshot_id,
        metadata={
            "id": snapshot_id,
            "timestamp": state.timestamp,
            "sections": json.dumps([s.to_dict() for s in state.sections], ensure_ascii=False),
            "total_items": state.total_items,
            "completed_items": state.completed_items,
            "overall_completion_pct": state.overall_completion_pct,
        },
        text=None,
    )


def decode_snapshot(meta: dict[str, Any]) -> ChecklistState:
    sections = json.loads(meta["sections"]) if meta.get("sections") else []
    return ChecklistState(
        timestamp=meta["timestamp"],
        sections=[ChecklistSection.from_dict(s) for s in sections],
        total_items=int(meta["total_items"]),
        completed_items=int(meta["completed_items"]),
        overall_completion_pct=int(meta["overall_completion_pct"]),
    )


# -----------------------------------------------------------------------------
# Indexed checklist sections
# -----------------------------------------------------------------------------

def checklist_embedding_text(section: IndexedChecklistSection) -> str:
    """Section heading followed by one [DONE]/[TODO] line per item."""
    lines = [f"Section {section.section_id}: {section.name}"]
    lines.extend(
        f"{'[DONE]' if item.completed else '[TODO]'} {item.description}"
        for item in section.items
    )
    return "\n".join(lines)


def encode_checklist_section(section: IndexedChecklistSection) -> Row:
    return Row(
        record_id=section.id,
        metadata={
            "id": section.id,
            "section_id": section.section_id,
            "name": section.name,
            "content": section.content,
            "items": json.dumps([i.to_dict() for i in section.items], ensure_ascii=False),
            "completion_pct": section.completion_pct,
            "source_file": section.source_file,
        },
        text=checklist_embedding_text(section),
    )


def decode_checklist_section(meta: dict[str, Any]) -> IndexedChecklistSection:
    items = json.loads(meta["items"]) if meta.get("items") else []
    return IndexedChecklistSection(
        id=meta["id"],
        section_id=meta["section_id"],
        name=meta["name"],
        content=meta["content"],
        items=[ChecklistItem.from_dict(i) for i in items],
        completion_pct=int(meta["completion_pct"]),
        source_file=meta["source_file"],
    )


# -----------------------------------------------------------------------------
# Journal entries and session summaries
# -----------------------------------------------------------------------------

def encode_journal_entry(entry: JournalEntry) -> Row:
    return Row(
        record_id=entry.id,
        metadata={
            "id": entry.id,
            "timestamp": entry.timestamp,
            "summary": entry.summary,
            "content": entry.content,
            "topics": encode_list(entry.topics),
            "work_completed": encode_list(entry.work_completed),
            "open_items": encode_list(entry.open_items),
        },
        text=f"{entry.summary}\n{entry.content}",
    )


def decode_journal_entry(meta: dict[str, Any]) -> JournalEntry:
    return JournalEntry(
        id=meta["id"],
        timestamp=meta["timestamp"],
        summary=meta["summary"],
        content=meta["content"],
        topics=decode_list(meta.get("topics")),
        work_completed=decode_list(meta.get("work_completed")),
        open_items=decode_list(meta.get("open_items")),
    )


def encode_session_summary(summary: SessionSummary) -> Row:
    return Row(
        record_id=summary.id,
        metadata={
            "id": summary.id,
            "timestamp": summary.timestamp,
            "summary": summary.summary,
            "focus_areas": encode_list(summary.focus_areas),
            "next_steps": encode_list(summary.next_steps),
        },
        text=summary.summary,
    )


def decode_session_summary(meta: dict[str, Any]) -> SessionSummary:
    return SessionSummary(
        id=meta["id"],
        timestamp=meta["timestamp"],
        summary=meta["summary"],
        focus_areas=decode_list(meta.get("focus_areas")),
        next_steps=decode_list(meta.get("next_steps")),
    )


# -----------------------------------------------------------------------------
# Collection registry
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CollectionSchema:
    """A named collection: placeholder fields fix its shape, decode reads rows back."""
    name: str
    fields: dict[str, Any]
    decode: Callable[[dict[str, Any]], Any]

    def placeholder(self) -> dict[str, Any]:
        return {**self.fields, PLACEHOLDER_KEY: True}


SCHEMAS: dict[str, CollectionSchema] = {
    schema.name: schema for schema in (
        CollectionSchema(
            PRD_SECTIONS,
            {"id": PLACEHOLDER_ID, "title": "init", "content": "init",
             "section_number": "", "parent_section": "", "source_file": "init"},
            decode_section,
        ),
        CollectionSchema(
            TODO_SNAPSHOTS,
            {"id": PLACEHOLDER_ID, "timestamp": "", "sections": "[]",
             "total_items": 0, "completed_items": 0, "overall_completion_pct": 0},
            decode_snapshot,
        ),
        CollectionSchema(
            TODO_SECTIONS,
            {"id": PLACEHOLDER_ID, "section_id": "init", "name": "init", "content": "init",
             "items": "[]", "completion_pct": 0, "source_file": "init"},
            decode_checklist_section,
        ),
        CollectionSchema(
            JOURNAL_ENTRIES,
            {"id": PLACEHOLDER_ID, "timestamp": "", "summary": "init", "content": "init",
             "topics": "[]", "work_completed": "[]", "open_items": "[]"},
            decode_journal_entry,
        ),
        CollectionSchema(
            SESSION_SUMMARIES,
            {"id": PLACEHOLDER_ID, "timestamp": "", "summary": "init",
             "focus_areas": "[]", "next_steps": "[]"},
            decode_session_summary,
        ),
    )
}

COLLECTIONS = tuple(SCHEMAS)


def decode_row(collection: str, meta: dict[str, Any]) -> Any:
    """Decode a stored row of ``collection`` back into its record type."""
    return SCHEMAS[collection].decode(meta)
