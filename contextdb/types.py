"""
Data types for the context index.

Records produced by the parsers and stored in (or read back from) the
vector store. Nested fields are plain lists here; their JSON encoding for
storage lives in ``schema.py``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


PRIORITIES = ("critical", "high", "medium", "low")


def utc_now() -> str:
    """Current UTC timestamp, ISO 8601 with millisecond precision.

    All timestamps written by contextdb use this format.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as 'Z' suffixes and naive
    timestamps (assumed UTC).
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def timestamp_sort_key(ts: str) -> datetime:
    """Sort key for stored timestamps. Unparseable values sort as oldest."""
    try:
        return parse_utc_timestamp(ts)
    except (ValueError, TypeError, AttributeError):
        return _OLDEST


def completion_pct(done: int, total: int) -> int:
    """Percentage of done over total, rounded half up; 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


@dataclass
class Section:
    """
    A titled fragment of a markdown document.

    Attributes:
        id: ``<source>-<n>``, stable within a source document
        title: Heading text
        content: Trimmed body text (never empty)
        section_number: 1-based heading counter at the time the heading was seen
        parent_section: Not set by the parser
        source_file: Name of the document the section came from
    """
    id: str
    title: str
    content: str
    section_number: Optional[str] = None
    parent_section: Optional[str] = None
    source_file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "section_number": self.section_number,
            "parent_section": self.parent_section,
            "source_file": self.source_file,
        }


@dataclass
class ChecklistItem:
    """One ``- [ ]`` / ``- [x]`` line of a checklist."""
    id: str
    description: str
    completed: bool
    priority: Optional[str] = None

    def __post_init__(self):
        if self.priority is not None and self.priority not in PRIORITIES:
            raise ValueError(
                f"Invalid priority {self.priority!r} (expected one of {', '.join(PRIORITIES)})"
            )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "completed": self.completed,
        }
        if self.priority is not None:
            d["priority"] = self.priority
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChecklistItem":
        completed = data["completed"]
        if not isinstance(completed, bool):
            raise ValueError(f"'completed' must be a boolean: {completed!r}")
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            completed=completed,
            priority=data.get("priority"),
        )


@dataclass
class ChecklistSection:
    """A heading of a checklist document and the items under it."""
    section_id: str
    name: str
    items: list[ChecklistItem] = field(default_factory=list)
    completion_pct: int = 0

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.items if item.completed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "section_id": self.section_id,
            "name": self.name,
            "items": [item.to_dict() for item in self.items],
            "completion_pct": self.completion_pct,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChecklistSection":
        return cls(
            section_id=str(data["section_id"]),
            name=str(data["name"]),
            items=[ChecklistItem.from_dict(i) for i in data.get("items", [])],
            completion_pct=int(data.get("completion_pct", 0)),
        )


@dataclass
class ChecklistState:
    """Point-in-time snapshot of a whole checklist document."""
    timestamp: str
    sections: list[ChecklistSection] = field(default_factory=list)
    total_items: int = 0
    completed_items: int = 0
    overall_completion_pct: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sections": [s.to_dict() for s in self.sections],
            "total_items": self.total_items,
            "completed_items": self.completed_items,
            "overall_completion_pct": self.overall_completion_pct,
        }


@dataclass
class IndexedChecklistSection:
    """
    A checklist section prepared for semantic indexing.

    ``content`` is the checklist text of the items; ``source_file`` is the
    key used by selective reindexing.
    """
    id: str
    section_id: str
    name: str
    content: str
    items: list[ChecklistItem]
    completion_pct: int
    source_file: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "section_id": self.section_id,
            "name": self.name,
            "content": self.content,
            "items": [item.to_dict() for item in self.items],
            "completion_pct": self.completion_pct,
            "source_file": self.source_file,
        }


@dataclass
class JournalEntry:
    """A session journal entry. Immutable once stored."""
    id: str
    timestamp: str
    summary: str
    content: str
    topics: list[str] = field(default_factory=list)
    work_completed: list[str] = field(default_factory=list)
    open_items: list[str] = field(default_factory=list)
    embedding: Optional[list[float]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "summary": self.summary,
            "content": self.content,
            "topics": list(self.topics),
            "work_completed": list(self.work_completed),
            "open_items": list(self.open_items),
        }


@dataclass
class SessionSummary:
    """Lightweight record for "what happened recently" lookups."""
    id: str
    timestamp: str
    summary: str
    focus_areas: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "summary": self.summary,
            "focus_areas": list(self.focus_areas),
            "next_steps": list(self.next_steps),
        }


@dataclass
class ContextBundle:
    """Merged result of the independent retrieval queries for one query string."""
    recent_sessions: list[SessionSummary] = field(default_factory=list)
    todo_state: Optional[ChecklistState] = None
    relevant_sections: list[Section] = field(default_factory=list)
    relevant_checklist_sections: list[IndexedChecklistSection] = field(default_factory=list)
    journal_entries: list[JournalEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recent_sessions": [s.to_dict() for s in self.recent_sessions],
            "todo_state": self.todo_state.to_dict() if self.todo_state else None,
            "relevant_sections": [s.to_dict() for s in self.relevant_sections],
            "relevant_checklist_sections": [
                s.to_dict() for s in self.relevant_checklist_sections
            ],
            "journal_entries": [e.to_dict() for e in self.journal_entries],
        }
