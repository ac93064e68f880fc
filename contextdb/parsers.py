"""
Markdown parsers for project documents, checklists and journals.

All parsers are pure functions over in-memory strings: they never touch the
filesystem and never raise on malformed or empty input. Lines that don't
match a pattern are simply not counted.
"""

import re
from functools import reduce
from typing import NamedTuple, Optional

from .types import (
    ChecklistItem,
    ChecklistSection,
    ChecklistState,
    IndexedChecklistSection,
    JournalEntry,
    Section,
    completion_pct,
    utc_now,
)


# Level 1-3 heading: "# Title", "## Title", "### Title"
_HEADING_RE = re.compile(r"^(#{1,3})\s+(.+)")

# Level 2-3 checklist heading with optional numeric token: "### 1.2. Name"
_CHECKLIST_HEADING_RE = re.compile(r"^#{2,3}\s+(\d+\.?\d*\.?)?\s*(.+)")

# Checklist item: "  - [ ] text" / "- [x] text" / "- [X] text"
_CHECKLIST_ITEM_RE = re.compile(r"^\s*-\s*\[([ xX])\]\s*(.+)")

_SESSION_RE = re.compile(r"^##\s+Session:\s*(.+?)\s*$")
_SUBHEADING_RE = re.compile(r"^###\s+(.+?)\s*$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(?:\[[ xX]\]\s*)?(.+?)\s*$")


def _split_lines(text: str) -> list[str]:
    """Split on newlines after normalizing line endings."""
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


# -----------------------------------------------------------------------------
# Document sections
# -----------------------------------------------------------------------------

class _SectionFold(NamedTuple):
    """Accumulator carried through the lines of a document."""
    emitted: tuple[Section, ...] = ()
    title: Optional[str] = None  # open heading, None before the first heading
    body: tuple[str, ...] = ()
    counter: int = 0  # headings seen so far


def _close_section(acc: _SectionFold, source_name: str) -> tuple[Section, ...]:
    """Emit the open section if its trimmed body is non-empty."""
    if acc.title is None:
        return acc.emitted
    content = "\n".join(acc.body).strip()
    if not content:
        return acc.emitted
    return acc.emitted + (Section(
        id=f"{source_name}-{acc.counter}",
        title=acc.title,
        content=content,
        section_number=str(acc.counter),
        source_file=source_name,
    ),)


def parse_sections(markdown_text: str, source_name: str) -> list[Section]:
    """
    Split a markdown document into titled sections.

    Every level 1-3 heading opens a new section and bumps the section
    counter, including headings whose section is later dropped because its
    body is empty, so numbering can have gaps. Text before the first heading
    belongs to no section.

    Args:
        markdown_text: Document text
        source_name: Document name, used as the id prefix

    Returns:
        Sections in document order
    """
    if not markdown_text:
        return []

    def step(acc: _SectionFold, line: str) -> _SectionFold:
        match = _HEADING_RE.match(line)
        if match:
            return _SectionFold(
                emitted=_close_section(acc, source_name),
                title=match.group(2).strip(),
                body=(),
                counter=acc.counter + 1,
            )
        if acc.title is not None:
            return acc._replace(body=acc.body + (line,))
        return acc

    final = reduce(step, _split_lines(markdown_text), _SectionFold())
    return list(_close_section(final, source_name))


# -----------------------------------------------------------------------------
# Checklists
# -----------------------------------------------------------------------------

def _finalize(section: ChecklistSection) -> ChecklistSection:
    section.completion_pct = completion_pct(section.completed_count, len(section.items))
    return section


def parse_checklist(markdown_text: str) -> ChecklistState:
    """
    Parse a markdown checklist into sections of completion-tracked items.

    Sections start at level 2-3 headings. A leading numeric token ("1",
    "1.", "1.1.") becomes the section id, otherwise ``section-<n>`` by
    position. Items before the first section heading are ignored.

    The timestamp is the capture time, not anything in the document.
    """
    sections: list[ChecklistSection] = []
    current: Optional[ChecklistSection] = None
    total_items = 0
    completed_items = 0

    for line in _split_lines(markdown_text or ""):
        heading = _CHECKLIST_HEADING_RE.match(line)
        if heading:
            if current is not None:
                sections.append(_finalize(current))
            token = heading.group(1)
            if token and token.endswith("."):
                token = token[:-1]
            current = ChecklistSection(
                section_id=token or f"section-{len(sections) + 1}",
                name=heading.group(2).strip(),
            )
            continue

        item = _CHECKLIST_ITEM_RE.match(line)
        if item and current is not None:
            completed = item.group(1).lower() == "x"
            current.items.append(ChecklistItem(
                id=f"{current.section_id}-{len(current.items) + 1}",
                description=item.group(2).strip(),
                completed=completed,
            ))
            total_items += 1
            if completed:
                completed_items += 1

    if current is not None:
        sections.append(_finalize(current))

    return ChecklistState(
        timestamp=utc_now(),
        sections=sections,
        total_items=total_items,
        completed_items=completed_items,
        overall_completion_pct=completion_pct(completed_items, total_items),
    )


def checklist_to_indexed_sections(
    state: ChecklistState,
    source_file: str,
) -> list[IndexedChecklistSection]:
    """Convert a checklist snapshot into sections ready for semantic indexing."""
    indexed = []
    for section in state.sections:
        content = "\n".join(
            f"- [{'x' if item.completed else ' '}] {item.description}"
            for item in section.items
        )
        indexed.append(IndexedChecklistSection(
            id=f"{source_file}-{section.section_id}",
            section_id=section.section_id,
            name=section.name,
            content=content,
            items=list(section.items),
            completion_pct=section.completion_pct,
            source_file=source_file,
        ))
    return indexed


def find_checklist_section(state: ChecklistState, query: str) -> Optional[ChecklistSection]:
    """Find a section by id (exact or partial) or by case-insensitive name match."""
    needle = query.lower()
    for section in state.sections:
        if (
            section.section_id == query
            or query in section.section_id
            or needle in section.name.lower()
        ):
            return section
    return None


# -----------------------------------------------------------------------------
# Journal
# -----------------------------------------------------------------------------

def _bullets(lines: list[str]) -> list[str]:
    out = []
    for line in lines:
        match = _BULLET_RE.match(line)
        if match:
            out.append(match.group(1))
    return out


def parse_journal(markdown_text: str) -> list[JournalEntry]:
    """
    Parse a session journal into entries.

    Each ``## Session: <timestamp>`` heading starts an entry. Within it,
    ``### Summary`` gives the summary text and the bullet lists under
    ``### Topics``, ``### Work Completed`` and ``### Open Items`` fill the
    corresponding fields. Ids are positional (``journal-<n>``).
    """
    blocks: list[tuple[str, list[str]]] = []
    for line in _split_lines(markdown_text or ""):
        match = _SESSION_RE.match(line)
        if match:
            blocks.append((match.group(1), []))
        elif blocks:
            blocks[-1][1].append(line)

    entries = []
    for n, (timestamp, lines) in enumerate(blocks, start=1):
        subsections: dict[str, list[str]] = {}
        current: Optional[list[str]] = None
        for line in lines:
            sub = _SUBHEADING_RE.match(line)
            if sub:
                current = subsections.setdefault(sub.group(1).lower(), [])
            elif current is not None:
                current.append(line)

        entries.append(JournalEntry(
            id=f"journal-{n}",
            timestamp=timestamp,
            summary="\n".join(subsections.get("summary", [])).strip(),
            content="\n".join(lines).strip(),
            topics=_bullets(subsections.get("topics", [])),
            work_completed=_bullets(subsections.get("work completed", [])),
            open_items=_bullets(subsections.get("open items", [])),
        ))
    return entries
