"""
Pydantic models for notegraph.

Contains data models for parsed spans, notes and their link occurrences,
search and fuzzy results, index change notifications, status conditions
and graph elements.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, computed_field


class SpanKind(str, Enum):
    """Structural span kinds produced by the parser."""

    FRONTMATTER = "frontmatter"
    HEADING = "heading"
    CODE_BLOCK = "code_block"
    INLINE_CODE = "inline_code"
    BOLD = "bold"
    ITALIC = "italic"
    TAG = "tag"
    LINK = "link"


class TextRange(BaseModel):
    """Half-open character range ``[start, end)`` into a note's content."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int


class Span(BaseModel):
    """A structurally significant region of note text."""

    model_config = ConfigDict(frozen=True)

    kind: SpanKind
    range: TextRange
    # kind-specific payload
    level: int | None = None  # heading
    text: str | None = None  # heading text, tag name
    target: str | None = None  # link
    display: str | None = None  # link
    anchor: str | None = None  # link heading anchor


class LinkOccurrence(BaseModel):
    """A ``[[target]]`` or ``[[target|display]]`` occurrence inside a note.

    ``resolved`` is filled by the resolver; the raw ``target`` is never rewritten.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    display: str | None = None
    anchor: str | None = None
    range: TextRange
    resolved: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def broken(self) -> bool:
        return self.resolved is None


class NoteFile(BaseModel):
    """Raw file contents handed to the index by the file collaborator."""

    path: str
    content: str
    modified: float | None = None


class Note(BaseModel):
    """A parsed note as owned by the vault index."""

    model_config = ConfigDict(frozen=True)

    id: str
    path: str
    title: str
    content: str
    spans: tuple[Span, ...] = ()
    tags: frozenset[str] = frozenset()
    links: tuple[LinkOccurrence, ...] = ()
    frontmatter: dict[str, Any] = {}
    modified: float | None = None

    def resolved_targets(self) -> set[str]:
        """Identifiers this note currently links to (resolved links only)."""
        return {link.resolved for link in self.links if link.resolved is not None}


class Snippet(BaseModel):
    """Context around a search match; highlight offsets index into ``text``."""

    text: str
    match_start: int
    match_end: int
    truncated_start: bool = False
    truncated_end: bool = False

    @property
    def matched_text(self) -> str:
        return self.text[self.match_start:self.match_end]


class SearchHit(BaseModel):
    """Model for a full-text search result."""

    note_id: str
    score: float
    snippet: Snippet
    first_position: int
    matched_terms: list[str]


class FuzzyMatch(BaseModel):
    """Model for a fuzzy matcher result."""

    candidate: str
    score: int
    positions: list[int]
    note_id: str | None = None


class ChangeKind(str, Enum):
    BUILT = "built"
    UPDATED = "updated"
    REMOVED = "removed"


class IndexChange(BaseModel):
    """Change notification emitted after an index mutation settles."""

    revision: int
    kind: ChangeKind
    note_id: str | None = None
    affected: list[str] = []


class StatusCondition(BaseModel):
    """A non-fatal condition surfaced to the UI."""

    kind: str  # "io_error" | "rebuilt"
    message: str
    path: str | None = None


class GraphNode(BaseModel):
    """Model for a node in the knowledge graph."""

    id: str
    title: str
    path: str
    connections: int
    is_center: bool = False


class GraphEdge(BaseModel):
    """Model for an edge in the knowledge graph."""

    source: str
    target: str
