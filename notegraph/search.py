"""
Full-text search engine for notegraph.

Inverted index over saved note content. Tokens are lowercase alphanumeric
runs; there is no stemming and no stopword list. Queries are conjunctive:
a note matches only when it contains every query token.
"""

from collections import defaultdict
from dataclasses import dataclass, field

import structlog

from .models import SearchHit, Snippet
from .utils import TOKEN_PATTERN, tokenize

logger = structlog.get_logger(__name__)


@dataclass
class SearchDocument:
    """Postings of one note: token -> list of (start, end) character ranges."""

    note_id: str
    content: str
    postings: dict[str, list[tuple[int, int]]] = field(default_factory=dict)

    @classmethod
    def from_content(cls, note_id: str, content: str) -> "SearchDocument":
        postings: dict[str, list[tuple[int, int]]] = defaultdict(list)
        for m in TOKEN_PATTERN.finditer(content):
            postings[m.group().lower()].append((m.start(), m.end()))
        return cls(note_id=note_id, content=content, postings=dict(postings))


def make_snippet(content: str, start: int, end: int, radius: int) -> Snippet:
    """Window of *radius* characters each side of ``content[start:end]``."""
    lo = max(0, start - radius)
    hi = min(len(content), end + radius)
    text = content[lo:hi].replace("\r", " ").replace("\n", " ").replace("\t", " ")
    return Snippet(
        text=text,
        match_start=start - lo,
        match_end=end - lo,
        truncated_start=lo > 0,
        truncated_end=hi < len(content),
    )


class SearchEngine:
    """Token -> postings index answering ranked conjunctive queries."""

    def __init__(self, snippet_radius: int = 40):
        self.snippet_radius = snippet_radius
        self._documents: dict[str, SearchDocument] = {}
        self._postings: dict[str, set[str]] = defaultdict(set)

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def index(self, note_id: str, content: str) -> None:
        """Replace the postings of *note_id* with those of *content*."""
        self.remove(note_id)
        document = SearchDocument.from_content(note_id, content)
        self._documents[note_id] = document
        for token in document.postings:
            self._postings[token].add(note_id)

    def remove(self, note_id: str) -> None:
        document = self._documents.pop(note_id, None)
        if document is None:
            return
        for token in document.postings:
            notes = self._postings.get(token)
            if notes is not None:
                notes.discard(note_id)
                if not notes:
                    del self._postings[token]

    def query(self, terms: list[str] | str, limit: int | None = None) -> list[SearchHit]:
        """Rank notes containing every term.

        Score is the summed frequency of the query tokens; ties go to the note
        whose earliest matching token comes first, then to the smaller id.
        """
        if isinstance(terms, str):
            terms = [terms]
        tokens = list(dict.fromkeys(tok for term in terms for tok in tokenize(term)))
        if not tokens:
            return []

        candidate_sets = []
        for token in tokens:
            notes = self._postings.get(token)
            if not notes:
                return []
            candidate_sets.append(notes)
        candidate_sets.sort(key=len)
        candidates = set(candidate_sets[0]).intersection(*candidate_sets[1:])

        hits: list[SearchHit] = []
        for note_id in candidates:
            document = self._documents[note_id]
            score = sum(len(document.postings[token]) for token in tokens)
            first_position = min(document.postings[token][0][0] for token in tokens)
            start, end = document.postings[tokens[0]][0]
            hits.append(SearchHit(
                note_id=note_id,
                score=float(score),
                snippet=make_snippet(document.content, start, end, self.snippet_radius),
                first_position=first_position,
                matched_terms=tokens,
            ))

        hits.sort(key=lambda h: (-h.score, h.first_position, h.note_id))
        if limit is not None:
            hits = hits[:limit]
        logger.debug("search_completed", tokens=tokens, results=len(hits))
        return hits

    def tokens_of(self, note_id: str) -> dict[str, list[int]]:
        """token -> start positions for one note (empty when not indexed)."""
        document = self._documents.get(note_id)
        if document is None:
            return {}
        return {token: [start for start, _ in ranges] for token, ranges in document.postings.items()}

    def clear(self) -> None:
        self._documents.clear()
        self._postings.clear()

    def to_dict(self) -> dict[str, dict[str, list[int]]]:
        return {note_id: self.tokens_of(note_id) for note_id in sorted(self._documents)}
