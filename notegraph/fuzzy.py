"""
Fuzzy matcher for notegraph.

A candidate matches when every query character appears in it, in order,
ignoring case. The alignment is found in two linear passes: a forward pass
finds the earliest point where the whole query has been seen, and a backward
pass from there picks the tightest window ending at that point.

Scoring, higher is better:

- every matched character scores ``SCORE_MATCH``
- a match at the start of the candidate or right after a path/word
  separator (``/ - _ . space``) adds ``BONUS_BOUNDARY``
- a match directly following the previous match adds ``BONUS_CONSECUTIVE``
- a gap of ``g`` skipped characters between two matches costs
  ``PENALTY_GAP_START + (g - 1) * PENALTY_GAP_EXTENSION``
- unmatched characters before the first match cost ``PENALTY_LEADING`` each,
  up to ``MAX_LEADING_PENALTY`` characters

Results are ordered by descending score, then lexicographically.
"""

from collections.abc import Iterable

from .models import FuzzyMatch

SCORE_MATCH = 16
BONUS_BOUNDARY = 8
BONUS_CONSECUTIVE = 6
PENALTY_GAP_START = 3
PENALTY_GAP_EXTENSION = 1
PENALTY_LEADING = 1
MAX_LEADING_PENALTY = 3

SEPARATORS = frozenset("/-_. ")


def align(candidate: str, query: str) -> list[int] | None:
    """Positions in *candidate* matched by *query*, or None when it is not a subsequence."""
    if not query:
        return []
    text = candidate.lower()
    pattern = query.lower()
    if len(pattern) > len(text):
        return None

    qi = 0
    end = -1
    for i, ch in enumerate(text):
        if ch == pattern[qi]:
            qi += 1
            if qi == len(pattern):
                end = i
                break
    if end < 0:
        return None

    positions: list[int] = []
    qi = len(pattern) - 1
    for i in range(end, -1, -1):
        if text[i] == pattern[qi]:
            positions.append(i)
            qi -= 1
            if qi < 0:
                break
    positions.reverse()
    return positions


def score_positions(candidate: str, positions: list[int]) -> int:
    score = 0
    prev = -1
    for p in positions:
        score += SCORE_MATCH
        if p == 0 or candidate[p - 1] in SEPARATORS:
            score += BONUS_BOUNDARY
        if prev >= 0:
            if p == prev + 1:
                score += BONUS_CONSECUTIVE
            else:
                score -= PENALTY_GAP_START + (p - prev - 2) * PENALTY_GAP_EXTENSION
        prev = p
    if positions:
        score -= min(positions[0], MAX_LEADING_PENALTY) * PENALTY_LEADING
    return score


def score(candidate: str, query: str) -> int | None:
    """Score *candidate* against *query*; None means no match."""
    positions = align(candidate, query)
    if positions is None:
        return None
    return score_positions(candidate, positions)


def match(candidate: str, query: str, note_id: str | None = None) -> FuzzyMatch | None:
    positions = align(candidate, query)
    if positions is None:
        return None
    return FuzzyMatch(
        candidate=candidate,
        score=score_positions(candidate, positions),
        positions=positions,
        note_id=note_id,
    )


def rank(candidates: Iterable[str], query: str, limit: int | None = None) -> list[FuzzyMatch]:
    """Matching candidates ordered by descending score, then lexicographically."""
    results = [m for m in (match(c, query) for c in candidates) if m is not None]
    results.sort(key=lambda m: (-m.score, m.candidate))
    return results[:limit] if limit is not None else results


def rank_notes(
    notes: Iterable[tuple[str, str]],
    query: str,
    limit: int | None = None,
) -> list[FuzzyMatch]:
    """Rank ``(note_id, title)`` pairs by the better of their title and path scores.

    The reported candidate is whichever string scored best; ties prefer the title.
    """
    results: list[FuzzyMatch] = []
    for note_id, title in notes:
        best = match(title, query, note_id)
        if note_id != title:
            by_path = match(note_id, query, note_id)
            if by_path is not None and (best is None or by_path.score > best.score):
                best = by_path
        if best is not None:
            results.append(best)
    results.sort(key=lambda m: (-m.score, m.candidate, m.note_id or ""))
    return results[:limit] if limit is not None else results
