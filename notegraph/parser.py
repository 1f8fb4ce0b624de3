"""
Span parser for notegraph.

Turns note text into an ordered, non-overlapping list of structural spans and
builds the :class:`Note` the vault index stores. Runs on every save, so every
scan below only moves forward: a delimiter search that fails marks that
delimiter as exhausted for the rest of the line instead of being retried.
"""

import re

from .models import LinkOccurrence, Note, Span, SpanKind, TextRange
from .utils import (
    FRONTMATTER_PATTERN,
    basename,
    frontmatter_tags,
    normalise_rel_path,
    note_id_for_path,
    parse_frontmatter,
)

HEADING_PATTERN = re.compile(r'(#{1,6}) +(.*)')
STRUCTURAL_PATTERN = re.compile(r'`|\[\[|#')
EMPHASIS_PATTERN = re.compile(r'[*_]')
FENCE_CHARS = ("`", "~")

TAG_BODY_EXTRA = "-_/"
TAG_BLOCKING_PREFIX = "#/"


def _is_word(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _split_link(inner: str) -> tuple[str, str | None, str | None]:
    """Split ``target#anchor|display`` into (target, display, anchor)."""
    target, sep, display = inner.partition("|")
    target = target.strip()
    anchor = target.partition("#")[2].strip() or None
    return target, (display.strip() if sep else None), anchor


def _closes_fence(line: str, fence: str) -> bool:
    """A closing fence is a run of the opening marker followed only by whitespace."""
    rest = line.rstrip()
    return rest.startswith(fence) and not rest.strip(fence[0])


def _scan_tag(text: str, k: int, end: int) -> Span | None:
    """Recognize a tag starting at the ``#`` at *k*, or return None."""
    if k > 0 and (_is_word(text[k - 1]) or text[k - 1] in TAG_BLOCKING_PREFIX):
        return None
    if k + 1 >= end or not _is_word(text[k + 1]):
        return None
    j = k + 1
    while j < end and (text[j].isalnum() or text[j] in TAG_BODY_EXTRA):
        j += 1
    name = text[k + 1:j].rstrip("/")
    return Span(
        kind=SpanKind.TAG,
        range=TextRange(start=k, end=k + 1 + len(name)),
        text=name.lower(),
    )


def _scan_emphasis(text: str, start: int, end: int, spans: list[Span]) -> None:
    """Bold, italic: paired delimiters inside a gap between structural spans."""
    exhausted: set[str] = set()
    i = start
    while i < end:
        m = EMPHASIS_PATTERN.search(text, i, end)
        if m is None:
            return
        k = m.start()
        if text.startswith("**", k) and k + 1 < end:
            if "**" in exhausted:
                i = k + 2
                continue
            j = text.find("**", k + 2, end)
            if j == -1:
                exhausted.add("**")
                i = k + 2
                continue
            inner = text[k + 2:j]
            if inner and not inner[0].isspace() and not inner[-1].isspace():
                spans.append(Span(kind=SpanKind.BOLD, range=TextRange(start=k, end=j + 2)))
                i = j + 2
            else:
                i = k + 2
            continue

        delim = text[k]
        if delim in exhausted:
            i = k + 1
            continue
        if delim == "_" and k > 0 and text[k - 1].isalnum():
            i = k + 1
            continue
        j = text.find(delim, k + 1, end)
        if j == -1:
            exhausted.add(delim)
            i = k + 1
            continue
        inner = text[k + 1:j]
        closes = bool(inner) and not inner[0].isspace() and not inner[-1].isspace()
        if delim == "_" and j + 1 < end and text[j + 1].isalnum():
            closes = False
        if closes:
            spans.append(Span(kind=SpanKind.ITALIC, range=TextRange(start=k, end=j + 1)))
            i = j + 1
        else:
            i = k + 1


def _scan_inline(text: str, start: int, end: int, spans: list[Span]) -> None:
    """Inline code, links and tags first; emphasis only in the gaps between them."""
    no_tick = False
    no_link_close = False
    link_close = -1
    gap_start = start
    i = start
    while i < end:
        m = STRUCTURAL_PATTERN.search(text, i, end)
        if m is None:
            break
        k = m.start()
        token = m.group()
        found: Span | None = None
        resume = k + len(token)

        if token == "`":
            if not no_tick:
                j = text.find("`", k + 1, end)
                if j == -1:
                    no_tick = True
                elif j == k + 1:
                    resume = k + 2
                else:
                    found = Span(kind=SpanKind.INLINE_CODE, range=TextRange(start=k, end=j + 1))
                    resume = j + 1
        elif token == "[[":
            if not no_link_close:
                j = link_close if link_close >= k + 2 else text.find("]]", k + 2, end)
                link_close = j
                if j == -1:
                    no_link_close = True
                # a later opener owns the close: "[[a [[b]]" links only b
                elif text.find("[[", k + 2, j) == -1:
                    target, display, anchor = _split_link(text[k + 2:j])
                    if target:
                        found = Span(
                            kind=SpanKind.LINK,
                            range=TextRange(start=k, end=j + 2),
                            target=target,
                            display=display,
                            anchor=anchor,
                        )
                        resume = j + 2
        else:
            found = _scan_tag(text, k, end)
            if found is not None:
                resume = found.range.end

        if found is not None:
            _scan_emphasis(text, gap_start, k, spans)
            spans.append(found)
            gap_start = resume
        i = resume

    _scan_emphasis(text, gap_start, end, spans)


def parse_spans(text: str) -> list[Span]:
    """Parse note text into ordered, non-overlapping structural spans.

    Never raises: malformed markup is left as plain text.
    """
    spans: list[Span] = []
    n = len(text)
    pos = 0

    fm = FRONTMATTER_PATTERN.match(text)
    if fm:
        fm_end = fm.end()
        visible_end = fm_end - 1 if text[fm_end - 1:fm_end] == "\n" else fm_end
        spans.append(Span(kind=SpanKind.FRONTMATTER, range=TextRange(start=0, end=visible_end)))
        pos = fm_end

    fence: str | None = None
    fence_start = 0
    while pos < n:
        nl = text.find("\n", pos)
        line_end = n if nl == -1 else nl
        line = text[pos:line_end]

        if fence is not None:
            if _closes_fence(line, fence):
                spans.append(Span(
                    kind=SpanKind.CODE_BLOCK,
                    range=TextRange(start=fence_start, end=line_end),
                ))
                fence = None
        elif line[:1] in FENCE_CHARS and line.startswith(line[0] * 3):
            fence = line[0] * 3
            fence_start = pos
        else:
            heading = HEADING_PATTERN.match(line)
            if heading:
                spans.append(Span(
                    kind=SpanKind.HEADING,
                    range=TextRange(start=pos, end=line_end),
                    level=len(heading.group(1)),
                    text=heading.group(2).strip(),
                ))
            else:
                _scan_inline(text, pos, line_end, spans)

        pos = line_end + 1

    if fence is not None:
        # unterminated fence runs to the end of the text
        spans.append(Span(kind=SpanKind.CODE_BLOCK, range=TextRange(start=fence_start, end=n)))

    return spans


def heading_references(text: str, spans: list[Span]) -> list[Span]:
    """Tags and links written in heading text, after the ``#`` marker.

    Heading spans stay atomic in the span list, but what they reference still
    belongs to the note.
    """
    found: list[Span] = []
    for span in spans:
        if span.kind is not SpanKind.HEADING:
            continue
        heading = HEADING_PATTERN.match(text, span.range.start, span.range.end)
        inner: list[Span] = []
        _scan_inline(text, heading.start(2), span.range.end, inner)
        found.extend(s for s in inner if s.kind in (SpanKind.TAG, SpanKind.LINK))
    return found


def parse_note(rel_path: str, content: str, modified: float | None = None) -> Note:
    """Parse *content* into a :class:`Note` with unresolved link occurrences."""
    rel_path = normalise_rel_path(rel_path)
    note_id = note_id_for_path(rel_path)
    spans = parse_spans(content)

    frontmatter: dict = {}
    if spans and spans[0].kind is SpanKind.FRONTMATTER:
        frontmatter, _ = parse_frontmatter(content)

    references = sorted(
        [s for s in spans if s.kind in (SpanKind.TAG, SpanKind.LINK)] + heading_references(content, spans),
        key=lambda s: s.range.start,
    )

    tags = {s.text for s in references if s.kind is SpanKind.TAG and s.text}
    tags |= frontmatter_tags(frontmatter)

    links = tuple(
        LinkOccurrence(
            source=note_id,
            target=s.target,
            display=s.display,
            anchor=s.anchor,
            range=s.range,
        )
        for s in references
        if s.kind is SpanKind.LINK
    )

    title = next(
        (s.text for s in spans if s.kind is SpanKind.HEADING and s.text),
        basename(note_id),
    )

    return Note(
        id=note_id,
        path=rel_path,
        title=title,
        content=content,
        spans=tuple(spans),
        tags=frozenset(tags),
        links=links,
        frontmatter=frontmatter,
        modified=modified,
    )
