"""
Edit buffer for notegraph.

Holds the open note as a list of lines with a cursor and a small mode machine:

    READ --enter_edit--> EDIT --exit_edit (save)--> READ
                          |  ^
                 "[[" typed  |  accept / cancel / cursor leaves the query
                          v  |
                      AUTOCOMPLETE

Modes are distinct types; an operation that is not defined for the current
mode raises :class:`ModeError` instead of silently doing nothing.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from .models import FuzzyMatch
from .utils import ModeError

logger = structlog.get_logger(__name__)

WORD_SEPARATORS = frozenset(".,;:!?()[]{}\"'`/\\-_")
LINK_OPEN = "[["
LINK_CLOSE = "]]"


def _char_class(ch: str) -> int:
    """0 for whitespace, 1 for word separators, 2 for word characters."""
    if ch.isspace():
        return 0
    return 1 if ch in WORD_SEPARATORS else 2


@dataclass(frozen=True)
class Position:
    row: int
    col: int


@dataclass(frozen=True)
class ReadMode:
    name = "read"


@dataclass(frozen=True)
class EditMode:
    name = "edit"


@dataclass
class AutocompleteMode:
    """Sub-state of EDIT entered by typing ``[[``; *anchor* is the first ``[``.

    *end* is the column just past the query text, which may lie after the
    cursor. *line_length* and *cursor_col* record the anchor line when *end*
    was last updated, so the next edit can be placed before or after it.
    """

    anchor: Position
    end: int = 0
    line_length: int = 0
    cursor_col: int = 0
    query: str = ""
    matches: list[FuzzyMatch] = field(default_factory=list)
    selected: int = 0
    name = "autocomplete"

    @property
    def target_query(self) -> str:
        """Query text before an optional ``|``."""
        return self.query.partition("|")[0]

    @property
    def display(self) -> str | None:
        """Display text after ``|``, or None when no ``|`` was typed."""
        before, sep, after = self.query.partition("|")
        return after if sep else None


Mode = ReadMode | EditMode | AutocompleteMode


@dataclass(frozen=True)
class FindMatch:
    row: int
    start: int
    end: int


@dataclass(frozen=True)
class _Snapshot:
    lines: tuple[str, ...]
    cursor: Position


class EditBuffer:
    """Mutable text of the currently open note."""

    def __init__(self, note_id: str, content: str = "", undo_history: int = 100):
        self.note_id = note_id
        self.lines: list[str] = content.split("\n")
        self.cursor = Position(0, 0)
        self.dirty = False
        self.mode: Mode = ReadMode()
        self.undo_history = undo_history
        self._undo: list[_Snapshot] = []
        self._redo: list[_Snapshot] = []
        self._typing = False

    def __repr__(self) -> str:
        return f"EditBuffer({self.note_id!r}, mode={self.mode.name}, dirty={self.dirty})"

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def is_editing(self) -> bool:
        return not isinstance(self.mode, ReadMode)

    @property
    def autocomplete(self) -> AutocompleteMode | None:
        return self.mode if isinstance(self.mode, AutocompleteMode) else None

    # ------------------------------------------------------------------
    # Mode transitions
    # ------------------------------------------------------------------

    def enter_edit(self) -> None:
        if not isinstance(self.mode, ReadMode):
            raise ModeError(f"Cannot enter edit mode from {self.mode.name}")
        self.mode = EditMode()
        self._typing = False

    async def exit_edit(self, save: Callable[[str], Awaitable[None]]) -> None:
        """Leave EDIT through the single save point.

        *save* receives the buffer text and must persist and reindex it. If it
        raises, the buffer stays in EDIT with its edits and the error propagates.
        """
        if not self.is_editing:
            raise ModeError("Cannot exit edit mode while reading")
        if isinstance(self.mode, AutocompleteMode):
            self.mode = EditMode()
        await save(self.text)
        self.mode = ReadMode()
        self.dirty = False
        self._undo.clear()
        self._redo.clear()
        self._typing = False

    def reload(self, content: str) -> None:
        """Replace the text after an external modification; READ mode only."""
        if self.is_editing:
            raise ModeError("Cannot reload a buffer with edits in progress")
        self.lines = content.split("\n")
        self._clamp()

    def cancel_autocomplete(self) -> None:
        """Close autocomplete, leaving the typed text as plain text."""
        if not isinstance(self.mode, AutocompleteMode):
            raise ModeError(f"No autocomplete to cancel in {self.mode.name} mode")
        self.mode = EditMode()

    def set_candidates(self, matches: list[FuzzyMatch]) -> None:
        ac = self._require_autocomplete()
        ac.matches = list(matches)
        ac.selected = 0

    def select_next(self) -> None:
        ac = self._require_autocomplete()
        if ac.matches:
            ac.selected = (ac.selected + 1) % len(ac.matches)

    def select_prev(self) -> None:
        ac = self._require_autocomplete()
        if ac.matches:
            ac.selected = (ac.selected - 1) % len(ac.matches)

    def accept(self, target: str | None = None) -> bool:
        """Replace ``[[query`` with a complete link to *target* (or the selected candidate).

        Returns False, closing autocomplete, when there is nothing to accept.
        """
        ac = self._require_autocomplete()
        if target is None and ac.matches:
            chosen = ac.matches[ac.selected]
            target = chosen.note_id or chosen.candidate
        if not target:
            self.mode = EditMode()
            return False

        self._snapshot()
        display = ac.display
        link = f"{LINK_OPEN}{target}|{display}{LINK_CLOSE}" if display is not None else f"{LINK_OPEN}{target}{LINK_CLOSE}"
        row, start = ac.anchor.row, ac.anchor.col
        line = self.lines[row]
        end = ac.end
        if line.startswith(LINK_CLOSE, end):
            end += len(LINK_CLOSE)
        self.lines[row] = line[:start] + link + line[end:]
        self.cursor = Position(row, start + len(link))
        self.mode = EditMode()
        self.dirty = True
        self._typing = False
        return True

    def _require_edit(self) -> None:
        if not self.is_editing:
            raise ModeError("Buffer is read-only until edit mode is entered")

    def _require_autocomplete(self) -> AutocompleteMode:
        if not isinstance(self.mode, AutocompleteMode):
            raise ModeError(f"Autocomplete is not open in {self.mode.name} mode")
        return self.mode

    def _sync_autocomplete(self) -> None:
        """Refresh the query from the text, closing when the cursor left it."""
        ac = self.autocomplete
        if ac is None:
            return
        row, col = ac.anchor.row, ac.anchor.col
        query_start = col + len(LINK_OPEN)
        if (
            self.cursor.row != row
            or row >= len(self.lines)
            or self.cursor.col < query_start
            or self.lines[row][col:query_start] != LINK_OPEN
        ):
            self.mode = EditMode()
            return
        line = self.lines[row]
        delta = len(line) - ac.line_length
        end = ac.end
        if delta > 0 and self.cursor.col == ac.cursor_col + delta:
            end += delta
        elif delta < 0 and (self.cursor.col < ac.cursor_col or ac.cursor_col < end):
            end += delta
        query = line[query_start:end]
        if self.cursor.col > end or LINK_CLOSE in query:
            self.mode = EditMode()
            return
        ac.end = end
        ac.line_length = len(line)
        ac.cursor_col = self.cursor.col
        ac.query = query

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def _snapshot(self) -> None:
        self._undo.append(_Snapshot(tuple(self.lines), self.cursor))
        if len(self._undo) > self.undo_history:
            del self._undo[0]
        self._redo.clear()

    def undo(self) -> bool:
        self._require_edit()
        if not self._undo:
            return False
        self._redo.append(_Snapshot(tuple(self.lines), self.cursor))
        self._restore(self._undo.pop())
        return True

    def redo(self) -> bool:
        self._require_edit()
        if not self._redo:
            return False
        self._undo.append(_Snapshot(tuple(self.lines), self.cursor))
        self._restore(self._redo.pop())
        return True

    def _restore(self, snapshot: _Snapshot) -> None:
        self.lines = list(snapshot.lines)
        self.cursor = snapshot.cursor
        self.dirty = True
        self._typing = False
        if isinstance(self.mode, AutocompleteMode):
            self.mode = EditMode()
        self._clamp()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert_char(self, ch: str) -> None:
        """Type one character; typing ``[[`` in EDIT opens autocomplete."""
        self._require_edit()
        if ch == "\n":
            self.newline()
            return
        if not self._typing:
            self._snapshot()
            self._typing = True
        row, col = self.cursor.row, self.cursor.col
        line = self.lines[row]
        self.lines[row] = line[:col] + ch + line[col:]
        self.cursor = Position(row, col + len(ch))
        self.dirty = True

        if isinstance(self.mode, EditMode) and self.lines[row][:self.cursor.col].endswith(LINK_OPEN):
            self.mode = AutocompleteMode(
                anchor=Position(row, self.cursor.col - len(LINK_OPEN)),
                end=self.cursor.col,
                line_length=len(self.lines[row]),
                cursor_col=self.cursor.col,
            )
        else:
            self._sync_autocomplete()

    def insert_text(self, text: str) -> None:
        """Insert *text*, possibly spanning several lines, at the cursor."""
        self._require_edit()
        if not text:
            return
        self._snapshot()
        self._typing = False
        row, col = self.cursor.row, self.cursor.col
        line = self.lines[row]
        pieces = text.split("\n")
        if len(pieces) == 1:
            self.lines[row] = line[:col] + text + line[col:]
            self.cursor = Position(row, col + len(text))
        else:
            head, tail = line[:col], line[col:]
            new_lines = [head + pieces[0], *pieces[1:-1], pieces[-1] + tail]
            self.lines[row:row + 1] = new_lines
            self.cursor = Position(row + len(pieces) - 1, len(pieces[-1]))
        self.dirty = True
        self._after_mutation()

    def newline(self) -> None:
        self._require_edit()
        self._snapshot()
        self._typing = False
        row, col = self.cursor.row, self.cursor.col
        line = self.lines[row]
        self.lines[row:row + 1] = [line[:col], line[col:]]
        self.cursor = Position(row + 1, 0)
        self.dirty = True
        self._after_mutation()

    def backspace(self) -> None:
        self._require_edit()
        row, col = self.cursor.row, self.cursor.col
        if col == 0 and row == 0:
            return
        self._snapshot()
        self._typing = False
        if col > 0:
            line = self.lines[row]
            self.lines[row] = line[:col - 1] + line[col:]
            self.cursor = Position(row, col - 1)
        else:
            previous = self.lines[row - 1]
            self.lines[row - 1:row + 1] = [previous + self.lines[row]]
            self.cursor = Position(row - 1, len(previous))
        self.dirty = True
        self._after_mutation()

    def delete_forward(self) -> None:
        self._require_edit()
        row, col = self.cursor.row, self.cursor.col
        line = self.lines[row]
        if col >= len(line) and row >= len(self.lines) - 1:
            return
        self._snapshot()
        self._typing = False
        if col < len(line):
            self.lines[row] = line[:col] + line[col + 1:]
        else:
            self.lines[row:row + 2] = [line + self.lines[row + 1]]
        self.dirty = True
        self._after_mutation()

    def insert_line(self, row: int, text: str = "") -> None:
        """Insert a whole line before *row* (``len(lines)`` appends)."""
        self._require_edit()
        row = max(0, min(row, len(self.lines)))
        self._snapshot()
        self._typing = False
        self.lines.insert(row, text)
        if self.cursor.row >= row:
            self.cursor = Position(self.cursor.row + 1, self.cursor.col)
        self.dirty = True
        self._after_mutation()

    def delete_line(self, row: int) -> str:
        """Remove line *row* and return its text; the buffer always keeps one line."""
        self._require_edit()
        if not 0 <= row < len(self.lines):
            raise IndexError(f"Line {row} out of range")
        self._snapshot()
        self._typing = False
        removed = self.lines.pop(row)
        if not self.lines:
            self.lines.append("")
        if self.cursor.row > row:
            self.cursor = Position(self.cursor.row - 1, self.cursor.col)
        self.dirty = True
        self._after_mutation()
        return removed

    def _after_mutation(self) -> None:
        self._clamp()
        self._sync_autocomplete()

    # ------------------------------------------------------------------
    # Cursor motion
    # ------------------------------------------------------------------

    def _clamp(self) -> None:
        if not self.lines:
            self.lines.append("")
        row = max(0, min(self.cursor.row, len(self.lines) - 1))
        col = max(0, min(self.cursor.col, len(self.lines[row])))
        if (row, col) != (self.cursor.row, self.cursor.col):
            self.cursor = Position(row, col)

    def _moved(self, row: int, col: int) -> None:
        self.cursor = Position(row, col)
        self._typing = False
        self._clamp()
        self._sync_autocomplete()

    def move_to(self, row: int, col: int) -> None:
        self._moved(row, col)

    def move_left(self) -> None:
        row, col = self.cursor.row, self.cursor.col
        if col > 0:
            self._moved(row, col - 1)
        elif row > 0:
            self._moved(row - 1, len(self.lines[row - 1]))

    def move_right(self) -> None:
        row, col = self.cursor.row, self.cursor.col
        if col < len(self.lines[row]):
            self._moved(row, col + 1)
        elif row < len(self.lines) - 1:
            self._moved(row + 1, 0)

    def move_up(self) -> None:
        if self.cursor.row > 0:
            self._moved(self.cursor.row - 1, self.cursor.col)

    def move_down(self) -> None:
        if self.cursor.row < len(self.lines) - 1:
            self._moved(self.cursor.row + 1, self.cursor.col)

    def move_line_start(self) -> None:
        self._moved(self.cursor.row, 0)

    def move_line_end(self) -> None:
        self._moved(self.cursor.row, len(self.lines[self.cursor.row]))

    def _offset(self) -> int:
        return sum(len(line) + 1 for line in self.lines[:self.cursor.row]) + self.cursor.col

    def _move_offset(self, offset: int) -> None:
        row = 0
        while row < len(self.lines) - 1 and offset > len(self.lines[row]):
            offset -= len(self.lines[row]) + 1
            row += 1
        self._moved(row, offset)

    def move_word_left(self) -> None:
        """Move to the start of the previous run of word or separator characters."""
        text = self.text
        i = self._offset()
        while i > 0 and text[i - 1].isspace():
            i -= 1
        if i > 0:
            cls = _char_class(text[i - 1])
            while i > 0 and _char_class(text[i - 1]) == cls:
                i -= 1
        self._move_offset(i)

    def move_word_right(self) -> None:
        """Move past the current run of word or separator characters and following whitespace."""
        text = self.text
        i = self._offset()
        n = len(text)
        if i < n and not text[i].isspace():
            cls = _char_class(text[i])
            while i < n and _char_class(text[i]) == cls:
                i += 1
        while i < n and text[i].isspace():
            i += 1
        self._move_offset(i)

    # ------------------------------------------------------------------
    # Find in note
    # ------------------------------------------------------------------

    def find(self, query: str, case_sensitive: bool = False) -> list[FindMatch]:
        """Every occurrence of *query*, overlapping ones included, line by line."""
        if not query:
            return []
        needle = query if case_sensitive else query.lower()
        matches: list[FindMatch] = []
        for row, line in enumerate(self.lines):
            haystack = line if case_sensitive else line.lower()
            start = haystack.find(needle)
            while start != -1:
                matches.append(FindMatch(row, start, start + len(needle)))
                start = haystack.find(needle, start + 1)
        return matches
