"""
Vault session for notegraph.

Connects the file system to the vault index and the single edit buffer:
scans the vault (in the background, publishing the finished index in one
reference swap), refreshes incrementally by modification time, reacts to
file browser events and owns the save path. Read and write failures never
propagate out of the session; they become :class:`StatusCondition` entries.
"""

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import structlog

from .buffer import EditBuffer
from .config import Settings, settings as default_settings
from .index import Listener, VaultIndex
from .models import ChangeKind, FuzzyMatch, IndexChange, NoteFile, SearchHit, StatusCondition
from .utils import IndexConsistencyError, NoteIOError, normalise_rel_path, note_id_for_path
from .writer import create_note_file, read_note_content, write_note_content

logger = structlog.get_logger(__name__)


class VaultSession:
    """One open vault: the published index, the open note and status messages.

    Settings are read once here; nothing re-reads them later in the session.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or default_settings
        self.vault_path = Path(self.settings.vault_path).expanduser()
        self.extension = self.settings.default_extension
        self.index = VaultIndex.from_settings(self.settings)
        self.index.subscribe(self._forward)
        self.buffer: EditBuffer | None = None
        self.statuses: list[StatusCondition] = []
        self._mtimes: dict[str, float] = {}
        self._listeners: list[Listener] = []
        self._scan_task: asyncio.Task | None = None
        # held while files are read into the index or the index is changed
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Status and change notification
    # ------------------------------------------------------------------

    @property
    def last_status(self) -> StatusCondition | None:
        return self.statuses[-1] if self.statuses else None

    def _record_io_error(self, error: NoteIOError) -> None:
        logger.warning("note_io_failed", path=error.path, error=error.message)
        self.statuses.append(StatusCondition(kind="io_error", message=error.message, path=error.path))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for changes of whichever index is published."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _forward(self, change: IndexChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("session_listener_failed", revision=change.revision)

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def _is_hidden(self, rel_path: Path) -> bool:
        return not self.settings.show_hidden and any(part.startswith(".") for part in rel_path.parts)

    def list_note_files(self) -> list[str]:
        """Vault-relative paths of every note file, sorted."""
        if not self.vault_path.is_dir():
            return []
        found = []
        for note_file in self.vault_path.rglob(f"*{self.extension}"):
            rel_path = note_file.relative_to(self.vault_path)
            if self._is_hidden(rel_path) or not note_file.is_file():
                continue
            found.append(rel_path.as_posix())
        return sorted(found)

    def _path_for(self, note_id: str) -> str:
        note = self.index.get(note_id)
        return note.path if note is not None else f"{note_id}{self.extension}"

    def _stat_mtime(self, rel_path: str) -> float | None:
        try:
            return (self.vault_path / rel_path).stat().st_mtime
        except OSError:
            return None

    async def _load_note(self, rel_path: str) -> NoteFile | None:
        """Read one note; a failure is recorded as a status and yields None."""
        try:
            content = await read_note_content(self.vault_path, rel_path)
        except NoteIOError as e:
            self._record_io_error(e)
            return None
        return NoteFile(path=rel_path, content=content, modified=self._stat_mtime(rel_path))

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan(self) -> IndexChange:
        """Full scan: build a fresh index off the event loop, then swap it in.

        Saves and file events wait until the new index is published, so none
        of them lands on the index being replaced.
        """
        async with self._lock:
            return await self._rescan()

    async def _rescan(self) -> IndexChange:
        start_time = time.time()
        rel_paths = await asyncio.to_thread(self.list_note_files)
        results = await asyncio.gather(*(self._load_note(p) for p in rel_paths))
        files = [f for f in results if f is not None]

        index = VaultIndex.from_settings(self.settings)
        try:
            change = await asyncio.to_thread(index.build, files)
        except IndexConsistencyError as e:
            logger.warning("index_rebuilt_after_fault", error=str(e))
            change = await asyncio.to_thread(index.build, files, False)
            self.statuses.append(StatusCondition(kind="rebuilt", message=str(e)))

        self._publish(index, files)
        logger.info(
            "vault_scanned",
            note_count=len(index),
            failed=len(rel_paths) - len(files),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        self._forward(change)
        return change

    def start_scan(self) -> asyncio.Task:
        """Run :meth:`scan` in the background; readers keep the previous index meanwhile."""
        if self._scan_task is None or self._scan_task.done():
            self._scan_task = asyncio.create_task(self.scan())
        return self._scan_task

    async def wait_for_scan(self) -> None:
        if self._scan_task is not None:
            await self._scan_task

    def _publish(self, index: VaultIndex, files: list[NoteFile]) -> None:
        index.subscribe(self._forward)
        self.index = index
        self._mtimes = {f.path: f.modified for f in files if f.modified is not None}

    async def _recover(self, error: IndexConsistencyError) -> None:
        logger.warning("index_rebuilt_after_fault", error=str(error))
        await self._rescan()
        self.statuses.append(StatusCondition(kind="rebuilt", message=str(error)))

    async def refresh(self) -> tuple[int, int, int]:
        """Incremental rescan by modification time. Returns (added, updated, removed)."""
        async with self._lock:
            return await self._refresh()

    async def _refresh(self) -> tuple[int, int, int]:
        added = updated = removed = 0
        current = set(await asyncio.to_thread(self.list_note_files))

        to_load: list[tuple[str, bool]] = []
        for rel_path in sorted(current):
            mtime = self._stat_mtime(rel_path)
            if mtime is None:
                continue
            cached = self._mtimes.get(rel_path)
            if cached is None:
                to_load.append((rel_path, True))
            elif mtime > cached:
                to_load.append((rel_path, False))

        try:
            for rel_path, is_new in to_load:
                note_file = await self._load_note(rel_path)
                if note_file is None:
                    continue
                self._index_file(note_file)
                if is_new:
                    added += 1
                else:
                    updated += 1

            for rel_path in sorted(set(self._mtimes) - current):
                self._mtimes.pop(rel_path, None)
                if self.index.remove(note_id_for_path(rel_path)) is not None:
                    removed += 1
        except IndexConsistencyError as e:
            await self._recover(e)

        logger.info("vault_refreshed", added=added, updated=updated, removed=removed)
        return added, updated, removed

    def _index_file(self, note_file: NoteFile) -> IndexChange:
        change = self.index.update(
            note_id_for_path(note_file.path),
            note_file.content,
            path=note_file.path,
            modified=note_file.modified,
        )
        if note_file.modified is not None:
            self._mtimes[note_file.path] = note_file.modified
        return change

    # ------------------------------------------------------------------
    # File browser events
    # ------------------------------------------------------------------

    async def on_created(self, rel_path: str) -> IndexChange | None:
        rel_path = normalise_rel_path(rel_path)
        async with self._lock:
            note_file = await self._load_note(rel_path)
            if note_file is None:
                return None
            try:
                return self._index_file(note_file)
            except IndexConsistencyError as e:
                await self._recover(e)
                return None

    async def on_deleted(self, rel_path: str) -> IndexChange | None:
        rel_path = normalise_rel_path(rel_path)
        note_id = note_id_for_path(rel_path)
        async with self._lock:
            self._mtimes.pop(rel_path, None)
            change = self.index.remove(note_id)
        if self.buffer is not None and self.buffer.note_id == note_id and not self.buffer.is_editing:
            self.buffer = None
        return change

    async def on_renamed(self, old_rel_path: str, new_rel_path: str) -> IndexChange | None:
        """Remove the old note and add the new one; links to the old path are not rewritten."""
        old_rel_path = normalise_rel_path(old_rel_path)
        new_rel_path = normalise_rel_path(new_rel_path)
        old_id = note_id_for_path(old_rel_path)
        async with self._lock:
            self._mtimes.pop(old_rel_path, None)
            note_file = await self._load_note(new_rel_path)
            if note_file is None:
                self.index.remove(old_id)
                return None
            try:
                change = self.index.rename(old_id, new_rel_path, note_file.content)
            except IndexConsistencyError as e:
                await self._recover(e)
                return None
            if note_file.modified is not None:
                self._mtimes[new_rel_path] = note_file.modified
        if self.buffer is not None and self.buffer.note_id == old_id:
            self.buffer.note_id = note_id_for_path(new_rel_path)
        return change

    async def reload_note(self, note_id: str) -> IndexChange | None:
        """Re-read a note modified outside the session and reindex it as one save."""
        async with self._lock:
            note_file = await self._load_note(self._path_for(note_id))
            if note_file is None:
                return None
            try:
                change = self._index_file(note_file)
            except IndexConsistencyError as e:
                await self._recover(e)
                return None
        if self.buffer is not None and self.buffer.note_id == note_id:
            if self.buffer.is_editing:
                logger.warning("external_change_while_editing", note_id=note_id)
            else:
                self.buffer.reload(note_file.content)
        return change

    async def edit_externally(self, note_id: str, launcher: Callable[[Path], object]) -> IndexChange | None:
        """Hand the note file to a blocking external editor, then reindex it.

        *launcher* is called with the absolute file path in a worker thread
        and must return once the editor exits.
        """
        if self.buffer is not None and self.buffer.note_id == note_id and self.buffer.is_editing:
            if not await self.close_editor():
                return None
        file_path = self.vault_path / self._path_for(note_id)
        await asyncio.to_thread(launcher, file_path)
        return await self.reload_note(note_id)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    async def save_note(self, note_id: str, content: str) -> IndexChange:
        """Write *content* and reindex the note.

        Raises:
            NoteIOError: If the write fails; the index is left untouched.
        """
        async with self._lock:
            rel_path = self._path_for(note_id)
            await write_note_content(self.vault_path, rel_path, content)
            modified = self._stat_mtime(rel_path)
            try:
                change = self.index.update(note_id, content, path=rel_path, modified=modified)
            except IndexConsistencyError as e:
                await self._recover(e)
                change = IndexChange(revision=self.index.revision, kind=ChangeKind.BUILT, note_id=note_id)
            if modified is not None:
                self._mtimes[rel_path] = modified
        logger.info("note_saved", note_id=note_id, revision=change.revision)
        return change

    async def open_note(self, note_id: str) -> EditBuffer | None:
        """Open *note_id* in READ mode, saving the current buffer first if it is being edited.

        Returns None, leaving the current buffer open, when the note is
        unknown or the save fails.
        """
        note = self.index.get(note_id)
        if note is None:
            logger.warning("note_not_found", note_id=note_id)
            return None
        if self.buffer is not None and self.buffer.is_editing:
            if not await self.close_editor():
                return None
            note = self.index.get(note_id) or note
        self.buffer = EditBuffer(note_id, note.content, undo_history=self.settings.undo_history)
        return self.buffer

    def start_editing(self) -> EditBuffer:
        if self.buffer is None:
            raise RuntimeError("No note is open")
        self.buffer.enter_edit()
        return self.buffer

    async def close_editor(self) -> bool:
        """Leave EDIT through the save point. Returns False if the save failed."""
        buffer = self.buffer
        if buffer is None or not buffer.is_editing:
            return True

        async def save(content: str) -> None:
            if buffer.dirty:
                await self.save_note(buffer.note_id, content)

        try:
            await buffer.exit_edit(save)
        except NoteIOError as e:
            self._record_io_error(e)
            return False
        return True

    def refresh_autocomplete(self) -> list[FuzzyMatch]:
        """Recompute candidates for the open autocomplete query from saved notes."""
        if self.buffer is None or self.buffer.autocomplete is None:
            return []
        query = self.buffer.autocomplete.target_query
        matches = self.index.autocomplete(query, self.settings.autocomplete_limit)
        self.buffer.set_candidates(matches)
        return matches

    async def create_note(self, name: str, folder: str | None = None) -> str | None:
        """Create and index a new note; returns its identifier, or None on I/O failure.

        Raises:
            TitleValidationError / PathValidationError: For rejected names or folders.
            FileExistsError: If the note already exists.
        """
        try:
            rel_path = await create_note_file(self.vault_path, name, folder, self.extension)
        except NoteIOError as e:
            self._record_io_error(e)
            return None
        await self.on_created(rel_path)
        return note_id_for_path(rel_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, query: str) -> list[SearchHit]:
        return self.index.search(query, self.settings.max_search_results)

    def switch_notes(self, query: str) -> list[FuzzyMatch]:
        return self.index.switch(query, self.settings.finder_limit)
