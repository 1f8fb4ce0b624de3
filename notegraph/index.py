"""
Vault index for notegraph.

The index owns every :class:`Note` and the structures derived from them:
link resolution, the backlink graph, the tag hierarchy and the search engine.
Each mutation (build, update, remove) runs under one lock and bumps the
revision once, so a reader on another thread sees either the state before a
save or the state after it, never a mix.
"""

import threading
from collections import defaultdict
from collections.abc import Callable, Iterable

import structlog

from .backlinks import BacklinkGraph
from .config import Settings
from .fuzzy import rank_notes
from .models import ChangeKind, FuzzyMatch, IndexChange, LinkOccurrence, Note, NoteFile, SearchHit
from .parser import parse_note
from .resolver import LinkResolver, ResolutionPolicy
from .search import SearchEngine
from .tags import TagHierarchy, split_tag
from .utils import IndexConsistencyError, normalise_rel_path, note_id_for_path

logger = structlog.get_logger(__name__)

Listener = Callable[[IndexChange], None]


class VaultIndex:
    """In-memory table of notes keyed by identifier, plus derived indices."""

    def __init__(
        self,
        policy: ResolutionPolicy | None = None,
        extension: str = ".md",
        snippet_radius: int = 40,
    ):
        self.policy = policy or ResolutionPolicy()
        self.extension = extension
        self.snippet_radius = snippet_radius
        self.revision = 0
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._reset()

    @classmethod
    def from_settings(cls, settings: Settings) -> "VaultIndex":
        return cls(
            policy=ResolutionPolicy(rules=settings.resolution_rules),
            extension=settings.default_extension,
            snippet_radius=settings.snippet_radius,
        )

    def _reset(self) -> None:
        self._notes: dict[str, Note] = {}
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self.resolver = LinkResolver(self.policy, self.extension)
        self.backlinks = BacklinkGraph()
        self.tags = TagHierarchy()
        self.search_engine = SearchEngine(self.snippet_radius)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for settled changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: IndexChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("index_listener_failed", revision=change.revision)

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _resolve(self, note: Note) -> Note:
        links = tuple(
            link if link.resolved == resolved else link.model_copy(update={"resolved": resolved})
            for link, resolved in (
                (link, self.resolver.resolve(link.target, note.id)) for link in note.links
            )
        )
        if links == note.links:
            return note
        return note.model_copy(update={"links": links})

    def _add_dependents(self, note: Note) -> None:
        for link in note.links:
            self._dependents[self.resolver.dependency_key(link.target)].add(note.id)

    def _drop_dependents(self, note: Note) -> None:
        for link in note.links:
            key = self.resolver.dependency_key(link.target)
            sources = self._dependents.get(key)
            if sources is not None:
                sources.discard(note.id)
                if not sources:
                    del self._dependents[key]

    def _install(self, note: Note) -> Note:
        note = self._resolve(note)
        self._notes[note.id] = note
        self._add_dependents(note)
        self.backlinks.set_outgoing(note.id, note.resolved_targets())
        self.tags.set_tags(note.id, note.tags)
        self.search_engine.index(note.id, note.content)
        return note

    def _reresolve(self, keys: set[str], skip: set[str]) -> list[str]:
        """Re-run resolution for notes with links under *keys*; returns changed ids."""
        sources: set[str] = set()
        for key in keys:
            sources |= self._dependents.get(key, set())
        changed: list[str] = []
        for source in sorted(sources - skip):
            note = self._notes.get(source)
            if note is None:
                continue
            resolved = self._resolve(note)
            if resolved is not note:
                self._notes[source] = resolved
                self.backlinks.set_outgoing(source, resolved.resolved_targets())
                changed.append(source)
        return changed

    def _commit(self, kind: ChangeKind, note_id: str | None, affected: list[str]) -> IndexChange:
        self.revision += 1
        return IndexChange(revision=self.revision, kind=kind, note_id=note_id, affected=affected)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def build(self, files: Iterable[NoteFile], strict: bool = True) -> IndexChange:
        """Rebuild the whole index from file contents.

        Raises:
            IndexConsistencyError: two files map to the same identifier and
                *strict* is set. Without *strict* the lexicographically first
                path wins and the others are skipped.
        """
        parsed: dict[str, Note] = {}
        for file in sorted(files, key=lambda f: normalise_rel_path(f.path)):
            note = parse_note(file.path, file.content, file.modified)
            if note.id in parsed:
                if strict:
                    raise IndexConsistencyError(
                        f"Duplicate note identifier {note.id!r}: "
                        f"{parsed[note.id].path!r} and {note.path!r}"
                    )
                logger.warning("duplicate_note_skipped", note_id=note.id, path=note.path)
                continue
            parsed[note.id] = note

        with self._lock:
            self._reset()
            for note in parsed.values():
                self.resolver.add(note.id, note.title)
            for note in parsed.values():
                self._install(note)
            change = self._commit(ChangeKind.BUILT, None, sorted(parsed))

        logger.info("index_built", note_count=len(parsed), revision=change.revision)
        self._notify(change)
        return change

    def update(
        self,
        note_id: str,
        content: str,
        path: str | None = None,
        modified: float | None = None,
    ) -> IndexChange:
        """Reparse one note and update every derived structure for it.

        *path* is only needed for a note the index does not know yet; it
        defaults to the identifier plus the configured extension.
        """
        with self._lock:
            existing = self._notes.get(note_id)
            if path is None:
                path = existing.path if existing is not None else f"{note_id}{self.extension}"
            path = normalise_rel_path(path)
            if note_id_for_path(path) != note_id:
                raise ValueError(f"Path {path!r} does not map to note identifier {note_id!r}")
            if existing is not None and existing.path != path:
                raise IndexConsistencyError(
                    f"Duplicate note identifier {note_id!r}: {existing.path!r} and {path!r}"
                )

            note = parse_note(path, content, modified)

            if existing is None:
                keys = LinkResolver.keys_for(note.id, note.title)
            elif existing.title != note.title:
                keys = LinkResolver.keys_for(existing.id, existing.title) | LinkResolver.keys_for(note.id, note.title)
            else:
                keys = set()

            if existing is not None:
                self._drop_dependents(existing)
            self.resolver.add(note.id, note.title)
            self._install(note)
            affected = self._reresolve(keys, skip={note.id})
            change = self._commit(ChangeKind.UPDATED, note.id, affected)

        logger.debug("note_indexed", note_id=note_id, revision=change.revision, affected=len(affected))
        self._notify(change)
        return change

    def remove(self, note_id: str) -> IndexChange | None:
        """Delete a note; links elsewhere that pointed at it become broken."""
        with self._lock:
            old = self._notes.pop(note_id, None)
            if old is None:
                return None
            self.resolver.remove(note_id)
            self._drop_dependents(old)
            self.backlinks.remove_source(note_id)
            self.tags.remove_note(note_id)
            self.search_engine.remove(note_id)
            affected = self._reresolve(LinkResolver.keys_for(old.id, old.title), skip={note_id})
            change = self._commit(ChangeKind.REMOVED, note_id, affected)

        logger.debug("note_removed", note_id=note_id, revision=change.revision, affected=len(affected))
        self._notify(change)
        return change

    def rename(self, note_id: str, new_path: str, content: str | None = None) -> IndexChange:
        """Remove then add under the new path; no identity is carried over."""
        with self._lock:
            old = self._notes.get(note_id)
            if content is None:
                if old is None:
                    raise KeyError(note_id)
                content = old.content
            modified = old.modified if old is not None else None
            self.remove(note_id)
            new_id = note_id_for_path(new_path)
            return self.update(new_id, content, path=new_path, modified=modified)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._notes

    def get(self, note_id: str) -> Note | None:
        with self._lock:
            return self._notes.get(note_id)

    def notes(self) -> list[Note]:
        with self._lock:
            return [self._notes[k] for k in sorted(self._notes)]

    def links_of(self, note_id: str) -> list[LinkOccurrence]:
        note = self.get(note_id)
        return list(note.links) if note is not None else []

    def broken_links(self) -> list[LinkOccurrence]:
        with self._lock:
            return [
                link
                for note_id in sorted(self._notes)
                for link in self._notes[note_id].links
                if link.broken
            ]

    def backlinks_of(self, note_id: str) -> list[str]:
        with self._lock:
            return self.backlinks.backlinks_of(note_id)

    def notes_with_tag(self, tag: str) -> list[str]:
        with self._lock:
            return self.tags.notes_with_tag(tag)

    def all_tags(self) -> list[str]:
        with self._lock:
            return self.tags.all_tags()

    def resolve(self, raw: str, source: str | None = None) -> str | None:
        with self._lock:
            return self.resolver.resolve(raw, source)

    def search(self, terms: list[str] | str, limit: int | None = None) -> list[SearchHit]:
        with self._lock:
            return self.search_engine.query(terms, limit)

    def switch(self, query: str, limit: int | None = None) -> list[FuzzyMatch]:
        """Note switcher: fuzzy-rank every note by title and path."""
        with self._lock:
            pairs = [(note.id, note.title) for note in self._notes.values()]
        return rank_notes(pairs, query, limit)

    def autocomplete(self, query: str, limit: int | None = None) -> list[FuzzyMatch]:
        """Link autocomplete candidates; only notes that match the query at all."""
        return self.switch(query, limit)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def verify(self) -> None:
        """Check every invariant of the derived structures.

        Raises:
            IndexConsistencyError: describing the first violation found.
        """
        with self._lock:
            for note_id, note in self._notes.items():
                if note.id != note_id or note_id_for_path(note.path) != note_id:
                    raise IndexConsistencyError(f"Note {note_id!r} is stored under the wrong identifier")
                for link in note.links:
                    expected = self.resolver.resolve(link.target, note_id)
                    if link.resolved != expected:
                        raise IndexConsistencyError(
                            f"Stale resolution in {note_id!r}: {link.target!r} -> "
                            f"{link.resolved!r}, expected {expected!r}"
                        )
                for tag in note.tags:
                    segments = split_tag(tag)
                    for depth in range(1, len(segments) + 1):
                        prefix = "/".join(segments[:depth])
                        if note_id not in self.tags.notes_with_tag(prefix):
                            raise IndexConsistencyError(f"Tag {prefix!r} is missing note {note_id!r}")
                if note_id not in self.search_engine:
                    raise IndexConsistencyError(f"Note {note_id!r} is not in the search index")

            transpose: dict[str, list[str]] = defaultdict(list)
            for note_id in sorted(self._notes):
                for target in sorted(self._notes[note_id].resolved_targets()):
                    transpose[target].append(note_id)
            if dict(transpose) != self.backlinks.to_dict() or not self.backlinks.is_transpose():
                raise IndexConsistencyError("Backlink graph is not the transpose of resolved links")
            if len(self.search_engine) != len(self._notes):
                raise IndexConsistencyError("Search index holds notes the vault index does not")

    def state(self) -> dict:
        """By-value dump of the notes and every derived structure."""
        with self._lock:
            return {
                "notes": {note_id: self._notes[note_id].model_dump() for note_id in sorted(self._notes)},
                "backlinks": self.backlinks.to_dict(),
                "tags": self.tags.to_dict(),
                "search": self.search_engine.to_dict(),
            }
