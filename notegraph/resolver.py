"""
Link resolver for notegraph.

Maps the raw target of a wiki-link to a note identifier. Lookup tables are
maintained incrementally by the vault index as notes come and go.
"""

from collections import defaultdict

from pydantic import BaseModel, field_validator

from .utils import basename, normalise_rel_path

RULES = ("exact_path", "path_ci", "title_ci", "basename_ci")


class ResolutionPolicy(BaseModel):
    """Ordered resolution rules; the first rule with a candidate wins.

    Rules:
    - exact_path: target equals a note identifier (case-sensitive)
    - path_ci: target equals a note identifier ignoring case
    - title_ci: target equals a note title ignoring case
    - basename_ci: target equals the last path segment of an identifier ignoring case

    When a rule yields several candidates the lexicographically smallest
    identifier is chosen.
    """

    rules: tuple[str, ...] = ("exact_path", "path_ci", "title_ci")

    @field_validator("rules")
    @classmethod
    def _known_rules(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [rule for rule in value if rule not in RULES]
        if unknown:
            raise ValueError(f"Unknown resolution rules: {', '.join(unknown)}")
        return value


class LinkResolver:
    """Resolve raw link targets against the notes currently in the index."""

    def __init__(self, policy: ResolutionPolicy | None = None, extension: str = ".md"):
        self.policy = policy or ResolutionPolicy()
        self.extension = extension.lower()
        self._ids: set[str] = set()
        self._titles: dict[str, str] = {}
        self._by_id_lower: dict[str, set[str]] = defaultdict(set)
        self._by_title_lower: dict[str, set[str]] = defaultdict(set)
        self._by_basename_lower: dict[str, set[str]] = defaultdict(set)

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._ids

    def add(self, note_id: str, title: str) -> None:
        """Register a note, replacing its previous title if already known."""
        if note_id in self._ids:
            self.remove(note_id)
        self._ids.add(note_id)
        self._titles[note_id] = title
        self._by_id_lower[note_id.lower()].add(note_id)
        self._by_title_lower[title.lower()].add(note_id)
        self._by_basename_lower[basename(note_id).lower()].add(note_id)

    def remove(self, note_id: str) -> None:
        if note_id not in self._ids:
            return
        self._ids.discard(note_id)
        title = self._titles.pop(note_id)
        for table, key in (
            (self._by_id_lower, note_id.lower()),
            (self._by_title_lower, title.lower()),
            (self._by_basename_lower, basename(note_id).lower()),
        ):
            bucket = table.get(key)
            if bucket is not None:
                bucket.discard(note_id)
                if not bucket:
                    del table[key]

    def target_name(self, raw: str) -> str:
        """Strip the heading anchor and a trailing note extension from a raw target."""
        name = raw.partition("#")[0].strip()
        name = normalise_rel_path(name)
        if self.extension and name.lower().endswith(self.extension):
            name = name[: -len(self.extension)]
        return name

    def dependency_key(self, raw: str) -> str:
        """Key under which a link's outcome can change: its lowercased target name."""
        return self.target_name(raw).lower()

    @staticmethod
    def keys_for(note_id: str, title: str) -> set[str]:
        """Dependency keys whose links may re-resolve when this note appears or goes."""
        return {note_id.lower(), title.lower(), basename(note_id).lower()}

    def resolve(self, raw: str, source: str | None = None) -> str | None:
        """Return the identifier *raw* resolves to, or None when the link is broken.

        An anchor-only target (``[[#Heading]]``) resolves to *source*.
        """
        name = self.target_name(raw)
        if not name:
            return source if source in self._ids else None

        lowered = name.lower()
        for rule in self.policy.rules:
            if rule == "exact_path":
                if name in self._ids:
                    return name
                continue
            if rule == "path_ci":
                candidates = self._by_id_lower.get(lowered)
            elif rule == "title_ci":
                candidates = self._by_title_lower.get(lowered)
            else:
                candidates = self._by_basename_lower.get(lowered)
            if candidates:
                return min(candidates)
        return None
