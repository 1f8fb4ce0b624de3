"""
Backlink graph for notegraph.

Keeps the resolved outgoing target set of every note together with its exact
transpose. Updates diff a note's previous targets against its new ones, so
their cost depends on that note's links only.
"""

from collections import defaultdict


class BacklinkGraph:
    """target note id -> set of source note ids, kept as the transpose of outgoing links."""

    def __init__(self) -> None:
        self._outgoing: dict[str, set[str]] = {}
        self._incoming: dict[str, set[str]] = defaultdict(set)

    def set_outgoing(self, source: str, targets: set[str]) -> tuple[set[str], set[str]]:
        """Replace *source*'s resolved targets; returns (added, dropped) targets."""
        previous = self._outgoing.get(source, set())
        added = targets - previous
        dropped = previous - targets

        for target in dropped:
            sources = self._incoming.get(target)
            if sources is not None:
                sources.discard(source)
                if not sources:
                    del self._incoming[target]
        for target in added:
            self._incoming[target].add(source)

        if targets:
            self._outgoing[source] = set(targets)
        else:
            self._outgoing.pop(source, None)
        return added, dropped

    def remove_source(self, source: str) -> set[str]:
        """Forget every outgoing edge of *source*; returns the targets it linked to."""
        _, dropped = self.set_outgoing(source, set())
        return dropped

    def backlinks_of(self, note_id: str) -> list[str]:
        """Notes currently linking to *note_id*, ordered by identifier."""
        return sorted(self._incoming.get(note_id, ()))

    def outgoing_of(self, note_id: str) -> list[str]:
        return sorted(self._outgoing.get(note_id, ()))

    def edges(self) -> list[tuple[str, str]]:
        """All (source, target) pairs, ordered."""
        return sorted(
            (source, target)
            for source, targets in self._outgoing.items()
            for target in targets
        )

    def is_transpose(self) -> bool:
        """True when the incoming table is exactly the transpose of the outgoing one."""
        expected: dict[str, set[str]] = defaultdict(set)
        for source, targets in self._outgoing.items():
            for target in targets:
                expected[target].add(source)
        return dict(expected) == {k: v for k, v in self._incoming.items() if v}

    def clear(self) -> None:
        self._outgoing.clear()
        self._incoming.clear()

    def to_dict(self) -> dict[str, list[str]]:
        return {target: sorted(sources) for target, sources in sorted(self._incoming.items()) if sources}
