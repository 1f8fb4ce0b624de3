"""
Tag hierarchy for notegraph.

Hierarchical tags (``project/alpha/beta``) are inserted into a prefix tree.
Every node counts, per note, the declarations at or below it, so a note that
declares two tags under ``project`` stays under ``project`` until both go.
"""

from collections import Counter
from collections.abc import Iterable, Iterator

TAG_SEPARATOR = "/"


def split_tag(tag: str) -> list[str]:
    """Path segments of a tag; empty segments are dropped."""
    return [part for part in tag.lower().split(TAG_SEPARATOR) if part]


class TagNode:
    """A node of the tag tree, keyed by its full path."""

    __slots__ = ("name", "path", "children", "declared", "subtree")

    def __init__(self, name: str, path: str):
        self.name = name
        self.path = path
        self.children: dict[str, "TagNode"] = {}
        self.declared: set[str] = set()
        self.subtree: Counter[str] = Counter()

    def __repr__(self) -> str:
        return f"TagNode({self.path!r}, notes={len(self.subtree)})"


class TagHierarchy:
    """Prefix tree over every note's tags."""

    def __init__(self) -> None:
        self.root = TagNode("", "")
        self._note_tags: dict[str, frozenset[str]] = {}

    def _walk_path(self, segments: list[str], create: bool) -> list[TagNode]:
        node = self.root
        chain: list[TagNode] = []
        for segment in segments:
            child = node.children.get(segment)
            if child is None:
                if not create:
                    return []
                path = f"{node.path}{TAG_SEPARATOR}{segment}" if node.path else segment
                child = TagNode(segment, path)
                node.children[segment] = child
            chain.append(child)
            node = child
        return chain

    def _insert(self, note_id: str, tag: str) -> None:
        chain = self._walk_path(split_tag(tag), create=True)
        if not chain:
            return
        for node in chain:
            node.subtree[note_id] += 1
        chain[-1].declared.add(note_id)

    def _delete(self, note_id: str, tag: str) -> None:
        segments = split_tag(tag)
        chain = self._walk_path(segments, create=False)
        if not chain:
            return
        chain[-1].declared.discard(note_id)
        for node in chain:
            node.subtree[note_id] -= 1
            if node.subtree[note_id] <= 0:
                del node.subtree[note_id]
        # prune nodes no note declares at or below
        parents = [self.root] + chain[:-1]
        for parent, node in reversed(list(zip(parents, chain))):
            if node.subtree:
                break
            del parent.children[node.name]

    def set_tags(self, note_id: str, tags: Iterable[str]) -> None:
        """Replace the tags declared by *note_id*."""
        new = frozenset(t for t in tags if split_tag(t))
        old = self._note_tags.get(note_id, frozenset())
        for tag in old - new:
            self._delete(note_id, tag)
        for tag in new - old:
            self._insert(note_id, tag)
        if new:
            self._note_tags[note_id] = new
        else:
            self._note_tags.pop(note_id, None)

    def remove_note(self, note_id: str) -> None:
        self.set_tags(note_id, ())

    def node(self, path: str) -> TagNode | None:
        segments = split_tag(path)
        if not segments:
            return self.root
        chain = self._walk_path(segments, create=False)
        return chain[-1] if chain else None

    def notes_with_tag(self, path: str) -> list[str]:
        """Notes declaring *path* or any tag below it, ordered by identifier."""
        node = self.node(path.lstrip("#"))
        if node is None:
            return []
        return sorted(node.subtree)

    def children(self, path: str = "") -> list[str]:
        node = self.node(path)
        if node is None:
            return []
        return sorted(child.path for child in node.children.values())

    def walk(self) -> Iterator[tuple[int, TagNode]]:
        """Depth-first (depth, node) pairs in name order, root excluded."""
        stack = [(0, child) for child in sorted(self.root.children.values(), key=lambda n: n.name, reverse=True)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            for child in sorted(node.children.values(), key=lambda n: n.name, reverse=True):
                stack.append((depth + 1, child))

    def all_tags(self) -> list[str]:
        """Every tag path in the tree, including implied ancestors."""
        return sorted(node.path for _, node in self.walk())

    def clear(self) -> None:
        self.root = TagNode("", "")
        self._note_tags.clear()

    def to_dict(self) -> dict[str, list[str]]:
        return {node.path: sorted(node.subtree) for _, node in self.walk()}
