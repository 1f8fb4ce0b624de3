"""
Graph functions for notegraph.

Derived views over the vault index: the whole-vault link graph and the
local neighbourhood of one note. Edges are resolved links only; broken
links never appear.
"""

from .index import VaultIndex
from .models import GraphEdge, GraphNode, Note


def build_graph(index: VaultIndex) -> dict:
    """Build a complete graph of all notes and their resolved links.

    Returns:
        dict with:
        - nodes: list of GraphNode as dicts
        - edges: list of GraphEdge as dicts
        - orphans: list of GraphNode as dicts (notes with no links either way)
        - stats: global graph statistics
    """
    notes = index.notes()
    edges: list[GraphEdge] = []
    connection_counts: dict[str, int] = {note.id: 0 for note in notes}

    for note in notes:
        for target in sorted(note.resolved_targets()):
            edges.append(GraphEdge(source=note.id, target=target))
            connection_counts[note.id] += 1
            connection_counts[target] = connection_counts.get(target, 0) + 1

    nodes = [_node(note, connection_counts[note.id]) for note in notes]
    orphans = [n for n in nodes if n.connections == 0]

    stats = {
        "total_nodes": len(nodes),
        "total_edges": len(edges),
        "orphan_count": len(orphans),
        "broken_links": len(index.broken_links()),
        "avg_connections": round(sum(connection_counts.values()) / len(nodes), 2) if nodes else 0,
    }

    return {
        "nodes": [n.model_dump() for n in nodes],
        "edges": [e.model_dump() for e in edges],
        "orphans": [o.model_dump() for o in orphans],
        "stats": stats,
    }


def get_subgraph(index: VaultIndex, center_note: str, depth: int = 2) -> dict:
    """Get a subgraph centered on a specific note.

    Args:
        index: The vault index to read from
        center_note: Identifier, or any link target that resolves to a note
        depth: How many levels of connections to include (default: 2)

    Returns:
        dict with nodes[], edges[], center, and stats
    """
    center_id = center_note if center_note in index else index.resolve(center_note)
    if center_id is None:
        return {"error": f"Note not found: {center_note}"}

    # BFS over outgoing links and backlinks
    visited: set[str] = {center_id}
    frontier: set[str] = {center_id}
    for _ in range(depth):
        new_frontier: set[str] = set()
        for node_id in frontier:
            note = index.get(node_id)
            neighbours = set(index.backlinks_of(node_id))
            if note is not None:
                neighbours |= note.resolved_targets()
            for neighbour in neighbours - visited:
                visited.add(neighbour)
                new_frontier.add(neighbour)
        frontier = new_frontier

    subgraph_notes: dict[str, Note] = {}
    for node_id in sorted(visited):
        note = index.get(node_id)
        if note is not None:
            subgraph_notes[node_id] = note

    edges: list[GraphEdge] = [
        GraphEdge(source=node_id, target=target)
        for node_id, note in subgraph_notes.items()
        for target in sorted(note.resolved_targets())
        if target in subgraph_notes
    ]

    nodes: list[GraphNode] = []
    for node_id, note in subgraph_notes.items():
        conn_count = sum(1 for e in edges if e.source == node_id or e.target == node_id)
        nodes.append(_node(note, conn_count, is_center=node_id == center_id))

    stats = {
        "total_nodes": len(nodes),
        "total_edges": len(edges),
        "depth": depth,
        "center": center_id,
    }

    return {
        "nodes": [n.model_dump() for n in nodes],
        "edges": [e.model_dump() for e in edges],
        "center": center_id,
        "stats": stats,
    }


def _node(note: Note, connections: int, is_center: bool = False) -> GraphNode:
    return GraphNode(
        id=note.id,
        title=note.title,
        path=note.path,
        connections=connections,
        is_center=is_center,
    )
