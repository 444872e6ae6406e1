"""Dependency cycle search over the tag graph (edges point from a tag to what it depends on)."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping


def format_cycle(cycle: tuple[str, ...]) -> str:
    """Render a closed path as ``A → B → C → A``."""
    return " → ".join(cycle)


def _normalize_cycle(path: list[str]) -> tuple[str, ...]:
    """Rotate an open cycle path so that its smallest element comes first.

    A->B->C and B->C->A are the same cycle. The path must not repeat the
    start node at the end.
    """
    if not path:
        return ()
    min_idx = path.index(min(path))
    return tuple(path[min_idx:] + path[:min_idx])


def find_dependency_cycle(
    start_id: str, edges: Mapping[str, Iterable[str]]
) -> tuple[str, ...] | None:
    """Return the first cycle through *start_id*, or ``None``.

    Iterative depth-first search with a *visiting* set (the current path)
    and a *visited* set (nodes fully explored without reaching the start,
    which therefore cannot lie on a cycle through it). The result is a
    closed path, e.g. ``("A", "B", "C", "A")``; a self-dependency yields
    ``("A", "A")``. Neighbours are explored in sorted order so the reported
    path is deterministic.
    """
    path: list[str] = [start_id]
    visiting: set[str] = {start_id}
    visited: set[str] = set()
    stack: list[Iterator[str]] = [iter(sorted(edges.get(start_id, ())))]

    while stack:
        neighbor = next(stack[-1], None)
        if neighbor is None:
            stack.pop()
            done = path.pop()
            visiting.discard(done)
            visited.add(done)
            continue
        if neighbor == start_id:
            return (*path, start_id)
        if neighbor in visiting or neighbor in visited:
            continue
        path.append(neighbor)
        visiting.add(neighbor)
        stack.append(iter(sorted(edges.get(neighbor, ()))))

    return None


def find_all_cycles(edges: Mapping[str, Iterable[str]]) -> list[tuple[str, ...]]:
    """Return every distinct elementary cycle reachable in *edges*, each reported once.

    Cycles are closed paths starting at their smallest id, sorted for
    stable output.
    """
    adjacency = {node: sorted(targets) for node, targets in edges.items()}
    all_nodes: set[str] = set(adjacency)
    for targets in adjacency.values():
        all_nodes.update(targets)

    seen: set[tuple[str, ...]] = set()
    for start in sorted(all_nodes):
        stack: list[tuple[str, list[str]]] = [(start, [start])]
        while stack:
            current, path = stack.pop()
            for neighbor in adjacency.get(current, []):
                if neighbor in path:
                    seen.add(_normalize_cycle(path[path.index(neighbor) :]))
                elif neighbor > start:
                    # Cycles through smaller ids were found from those ids already.
                    stack.append((neighbor, [*path, neighbor]))
    return sorted((*cycle, cycle[0]) for cycle in seen)
