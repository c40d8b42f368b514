"""Pure graph helpers over blocker -> blocked adjacency lists."""

from collections.abc import Mapping, Sequence


def reaches(adjacency: Mapping[str, Sequence[str]], start: str, target: str) -> bool:
    """True if target is reachable from start (start reaches itself)."""
    stack = [start]
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(adjacency.get(node, ()))
    return False


def find_cycles(order: Sequence[str], adjacency: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Cycles found by an iterative DFS that tracks the current path.

    Roots are tried in ``order`` and neighbours in adjacency order, so the result is
    deterministic. Each back edge yields one cycle, listed from the node the back edge
    points at, following edges.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []
    cycles: list[list[str]] = []

    for root in order:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        path.append(root)
        stack = [(root, iter(adjacency.get(root, ())))]
        while stack:
            node, neighbours = stack[-1]
            nxt = next(neighbours, None)
            if nxt is None:
                stack.pop()
                path.pop()
                on_stack.discard(node)
            elif nxt in on_stack:
                cycles.append(path[path.index(nxt) :])
            elif nxt not in visited:
                visited.add(nxt)
                on_stack.add(nxt)
                path.append(nxt)
                stack.append((nxt, iter(adjacency.get(nxt, ()))))
    return cycles
