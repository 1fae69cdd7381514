"""Immutable topology snapshot and its query surface.

A Topology is built once per reconciliation cycle and never mutated.  Nodes are
indexed by locator; adjacency is kept as locator lists so no node owns another.
The node set is partitioned into targetables, plain objects and policies, and
each partition is queried through a ``Collection`` view.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from types import MappingProxyType
from typing import Generic, TypeVar

from kubepolicy.graph.models import EdgeType, GraphEdge
from kubepolicy.machinery.objects import Object, Policy, Targetable

T = TypeVar("T", bound=Object)

NodeRef = Object | str


def _locator(node: NodeRef) -> str:
    return node if isinstance(node, str) else node.locator


class Collection(Generic[T]):
    """View over the topology nodes of one partition."""

    def __init__(self, topology: Topology, locators: Sequence[str]) -> None:
        self._topology = topology
        self._locators = tuple(locators)
        self._members = frozenset(self._locators)

    def items(self, predicate: Callable[[T], bool] | None = None) -> list[T]:
        nodes: list[T] = [self._topology._nodes[loc] for loc in self._locators]  # type: ignore[misc]
        if predicate is None:
            return nodes
        return [node for node in nodes if predicate(node)]

    def get(self, locator: str) -> T | None:
        if locator not in self._members:
            return None
        return self._topology._nodes[locator]  # type: ignore[return-value]

    def parents(self, node: NodeRef) -> list[T]:
        """Nodes of this partition with an edge into *node*."""
        return self._select(self._topology._parents.get(_locator(node), ()))

    def children(self, node: NodeRef) -> list[T]:
        """Nodes of this partition *node* has an edge into."""
        return self._select(self._topology._children.get(_locator(node), ()))

    def roots(self) -> list[T]:
        return [node for node in self.items() if not self.parents(node)]

    def leaves(self) -> list[T]:
        return [node for node in self.items() if not self.children(node)]

    def _select(self, locators: Sequence[str]) -> list[T]:
        return [self._topology._nodes[loc] for loc in locators if loc in self._members]  # type: ignore[misc]

    def __len__(self) -> int:
        return len(self._locators)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items())

    def __contains__(self, node: object) -> bool:
        if not isinstance(node, str | Object):
            return False
        return self.get(_locator(node)) is not None


class Topology:
    """Graph of targetables, objects and policies connected by typed edges."""

    def __init__(
        self,
        targetables: Sequence[Targetable] = (),
        objects: Sequence[Object] = (),
        policies: Sequence[Policy] = (),
        edges: Sequence[GraphEdge] = (),
        roots: Sequence[str] | None = None,
    ) -> None:
        nodes: dict[str, Object] = {}
        for group in (targetables, objects, policies):
            for node in group:
                nodes.setdefault(node.locator, node)

        parents: dict[str, list[str]] = {}
        children: dict[str, list[str]] = {}
        kept: list[GraphEdge] = []
        seen: set[tuple[str, str, EdgeType]] = set()
        for edge in edges:
            key = (edge.source, edge.target, edge.edge_type)
            if key in seen or edge.source not in nodes or edge.target not in nodes:
                continue
            seen.add(key)
            kept.append(edge)
            children.setdefault(edge.source, []).append(edge.target)
            parents.setdefault(edge.target, []).append(edge.source)

        self._nodes = MappingProxyType(nodes)
        self._parents = MappingProxyType({k: tuple(v) for k, v in parents.items()})
        self._children = MappingProxyType({k: tuple(v) for k, v in children.items()})
        self._edges = tuple(kept)
        self._targetables: Collection[Targetable] = Collection(self, _owned(targetables, nodes))
        self._objects: Collection[Object] = Collection(self, _owned(objects, nodes))
        self._policies: Collection[Policy] = Collection(self, _owned(policies, nodes))
        self._roots = None if roots is None else tuple(loc for loc in roots if loc in self._targetables)

    def roots(self) -> list[Targetable]:
        """Declared root targetables; parentless targetables when none were declared."""
        if self._roots is None:
            return self._targetables.roots()
        return [self._nodes[loc] for loc in self._roots]  # type: ignore[misc]

    def targetables(self) -> Collection[Targetable]:
        return self._targetables

    def objects(self) -> Collection[Object]:
        return self._objects

    def policies(self) -> Collection[Policy]:
        return self._policies

    def get(self, locator: str) -> Object | None:
        return self._nodes.get(locator)

    def nodes(self) -> frozenset[str]:
        return frozenset(self._nodes)

    def edges(self, edge_type: EdgeType | None = None) -> frozenset[GraphEdge]:
        if edge_type is None:
            return frozenset(self._edges)
        return frozenset(edge for edge in self._edges if edge.edge_type == edge_type)

    def paths(self, from_: NodeRef | None = None, to: NodeRef | None = None) -> list[list[Targetable]]:
        """Enumerate targetable paths.

        Without arguments, every root-to-leaf path.  With *from_* and/or *to*,
        every path starting at *from_* (default: each root) and ending at *to*
        (default: each leaf).  A node never appears twice in one path.
        """
        targetables = self._targetables
        if from_ is not None:
            start = targetables.get(_locator(from_))
            starts = [start] if start is not None else []
        else:
            starts = self.roots()
        target = _locator(to) if to is not None else None

        found: list[list[Targetable]] = []
        path: list[Targetable] = []
        visited: set[str] = set()

        def walk(node: Targetable) -> None:
            path.append(node)
            visited.add(node.locator)
            children = [child for child in targetables.children(node) if child.locator not in visited]
            if target is not None and node.locator == target:
                found.append(list(path))
            elif not children:
                if target is None:
                    found.append(list(path))
            else:
                for child in children:
                    walk(child)
            path.pop()
            visited.discard(node.locator)

        for start in starts:
            walk(start)
        return found

    def to_dot(self) -> str:
        """Render the topology in Graphviz DOT format."""
        lines = [
            'strict digraph "topology" {',
            '  graph [bgcolor="transparent"]',
            '  node [shape="ellipse" style="filled" fillcolor="#e5e5e5"]',
        ]
        for node in self._targetables:
            lines.append(f'  "{node.locator}" [label="{_dot_label(node)}" shape="box"]')
        for node in self._objects:
            lines.append(f'  "{node.locator}" [label="{_dot_label(node)}" shape="box" fillcolor="#ffffff"]')
        for node in self._policies:
            lines.append(f'  "{node.locator}" [label="{_dot_label(node)}" shape="note" fillcolor="#ffe4b5"]')
        for edge in self._edges:
            style = ' [style="dashed"]' if edge.edge_type == EdgeType.ATTACHMENT else ""
            lines.append(f'  "{edge.source}" -> "{edge.target}"{style}')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (
            f"Topology(targetables={len(self._targetables)}, objects={len(self._objects)}, "
            f"policies={len(self._policies)}, edges={len(self._edges)})"
        )


def _owned(group: Sequence[Object], nodes: dict[str, Object]) -> list[str]:
    """Locators of *group* whose node entry is the group's own instance (first wins on collisions)."""
    return list(dict.fromkeys(node.locator for node in group if nodes[node.locator] is node))


def _dot_label(node: Object) -> str:
    qualified = f"{node.namespace}/{node.name}" if node.namespace else node.name
    return f"{node.group_kind.kind}\\n{qualified}"
