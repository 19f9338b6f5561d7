"""The resolved dependency tree and its networkx projection."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import networkx as nx

from hpi_packager.artifact import ArtifactCoordinate, ArtifactFacade
from hpi_packager.models import Exclusion


@dataclass(eq=False)
class DependencyNode:
    """One edge of the resolved dependency graph.

    The root node represents the component itself and carries no scope.
    `winner_version` is set on nodes the resolver kept only for reporting:
    an occurrence of the same `group:artifact` at least as new was expanded
    before it. Such nodes never have children and may have no file.
    """

    coordinate: ArtifactCoordinate
    file: Path | None = None
    packaging: str | None = None
    exclusions: tuple[Exclusion, ...] = ()
    parent: "DependencyNode | None" = field(default=None, repr=False)
    children: list["DependencyNode"] = field(default_factory=list, repr=False)
    winner_version: str | None = None

    @property
    def id(self) -> str:
        return self.coordinate.id

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def omitted(self) -> bool:
        return self.winner_version is not None

    def add_child(self, child: "DependencyNode") -> "DependencyNode":
        child.parent = self
        self.children.append(child)
        return child

    def trail(self) -> tuple[str, ...]:
        """Ids from the root to this node, root first."""
        ids: list[str] = []
        node: DependencyNode | None = self
        while node is not None:
            ids.append(node.id)
            node = node.parent
        return tuple(reversed(ids))

    def depth(self) -> int:
        return len(self.trail()) - 1

    def facade(self) -> ArtifactFacade:
        return ArtifactFacade(self.coordinate, self.file, self.trail(), self.packaging)

    def label(self) -> str:
        parts = [self.id]
        if self.coordinate.scope:
            parts.append(f"(scope={self.coordinate.scope})")
        if self.coordinate.optional:
            parts.append("(optional)")
        if self.winner_version is not None:
            if self.winner_version == self.coordinate.version:
                parts.append("(omitted for duplicate)")
            else:
                parts.append(f"(omitted for conflict with {self.winner_version})")
        return " ".join(parts)


def iter_tree(root: DependencyNode) -> Iterator[DependencyNode]:
    """Depth-first, parent before children, siblings in resolver order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def to_digraph(root: DependencyNode) -> nx.DiGraph:
    """Build a directed graph where A -> B means A depends on B.

    Nodes are `groupId:artifactId:version` strings so that different paths to
    the same artifact collapse into one node.
    """
    g = nx.DiGraph()
    for node in iter_tree(root):
        a = node.coordinate.gav().compact()
        g.add_node(a, scope=node.coordinate.scope, omitted=node.omitted)
        for child in node.children:
            b = child.coordinate.gav().compact()
            g.add_node(b)
            g.add_edge(a, b, scope=child.coordinate.scope, optional=child.coordinate.optional)
    return g


def is_acyclic(root: DependencyNode) -> bool:
    return nx.is_directed_acyclic_graph(to_digraph(root))
