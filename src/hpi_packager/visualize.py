"""Rich rendering utilities for resolved dependency trees."""

from __future__ import annotations

from typing import Mapping

from rich.table import Table
from rich.tree import Tree

from hpi_packager.assembler import Placement
from hpi_packager.graph import DependencyNode
from hpi_packager.traversal import BundleDecision


_STYLES = {
    BundleDecision.BUNDLE_AS_LIBRARY: "green",
    BundleDecision.EXCLUDE_AS_PLUGIN: "cyan",
    BundleDecision.EXCLUDE_TRANSITIVE_THROUGH_PLUGIN: "dim",
    BundleDecision.EXCLUDE_COVERED_BY_HOST: "dim",
    BundleDecision.EXCLUDE_DUPLICATE: "yellow",
    BundleDecision.EXCLUDE_SCOPE: "dim",
    BundleDecision.EXCLUDE_OPTIONAL: "dim",
}


def _node_label(node: DependencyNode, decisions: Mapping[str, BundleDecision]) -> str:
    label = node.label()
    decision = decisions.get(node.id)
    if decision is None:
        return label
    style = _STYLES[decision]
    return f"{label} [{style}]\\[{decision.value}][/{style}]"


def build_dependency_tree(root: DependencyNode, decisions: Mapping[str, BundleDecision] | None = None) -> Tree:
    """Build a Rich Tree of the resolved dependencies, annotated with bundling decisions.

    Args:
        root: Root of the resolved dependency tree.
        decisions: Decision per artifact id, e.g. from `traverse`.

    Returns:
        A Rich Tree object for rendering.
    """
    decisions = decisions or {}
    tree = Tree(f"[bold]{root.coordinate.gav().compact()}[/bold]")
    if not root.children:
        tree.add("[dim]No dependencies found[/dim]")
        return tree

    branches: list[tuple[DependencyNode, Tree]] = [(root, tree)]
    while branches:
        node, branch = branches.pop()
        for child in node.children:
            branches.append((child, branch.add(_node_label(child, decisions))))
    return tree


def build_placement_table(placements: list[Placement]) -> Table:
    table = Table(title="Bundled libraries")
    table.add_column("Artifact")
    table.add_column("Destination")
    table.add_column("File")
    for p in placements:
        name = p.file_name if p.renamed_to is None else f"{p.file_name} [yellow](renamed)[/yellow]"
        table.add_row(p.artifact.id, p.destination.value or "(overlay)", name)
    return table
