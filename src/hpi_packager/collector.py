"""Collect the full resolved dependency graph of a component.

The collector asks a `ResolutionService` for POM models and artifact files
and builds a `DependencyNode` tree. It keeps the losers of Maven's
nearest-wins mediation in the tree (a "verbose" tree) so that later passes
can apply their own newest-wins rule.
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Mapping, Protocol

from hpi_packager.artifact import ArtifactCoordinate, extension_for
from hpi_packager.exceptions import PomNotFoundError, ResolutionError
from hpi_packager.graph import DependencyNode, iter_tree
from hpi_packager.models import Dependency, Exclusion, GAV, MavenProject, UNKNOWN_VERSION
from hpi_packager.parser import parse_parent, parse_pom
from hpi_packager.versioning import compare_versions


logger = logging.getLogger(__name__)

# dependencies of dependencies in these scopes are never collected
_TRANSITIVE_SKIPPED_SCOPES = frozenset({"test", "provided"})


class ResolutionService(Protocol):
    """What the collector needs from a dependency resolver."""

    def read_project(self, gav: GAV) -> MavenProject:
        """Return the effective model of an artifact's POM."""
        ...

    def artifact_file(self, coordinate: ArtifactCoordinate) -> Path | None:
        """Return the resolved file of an artifact, or None if it has none."""
        ...


def _apply_management(project: MavenProject) -> MavenProject:
    """Fill missing dependency versions/scopes from the project's own dependencyManagement."""
    managed = {d.management_key(): d for d in project.dependency_management}
    deps: list[Dependency] = []
    for dep in project.dependencies:
        m = managed.get(dep.management_key())
        if m is not None:
            update: dict[str, object] = {}
            if dep.gav.version == UNKNOWN_VERSION:
                update["gav"] = dep.gav.model_copy(update={"version": m.gav.version})
            if dep.scope is None and m.scope is not None:
                update["scope"] = m.scope
            if not dep.exclusions and m.exclusions:
                update["exclusions"] = m.exclusions
            if update:
                dep = dep.model_copy(update=update)
        deps.append(dep)
    return project.model_copy(update={"dependencies": deps})


class LocalRepositoryResolver:
    """Resolve artifacts from a Maven local-repository directory.

    Args:
        repository: Root of the repository (e.g. `~/.m2/repository`).
        reactor: `groupId:artifactId` -> file or build-output directory for
            modules of an in-progress build; these take precedence.
    """

    def __init__(self, repository: Path, reactor: Mapping[str, Path] | None = None) -> None:
        self.repository = repository
        self.reactor = dict(reactor or {})
        self._projects: dict[str, MavenProject] = {}

    def _base(self, group_id: str, artifact_id: str, version: str) -> Path:
        return self.repository / group_id.replace(".", "/") / artifact_id / version

    def pom_path(self, gav: GAV) -> Path:
        return self._base(gav.group_id, gav.artifact_id, gav.version) / f"{gav.artifact_id}-{gav.version}.pom"

    def read_project_file(self, path: Path) -> MavenProject:
        """Read a POM from disk, merging in its parent chain from the repository."""
        parent_gav = parse_parent(path)
        if parent_gav is None:
            return _apply_management(parse_pom(path))

        try:
            parent = self.read_project(parent_gav)
        except PomNotFoundError as exc:
            raise ResolutionError(f"Parent {parent_gav.compact()} of {path} is not available") from exc

        child = parse_pom(path, inherited_properties=parent.properties)
        own = {d.management_key() for d in child.dependency_management}
        managed = child.dependency_management + [
            d for d in parent.dependency_management if d.management_key() not in own
        ]
        declared = {(d.gav.group_id, d.gav.artifact_id) for d in child.dependencies}
        deps = child.dependencies + [
            d for d in parent.dependencies if (d.gav.group_id, d.gav.artifact_id) not in declared
        ]
        merged = child.model_copy(
            update={
                "dependencies": deps,
                "dependency_management": managed,
                "properties": {**parent.properties, **child.properties},
                "licenses": child.licenses or parent.licenses,
                "developers": child.developers or parent.developers,
                "url": child.url or parent.url,
            }
        )
        return _apply_management(merged)

    def read_project(self, gav: GAV) -> MavenProject:
        key = gav.compact()
        cached = self._projects.get(key)
        if cached is not None:
            return cached
        if gav.version == UNKNOWN_VERSION:
            raise ResolutionError(f"Cannot resolve the version of {gav.key()}")
        project = self.read_project_file(self.pom_path(gav))
        self._projects[key] = project
        return project

    def artifact_file(self, coordinate: ArtifactCoordinate) -> Path | None:
        reactor = self.reactor.get(f"{coordinate.group_id}:{coordinate.artifact_id}")
        if reactor is not None:
            return reactor
        if coordinate.type == "pom":
            return self.pom_path(coordinate.gav())
        name = f"{coordinate.artifact_id}-{coordinate.version}"
        if coordinate.classifier:
            name += f"-{coordinate.classifier}"
        path = self._base(coordinate.group_id, coordinate.artifact_id, coordinate.version) / (
            f"{name}.{extension_for(coordinate.type)}"
        )
        if not path.exists():
            raise ResolutionError(f"Artifact {coordinate.id} not found at {path}")
        return path


def derive_scope(parent_scope: str | None, child_scope: str) -> str:
    """Scope a transitive dependency ends up with, following Maven's mediation table."""
    if child_scope in ("system", "test"):
        return child_scope
    if not parent_scope or parent_scope == "compile":
        return child_scope
    if parent_scope in ("test", "runtime"):
        return parent_scope
    if parent_scope in ("system", "provided"):
        return "provided"
    return "runtime"


class DependencyGraphCollector:
    """Builds the resolved dependency tree of a project.

    Direct dependencies are taken as declared. The root's
    `<dependencyManagement>` overrides versions and scopes of transitive
    dependencies. Exclusions accumulate along each path. Optional, test and
    provided dependencies of dependencies are not collected.

    The first occurrence of a `group:artifact` is expanded, and so is any
    later occurrence with a newer version. Other occurrences become leaves.
    """

    def __init__(self, resolver: ResolutionService) -> None:
        self.resolver = resolver

    def collect(self, project: MavenProject) -> DependencyNode:
        root = DependencyNode(
            coordinate=ArtifactCoordinate(
                group_id=project.project.group_id,
                artifact_id=project.project.artifact_id,
                version=project.project.version,
                type=project.packaging,
            ),
            packaging=project.packaging,
        )
        managed = {d.management_key(): d for d in project.dependency_management}
        expanded: dict[str, DependencyNode] = {}
        queue: deque[tuple[DependencyNode, Dependency, tuple[Exclusion, ...]]] = deque(
            (root, dep, ()) for dep in project.dependencies
        )

        while queue:
            parent, dep, exclusions = queue.popleft()
            direct = parent.is_root
            if not direct:
                dep = self._manage(dep, managed)
                if dep.optional or (dep.scope or "compile") in _TRANSITIVE_SKIPPED_SCOPES:
                    continue
            if any(ex.matches(dep.gav.group_id, dep.gav.artifact_id) for ex in exclusions):
                continue

            scope = dep.scope or "compile"
            if not direct:
                scope = derive_scope(parent.coordinate.scope, scope)
            coordinate = ArtifactCoordinate(
                group_id=dep.gav.group_id,
                artifact_id=dep.gav.artifact_id,
                version=dep.gav.version,
                type=dep.type,
                classifier=dep.classifier,
                scope=scope,
                optional=bool(dep.optional),
            )
            if dep.gav.version == UNKNOWN_VERSION:
                raise ResolutionError(f"Cannot resolve the version of {dep.gav.key()} (required by {parent.id})")

            dep_project = self.resolver.read_project(dep.gav)
            winner = expanded.get(dep.gav.key())
            if winner is not None and compare_versions(dep.gav.version, winner.coordinate.version) <= 0:
                node = DependencyNode(
                    coordinate=coordinate,
                    file=self._loser_file(coordinate),
                    packaging=dep_project.packaging,
                    exclusions=tuple(dep.exclusions),
                    winner_version=winner.coordinate.version,
                )
                parent.add_child(node)
                continue

            node = DependencyNode(
                coordinate=coordinate,
                file=self.resolver.artifact_file(coordinate),
                packaging=dep_project.packaging,
                exclusions=tuple(dep.exclusions),
            )
            parent.add_child(node)
            if winner is not None:
                logger.debug("%s supersedes %s", coordinate.id, winner.coordinate.id)
            # versions strictly increase per group:artifact
            expanded[dep.gav.key()] = node
            child_exclusions = exclusions + tuple(dep.exclusions)
            for sub in dep_project.dependencies:
                queue.append((node, sub, child_exclusions))

        if logger.isEnabledFor(logging.DEBUG):
            self._log_tree(root)
        return root

    def _loser_file(self, coordinate: ArtifactCoordinate) -> Path | None:
        try:
            return self.resolver.artifact_file(coordinate)
        except ResolutionError:
            logger.debug("No file for omitted %s", coordinate.id)
            return None

    @staticmethod
    def _manage(dep: Dependency, managed: Mapping[tuple[str, str, str, str | None], Dependency]) -> Dependency:
        m = managed.get(dep.management_key())
        if m is None:
            return dep
        update: dict[str, object] = {}
        if m.gav.version != UNKNOWN_VERSION and m.gav.version != dep.gav.version:
            update["gav"] = dep.gav.model_copy(update={"version": m.gav.version})
        if m.scope is not None:
            update["scope"] = m.scope
        return dep.model_copy(update=update) if update else dep

    @staticmethod
    def _log_tree(root: DependencyNode) -> None:
        logger.debug("--- resolved tree start ---")
        for node in iter_tree(root):
            logger.debug("%s%s", "    " * node.depth(), node.label())
        logger.debug("--- resolved tree end ---")
