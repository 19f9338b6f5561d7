"""Walk a resolved dependency tree and decide what gets bundled.

`traverse` is a pure function of the tree and a `TraversalPolicy`. It
returns the selection map (one winner per artifactId, newest version wins)
and one `BundleDecision` per visited artifact id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Protocol, Sequence

from hpi_packager.artifact import ArtifactFacade
from hpi_packager.graph import DependencyNode


logger = logging.getLogger(__name__)

DEFAULT_SCOPES = frozenset({"compile", "runtime"})
HOST_CORE_MARKERS = (":jenkins-core:", ":hudson-core:")


class BundleDecision(str, Enum):
    BUNDLE_AS_LIBRARY = "bundle"
    EXCLUDE_AS_PLUGIN = "plugin"
    EXCLUDE_TRANSITIVE_THROUGH_PLUGIN = "through-plugin"
    EXCLUDE_COVERED_BY_HOST = "covered-by-host"
    EXCLUDE_DUPLICATE = "duplicate"
    EXCLUDE_SCOPE = "scope"
    EXCLUDE_OPTIONAL = "optional"

    @property
    def bundled(self) -> bool:
        return self is BundleDecision.BUNDLE_AS_LIBRARY


class TraversalMode(str, Enum):
    LIBRARIES = "libraries"
    """Packaging: stop at plugins, select libraries."""

    PLUGINS = "plugins"
    """Plugin assembly: follow plugins only, select plugins."""


class HostCoreMatcher(Protocol):
    def covers(self, trail: Sequence[str]) -> bool:
        """True if the host runtime already provides an artifact reached through this trail."""
        ...


@dataclass(frozen=True)
class SubstringHostCoreMatcher:
    """Matches trails that pass through the host core by substring on artifact ids.

    A renamed or forked core artifact is not recognised.
    """

    markers: tuple[str, ...] = HOST_CORE_MARKERS

    def covers(self, trail: Sequence[str]) -> bool:
        return any(marker in entry for entry in trail for marker in self.markers)


@dataclass(frozen=True)
class CoordinateHostCoreMatcher:
    """Matches trails containing an explicitly configured `groupId:artifactId` core."""

    core_id: str

    def covers(self, trail: Sequence[str]) -> bool:
        prefix = f"{self.core_id}:"
        return any(entry.startswith(prefix) for entry in trail)


def host_core_matcher(core_id: str | None = None) -> HostCoreMatcher:
    if core_id:
        return CoordinateHostCoreMatcher(core_id)
    return SubstringHostCoreMatcher()


@dataclass(frozen=True)
class TraversalPolicy:
    mode: TraversalMode = TraversalMode.LIBRARIES
    scopes: frozenset[str] = DEFAULT_SCOPES
    include_optional: bool = False
    host_core: HostCoreMatcher = field(default_factory=SubstringHostCoreMatcher)
    best_effort: bool = False
    """Treat unreadable archives as libraries instead of failing."""


@dataclass(frozen=True)
class TraversalResult:
    selection: Mapping[str, ArtifactFacade]
    decisions: Mapping[str, BundleDecision]
    plugin_ids: frozenset[str]
    visited: tuple[str, ...]

    @property
    def bundled(self) -> list[ArtifactFacade]:
        return [a for a in self.selection.values() if self.decisions.get(a.id) is BundleDecision.BUNDLE_AS_LIBRARY]

    @property
    def plugins(self) -> list[ArtifactFacade]:
        return [a for a in self.selection.values() if a.id in self.plugin_ids]


def through_plugin(trail: Sequence[str], plugin_ids: frozenset[str] | set[str]) -> bool:
    """True if any ancestor between the root and the artifact itself is a plugin."""
    return any(entry in plugin_ids for entry in trail[1:-1])


def _merge_newest(selection: dict[str, ArtifactFacade], facade: ArtifactFacade, reasons: dict[str, BundleDecision]) -> None:
    existing = selection.get(facade.artifact_id)
    if existing is None or facade.is_newer_than(existing):
        if existing is not None and existing.id != facade.id:
            logger.debug("%s supersedes %s", facade.id, existing.id)
            reasons.setdefault(existing.id, BundleDecision.EXCLUDE_DUPLICATE)
        selection[facade.artifact_id] = facade
    else:
        reasons.setdefault(facade.id, BundleDecision.EXCLUDE_DUPLICATE)


def traverse(root: DependencyNode, policy: TraversalPolicy = TraversalPolicy()) -> TraversalResult:
    """Depth-first walk of `root`, parent before children.

    A node is not descended into when its scope is not in `policy.scopes`,
    when it is optional and optional dependencies are disabled, or when the
    mode cuts it off (plugins in LIBRARIES mode, libraries in PLUGINS mode).
    The root is always descended into.

    The walk is repeated until the selection is stable. After the first
    round only the selected version of an artifactId is descended into, so
    dependencies of superseded versions drop out and those of newer
    versions found deeper in the tree are kept.
    """
    classified: dict[str, bool] = {}

    def is_plugin(facade: ArtifactFacade) -> bool:
        cached = classified.get(facade.id)
        if cached is None:
            cached = facade.is_plugin_best_effort() if policy.best_effort else facade.is_plugin()
            classified[facade.id] = cached
        return cached

    pinned: Mapping[str, str] | None = None
    seen: list[dict[str, str]] = []
    while True:
        walk = _walk(root, policy, is_plugin, pinned)
        versions = {key: facade.version for key, facade in walk.selection.items()}
        if versions == pinned or versions in seen:
            break
        seen.append(versions)
        pinned = versions
        logger.debug("Re-walking with %d pinned versions", len(versions))

    frozen_plugins = frozenset(walk.plugin_ids)
    ordered = {key: walk.selection[key] for key in sorted(walk.selection)}
    decisions = dict(walk.reasons)
    for facade in ordered.values():
        if policy.mode is TraversalMode.PLUGINS:
            decisions[facade.id] = BundleDecision.EXCLUDE_AS_PLUGIN
        elif through_plugin(facade.trail, frozen_plugins):
            decisions[facade.id] = BundleDecision.EXCLUDE_TRANSITIVE_THROUGH_PLUGIN
        elif policy.host_core.covers(facade.trail):
            decisions[facade.id] = BundleDecision.EXCLUDE_COVERED_BY_HOST
        else:
            decisions[facade.id] = BundleDecision.BUNDLE_AS_LIBRARY

    return TraversalResult(
        selection=MappingProxyType(ordered),
        decisions=MappingProxyType(decisions),
        plugin_ids=frozen_plugins,
        visited=tuple(walk.visited),
    )


@dataclass
class _Walk:
    selection: dict[str, ArtifactFacade] = field(default_factory=dict)
    reasons: dict[str, BundleDecision] = field(default_factory=dict)
    plugin_ids: set[str] = field(default_factory=set)
    visited: list[str] = field(default_factory=list)


def _walk(
    root: DependencyNode,
    policy: TraversalPolicy,
    is_plugin: Callable[[ArtifactFacade], bool],
    pinned: Mapping[str, str] | None,
) -> _Walk:
    walk = _Walk()

    def descend(facade: ArtifactFacade) -> bool:
        if pinned is None:
            return True
        return pinned.get(facade.artifact_id, facade.version) == facade.version

    def accept(node: DependencyNode) -> bool:
        walk.visited.append(node.id)
        if node.is_root:
            return True

        coordinate = node.coordinate
        if coordinate.scope not in policy.scopes:
            walk.reasons.setdefault(node.id, BundleDecision.EXCLUDE_SCOPE)
            return False
        if coordinate.optional and not policy.include_optional:
            walk.reasons.setdefault(node.id, BundleDecision.EXCLUDE_OPTIONAL)
            return False

        facade = node.facade()
        plugin = is_plugin(facade)
        if plugin:
            walk.plugin_ids.add(facade.id)

        if policy.mode is TraversalMode.LIBRARIES:
            if plugin:
                walk.reasons.setdefault(facade.id, BundleDecision.EXCLUDE_AS_PLUGIN)
                return False
            _merge_newest(walk.selection, facade, walk.reasons)
            return descend(facade)

        if not plugin:
            return False
        _merge_newest(walk.selection, facade, walk.reasons)
        return descend(facade)

    stack = [root]
    while stack:
        node = stack.pop()
        if accept(node):
            stack.extend(reversed(node.children))
    return walk
