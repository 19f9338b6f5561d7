"""Compute and lay out the component's private classpath."""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

from hpi_packager.artifact import ArtifactFacade
from hpi_packager.exceptions import AssemblyIOError
from hpi_packager.filters import ArtifactSet
from hpi_packager.manifest import MANIFEST_PATH
from hpi_packager.traversal import (
    BundleDecision,
    DEFAULT_SCOPES,
    HostCoreMatcher,
    SubstringHostCoreMatcher,
    through_plugin,
)


logger = logging.getLogger(__name__)

LIBRARY_TYPES = frozenset({"jar", "ejb", "ejb-client"})


class Destination(str, Enum):
    LIBRARY = "WEB-INF/lib"
    TLD = "WEB-INF/tld"
    OVERLAY = ""


@dataclass(frozen=True)
class Placement:
    artifact: ArtifactFacade
    destination: Destination
    file_name: str
    renamed_to: str | None = None

    def target(self, webapp_dir: Path) -> Path:
        return webapp_dir / self.destination.value / self.file_name


@dataclass
class AssemblyReport:
    copied: list[Path] = field(default_factory=list)
    up_to_date: list[Path] = field(default_factory=list)
    extracted: list[Path] = field(default_factory=list)
    overlaid: list[Path] = field(default_factory=list)


def copy_if_modified(source: Path, destination: Path) -> bool:
    """Copy `source` over `destination` unless the destination is at least as new.

    Returns:
        True if the file was copied.
    """
    try:
        if destination.exists() and source.stat().st_mtime <= destination.stat().st_mtime:
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except OSError as exc:
        raise AssemblyIOError("Failed to copy artifact", source, destination) from exc
    return True


def unpack_cached(archive: Path, cache_dir: Path) -> bool:
    """Extract `archive` into `cache_dir` unless the cache is newer than the archive.

    Returns:
        True if the archive was (re-)extracted.
    """
    try:
        if cache_dir.is_dir() and archive.stat().st_mtime <= cache_dir.stat().st_mtime:
            return False
        if cache_dir.exists():
            shutil.rmtree(cache_dir)
        cache_dir.mkdir(parents=True)
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(cache_dir)
        os.utime(cache_dir)
    except (OSError, zipfile.BadZipFile) as exc:
        raise AssemblyIOError("Failed to unpack overlay", archive, cache_dir) from exc
    return True


def apply_overlay(source_dir: Path, webapp_dir: Path) -> list[Path]:
    """Copy files of an unpacked overlay that are not already present in the webapp."""
    copied: list[Path] = []
    for path in sorted(source_dir.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(source_dir)
        if rel.as_posix() == MANIFEST_PATH:
            continue
        target = webapp_dir / rel
        if target.exists():
            continue
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
        except OSError as exc:
            raise AssemblyIOError("Failed to apply overlay file", path, target) from exc
        copied.append(target)
    return copied


class ClasspathAssembler:
    """Decides which artifacts are bundled and places them into a webapp directory.

    Args:
        work_dir: Scratch directory; overlay caches live under `work_dir/overlays`.
        host_core: Recognises trails through the host's own core.
        scopes: Scopes whose artifacts are needed at runtime.
        best_effort: Treat unreadable archives as libraries instead of failing.
    """

    def __init__(
        self,
        work_dir: Path,
        host_core: HostCoreMatcher | None = None,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        best_effort: bool = False,
    ) -> None:
        self.work_dir = work_dir
        self.host_core = host_core or SubstringHostCoreMatcher()
        self.scopes = frozenset(scopes)
        self.best_effort = best_effort

    def decide(self, artifacts: Iterable[ArtifactFacade]) -> dict[str, BundleDecision]:
        """Classify a flat, fully resolved artifact set (each with its trail)."""
        items = list(artifacts)
        plugin_ids = set(ArtifactSet(items).plugins(best_effort=self.best_effort).ids())
        decisions: dict[str, BundleDecision] = {}
        for a in items:
            if a.id in plugin_ids:
                decision = BundleDecision.EXCLUDE_AS_PLUGIN
            elif through_plugin(a.trail, plugin_ids):
                decision = BundleDecision.EXCLUDE_TRANSITIVE_THROUGH_PLUGIN
            elif self.host_core.covers(a.trail):
                decision = BundleDecision.EXCLUDE_COVERED_BY_HOST
            elif (a.scope or "compile") not in self.scopes:
                decision = BundleDecision.EXCLUDE_SCOPE
            elif a.optional:
                decision = BundleDecision.EXCLUDE_OPTIONAL
            else:
                decision = BundleDecision.BUNDLE_AS_LIBRARY
            decisions.setdefault(a.id, decision)
        return decisions

    def bundled(self, artifacts: Iterable[ArtifactFacade]) -> list[ArtifactFacade]:
        items = list(artifacts)
        decisions = self.decide(items)
        return [a for a in items if decisions[a.id] is BundleDecision.BUNDLE_AS_LIBRARY]

    def plan(self, selected: Iterable[ArtifactFacade]) -> list[Placement]:
        """Assign every bundled artifact a destination and a collision-free file name.

        Artifacts are ordered by artifactId. When two share a default final
        name, the first keeps it and later ones get the groupId prefix.
        """
        ordered = sorted(selected, key=lambda a: (a.artifact_id, a.group_id, a.id))
        seen: set[str] = set()
        placements: list[Placement] = []
        for a in ordered:
            name = a.default_final_name()
            renamed_to = None
            if name in seen:
                renamed_to = a.qualified_final_name()
                logger.info("Duplicate artifact name %s, renaming %s to %s", name, a.id, renamed_to)
                name = renamed_to
            else:
                seen.add(name)

            if a.type == "tld":
                placements.append(Placement(a, Destination.TLD, name, renamed_to))
            elif a.type in LIBRARY_TYPES:
                placements.append(Placement(a, Destination.LIBRARY, name, renamed_to))
            elif a.type == "par":
                placements.append(Placement(a, Destination.LIBRARY, name[: -len(".par")] + ".jar", renamed_to))
            elif a.type == "war":
                placements.append(Placement(a, Destination.OVERLAY, name, renamed_to))
            else:
                logger.debug("Skipping %s: type %s is not bundled", a.id, a.type)
        return placements

    def overlay_cache(self, placement: Placement) -> Path:
        return self.work_dir / "overlays" / Path(placement.file_name).stem

    def assemble(self, placements: Sequence[Placement], webapp_dir: Path) -> AssemblyReport:
        report = AssemblyReport()
        for p in placements:
            source = p.artifact.file
            if source is None:
                raise AssemblyIOError(f"Artifact {p.artifact.id} has no resolved file")
            if p.destination is Destination.OVERLAY:
                cache = self.overlay_cache(p)
                if unpack_cached(source, cache):
                    report.extracted.append(cache)
                report.overlaid.extend(apply_overlay(cache, webapp_dir))
                continue
            target = p.target(webapp_dir)
            if copy_if_modified(source, target):
                report.copied.append(target)
            else:
                report.up_to_date.append(target)
        return report
