"""Packaging goals: build the archive, the development descriptor and friends.

A `PackagingSession` ties one project POM to a resolver and configuration
and resolves its dependency tree once; each goal is a function of a session.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Mapping, Protocol

from hpi_packager.artifact import ArtifactFacade, PLUGIN_TYPES
from hpi_packager.assembler import AssemblyReport, ClasspathAssembler, Destination, Placement, copy_if_modified
from hpi_packager.collector import DependencyGraphCollector, LocalRepositoryResolver, ResolutionService
from hpi_packager.config import PackagerConfig
from hpi_packager.descriptor import hpl_path, library_entries, write_hpl
from hpi_packager.exceptions import (
    AssemblyIOError,
    CompatibilityError,
    ConfigurationError,
    OptionalDependencyConflict,
    PackagerError,
    ResolutionError,
)
from hpi_packager.filters import ArtifactSet
from hpi_packager.graph import DependencyNode, iter_tree
from hpi_packager.manifest import MANIFEST_PATH, ManifestHeader, format_manifest, write_manifest_file
from hpi_packager.models import MavenProject, UNKNOWN_VERSION
from hpi_packager.traversal import TraversalMode, TraversalPolicy, TraversalResult, host_core_matcher, traverse
from hpi_packager.versioning import VersionNumber, compare_versions
from hpi_packager.versions_policy import build_manifest_header, find_core_version
from hpi_packager.workspace import PluginWorkspaceMap


logger = logging.getLogger(__name__)


class ArchiveWriter(Protocol):
    def write(self, destination: Path, manifest: Mapping[str, str], directory: Path | None) -> Path:
        """Write an archive of `directory` with `manifest` as its first entry."""
        ...


class ZipArchiveWriter:
    """Writes jar-style zip archives; the manifest is always the first entry."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def write(self, destination: Path, manifest: Mapping[str, str], directory: Path | None) -> Path:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(destination, "w", compression=self.compression) as zf:
                zf.writestr(MANIFEST_PATH, format_manifest(manifest))
                if directory is not None and directory.is_dir():
                    for path in sorted(directory.rglob("*")):
                        rel = path.relative_to(directory).as_posix()
                        if path.is_file() and rel != MANIFEST_PATH:
                            zf.write(path, rel)
        except OSError as exc:
            raise AssemblyIOError("Failed to write archive", directory, destination) from exc
        return destination


@dataclass
class BuildLayout:
    """Directory conventions of a project build."""

    basedir: Path
    build_dir: Path
    classes_dir: Path
    test_classes_dir: Path
    webapp_source: Path
    webapp_dir: Path

    @classmethod
    def for_project(cls, basedir: Path, project: MavenProject) -> "BuildLayout":
        build_dir = basedir / "target"
        return cls(
            basedir=basedir,
            build_dir=build_dir,
            classes_dir=build_dir / "classes",
            test_classes_dir=build_dir / "test-classes",
            webapp_source=basedir / "src" / "main" / "webapp",
            webapp_dir=build_dir / project.build_final_name,
        )

    def output_file(self, project: MavenProject, suffix: str) -> Path:
        return self.build_dir / f"{project.build_final_name}{suffix}"


class PackagingSession:
    """One project, resolved once.

    Args:
        pom: The project's `pom.xml`.
        config: Packager configuration.
        resolver: Dependency resolver; defaults to the configured local repository.
    """

    def __init__(
        self,
        pom: Path,
        config: PackagerConfig,
        resolver: ResolutionService | None = None,
    ) -> None:
        self.pom = pom
        self.config = config
        self.resolver = resolver or LocalRepositoryResolver(config.local_repository)
        reader = self.resolver
        if not isinstance(reader, LocalRepositoryResolver):
            # parents of the project itself always come from the local repository
            reader = LocalRepositoryResolver(config.local_repository)
        self.project = reader.read_project_file(pom)
        self.layout = BuildLayout.for_project(pom.parent, self.project)
        self._root: DependencyNode | None = None

    @property
    def root(self) -> DependencyNode:
        if self._root is None:
            self._root = DependencyGraphCollector(self.resolver).collect(self.project)
        return self._root

    def direct_artifacts(self) -> list[ArtifactFacade]:
        return [child.facade() for child in self.root.children if not child.omitted]

    def project_artifacts(self) -> list[ArtifactFacade]:
        """Every resolved dependency with its trail; omitted leaves and superseded versions left out."""
        nodes = [node for node in iter_tree(self.root) if not node.is_root and not node.omitted]
        newest: dict[tuple[str, str], str] = {}
        for node in nodes:
            key = node.coordinate.key
            if key not in newest or compare_versions(node.coordinate.version, newest[key]) > 0:
                newest[key] = node.coordinate.version
        return [node.facade() for node in nodes if node.coordinate.version == newest[node.coordinate.key]]

    def policy(self, mode: TraversalMode = TraversalMode.LIBRARIES, best_effort: bool = False) -> TraversalPolicy:
        return TraversalPolicy(
            mode=mode,
            scopes=frozenset(self.config.scopes),
            include_optional=self.config.include_optional and mode is TraversalMode.PLUGINS,
            host_core=host_core_matcher(self.config.core_id),
            best_effort=best_effort,
        )

    def libraries(self) -> TraversalResult:
        return traverse(self.root, self.policy(TraversalMode.LIBRARIES))

    def assembler(self) -> ClasspathAssembler:
        return ClasspathAssembler(
            self.layout.build_dir,
            host_core=host_core_matcher(self.config.core_id),
            scopes=self.config.scopes,
        )

    def placements(self) -> list[Placement]:
        return self.assembler().plan(self.libraries().bundled)

    def manifest_header(self, now: datetime | None = None, user: str | None = None) -> ManifestHeader:
        return build_manifest_header(
            self.project,
            self.config,
            self.direct_artifacts(),
            self.layout.classes_dir,
            self.layout.basedir,
            now=now,
            user=user,
        )


@dataclass
class PackageResult:
    archive: Path
    jar: Path
    manifest: dict[str, str]
    placements: list[Placement] = field(default_factory=list)
    report: AssemblyReport = field(default_factory=AssemblyReport)


def _copy_tree(source: Path, destination: Path) -> None:
    if not source.is_dir():
        return
    for path in sorted(source.rglob("*")):
        if path.is_file():
            copy_if_modified(path, destination / path.relative_to(source))


def package_component(
    session: PackagingSession,
    writer: ArchiveWriter | None = None,
    now: datetime | None = None,
    user: str | None = None,
) -> PackageResult:
    """Build `target/<finalName>.hpi`.

    The webapp directory receives the webapp sources, the component's own
    classes as `WEB-INF/lib/<artifactId>.jar`, and every bundled library.
    """
    writer = writer or ZipArchiveWriter()
    project = session.project
    layout = session.layout
    attributes = session.manifest_header(now=now, user=user).to_attributes()

    write_manifest_file(layout.webapp_dir / MANIFEST_PATH, attributes)
    _copy_tree(layout.webapp_source, layout.webapp_dir)

    jar = layout.output_file(project, ".jar")
    logger.info("Generating jar %s", jar)
    writer.write(jar, attributes, layout.classes_dir)
    copy_if_modified(jar, layout.webapp_dir / Destination.LIBRARY.value / f"{project.project.artifact_id}.jar")

    placements = session.placements()
    report = session.assembler().assemble(placements, layout.webapp_dir)

    manifest_copy = layout.output_file(project, ".hpi.mf")
    logger.info("Archiving hpi manifest %s", manifest_copy)
    write_manifest_file(manifest_copy, attributes)

    archive = layout.output_file(project, ".hpi")
    logger.info("Generating hpi %s", archive)
    writer.write(archive, attributes, layout.webapp_dir)
    return PackageResult(archive=archive, jar=jar, manifest=attributes, placements=placements, report=report)


def _component_id(project: MavenProject) -> str:
    gav = project.project
    return f"{gav.group_id}:{gav.artifact_id}:{project.packaging}:{gav.version}"


def _write_descriptor(
    session: PackagingSession,
    destination: Path,
    now: datetime | None,
    user: str | None,
) -> Path:
    project = session.project
    libraries = [
        p.artifact.file
        for p in session.placements()
        if p.destination is Destination.LIBRARY and p.artifact.file is not None
    ]
    entries = library_entries(project, session.layout.basedir, session.layout.classes_dir, libraries)
    header = session.manifest_header(now=now, user=user).to_attributes()
    return write_hpl(destination, header, entries, session.layout.webapp_source)


def write_development_descriptor(
    session: PackagingSession,
    home: Path,
    now: datetime | None = None,
    user: str | None = None,
) -> Path | None:
    """Write `<home>/plugins/<finalName>.hpl` for running the unpacked build.

    Returns:
        The descriptor path, or None when the project is not packaged as `hpi`.
    """
    project = session.project
    if project.packaging != "hpi":
        logger.info("Skipping %s because it's not <packaging>hpi</packaging>", project.display_name)
        return None
    return _write_descriptor(session, hpl_path(home, project), now, user)


def write_test_descriptor(
    session: PackagingSession,
    workspace_map: PluginWorkspaceMap | None = None,
    now: datetime | None = None,
    user: str | None = None,
) -> Path | None:
    """Write `target/test-classes/the.hpl`, the descriptor test harnesses load.

    Snapshot builds also record the descriptor in the workspace map. A
    failure to update the map is logged, not raised.
    """
    project = session.project
    if project.packaging != "hpi":
        logger.info("Skipping %s because it's not <packaging>hpi</packaging>", project.display_name)
        return None
    destination = _write_descriptor(session, session.layout.test_classes_dir / "the.hpl", now, user)
    if project.project.is_snapshot:
        workspace_map = workspace_map or PluginWorkspaceMap(session.config.workspace_map)
        try:
            workspace_map.write(_component_id(project), destination)
        except PackagerError as exc:
            logger.error("Could not record %s in the workspace map: %s", destination, exc)
    return destination


def _plugin_archive(session: PackagingSession, artifact: ArtifactFacade) -> Path:
    """The `.hpi`/`.jpi` archive of a plugin that may have been resolved as its jar."""
    if artifact.type in PLUGIN_TYPES and artifact.file is not None:
        return artifact.file
    for type_ in ("hpi", "jpi"):
        coordinate = artifact.coordinate.model_copy(update={"type": type_, "classifier": None})
        try:
            path = session.resolver.artifact_file(coordinate)
        except ResolutionError:
            continue
        if path is not None:
            return path
    raise ResolutionError(f"No plugin archive found for {artifact.id}")


def assemble_dependencies(session: PackagingSession, output_dir: Path, use_jpi: bool = False) -> list[Path]:
    """Copy the component's transitive plugin dependencies (newest version of each) into `output_dir`."""
    result = traverse(session.root, session.policy(TraversalMode.PLUGINS))
    extension = "jpi" if use_jpi else "hpi"
    copied: list[Path] = []
    for artifact in result.plugins:
        source = _plugin_archive(session, artifact)
        target = output_dir / f"{artifact.artifact_id}.{extension}"
        logger.debug("Copying %s", source)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise AssemblyIOError(f"Failed to copy dependency {artifact.id}", source, target) from exc
        copied.append(target)
    return copied


def list_plugin_dependencies(session: PackagingSession, output: Path | None = None) -> list[str]:
    """`groupId:artifactId:version` of each direct plugin dependency."""
    plugins = ArtifactSet(session.direct_artifacts()).plugins()
    lines = [f"{a.group_id}:{a.artifact_id}:{a.version}" for a in plugins]
    for line in lines:
        logger.info(line)
    if output is not None:
        try:
            output.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        except OSError as exc:
            raise AssemblyIOError("Failed to list plugin dependencies", destination=output) from exc
    return lines


@dataclass
class BundleResult:
    plugins: list[ArtifactFacade]
    optional: frozenset[str]
    copied: list[Path] = field(default_factory=list)
    listing: Path | None = None
    manifest: Path | None = None


def _plugin_selection(session: PackagingSession, include_optional: bool) -> TraversalResult:
    base = session.policy(TraversalMode.PLUGINS)
    policy = replace(base, scopes=base.scopes | {"provided"}, include_optional=include_optional)
    return traverse(session.root, policy)


def _optional_conflicts(session: PackagingSession, selected: Mapping[str, ArtifactFacade]) -> list[str]:
    issues: list[str] = []
    for artifact in selected.values():
        try:
            pom = session.resolver.read_project(artifact.coordinate.gav())
        except ResolutionError as exc:
            logger.warning("Could not resolve pom of %s to check optional dependencies: %s", artifact, exc)
            continue
        for dep in pom.dependencies:
            if not dep.optional:
                continue
            matching = selected.get(dep.gav.artifact_id)
            if matching is None or matching.group_id != dep.gav.group_id:
                continue
            if dep.gav.version != UNKNOWN_VERSION and compare_versions(matching.version, dep.gav.version) < 0:
                message = (
                    f"{artifact.artifact_id}: optional dependency of {dep.gav.artifact_id} version "
                    f"{dep.gav.version} conflicts with the bundled version {matching.version}"
                )
                logger.error(message)
                issues.append(message)
    return issues


def _plugin_table(plugins: list[ArtifactFacade], optional: frozenset[str]) -> str:
    group_width = max([len("Group Id"), *(len(a.group_id) for a in plugins)])
    artifact_width = max([len("Artifact Id"), *(len(a.artifact_id) for a in plugins)])
    version_width = max([len("Version"), *(len(a.version) for a in plugins)])

    def row(group_id: str, artifact_id: str, version: str, flag: str) -> str:
        return f"{group_id:<{group_width}} {artifact_id:<{artifact_width}} {version:<{version_width}} {flag:<8}\n"

    lines = [
        row("Group Id", "Artifact Id", "Version", "Optional"),
        row("=" * group_width, "=" * artifact_width, "=" * version_width, "=" * 8),
    ]
    for a in plugins:
        lines.append(row(a.group_id, a.artifact_id, a.version, "yes" if a.artifact_id in optional else "no"))
    return "".join(lines)


def bundle_plugins(
    session: PackagingSession,
    output_dir: Path | None = None,
    optional_dir: Path | None = None,
    ignore_optional_conflicts: bool = False,
) -> BundleResult:
    """Copy the plugins a distribution bundles into its webapp.

    Direct plugin dependencies must be declared with an `hpi` or `jpi`
    type. The newest version of each transitive plugin is copied to
    `WEB-INF/plugins`, or to `WEB-INF/optional-plugins` when it is only
    reached through optional dependencies. `bundled-plugins.txt` in the
    classes directory and `plugin-manifest.txt` in the build directory
    list what was bundled.

    Raises:
        ConfigurationError: If a plugin dependency has no `<type>`.
        OptionalDependencyConflict: If a bundled plugin optionally needs a newer
            version of another bundled plugin and conflicts are not ignored.
    """
    untyped = ArtifactSet(session.direct_artifacts()).type_is("jar").plugins()
    if untyped:
        for a in untyped:
            logger.error(
                "Dependency on plugin %s:%s:%s does not include <type> tag", a.group_id, a.artifact_id, a.version
            )
        raise ConfigurationError(
            "The following plugin dependencies are missing the <type> tag required by the bundle-plugins goal:\n  "
            + "\n  ".join(f"{a.group_id}:{a.artifact_id}:{a.version}" for a in untyped)
        )

    selected = dict(_plugin_selection(session, include_optional=True).selection)
    required = _plugin_selection(session, include_optional=False).selection
    for key, artifact in required.items():
        current = selected.get(key)
        if current is None or artifact.is_newer_than(current):
            selected[key] = artifact
    optional = frozenset(key for key in selected if key not in required)

    issues = _optional_conflicts(session, selected)
    if issues:
        if not ignore_optional_conflicts:
            raise OptionalDependencyConflict(
                "Optional dependencies are incompatible with bundled dependencies:\n  " + "\n  ".join(issues)
            )
        logger.warning("Ignoring optional dependency conflicts")

    layout = session.layout
    output_dir = output_dir or layout.webapp_dir / "WEB-INF" / "plugins"
    optional_dir = optional_dir or layout.webapp_dir / "WEB-INF" / "optional-plugins"
    plugins = sorted(selected.values(), key=lambda a: a.artifact_id)
    result = BundleResult(plugins=plugins, optional=optional)
    for artifact in plugins:
        source = _plugin_archive(session, artifact)
        target = (optional_dir if artifact.artifact_id in optional else output_dir) / f"{artifact.artifact_id}.hpi"
        logger.debug("Copying %s", source)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise AssemblyIOError(f"Failed to bundle plugin {artifact.id}", source, target) from exc
        result.copied.append(target)

    table = _plugin_table(plugins, optional)
    for line in table.splitlines():
        logger.info(line.rstrip())
    result.listing = layout.classes_dir / "bundled-plugins.txt"
    result.manifest = layout.build_dir / "plugin-manifest.txt"
    try:
        result.listing.parent.mkdir(parents=True, exist_ok=True)
        result.listing.write_text(
            "".join(f"{a.group_id}:{a.artifact_id}:hpi:{a.version}\n" for a in plugins), encoding="utf-8"
        )
        result.manifest.write_text(table, encoding="utf-8")
    except OSError as exc:
        raise AssemblyIOError("Failed to write the bundled plugin list", destination=result.listing) from exc
    return result


def _host_war(session: PackagingSession, war_id: str | None) -> ArtifactFacade:
    wars = ArtifactSet(session.project_artifacts()).type_is("war", "executable-war")
    if war_id:
        wars.retain_all(lambda a: f"{a.group_id}:{a.artifact_id}" == war_id)
    else:
        wars.artifact_id_is("jenkins-war", "hudson-war")
    if not wars or wars[0].file is None or not wars[0].file.is_file():
        raise ConfigurationError(f"Unable to locate {war_id or 'jenkins-war'} in the dependencies")
    return wars[0]


def custom_war(
    session: PackagingSession,
    output: Path | None = None,
    war_id: str | None = None,
    add_self: bool = False,
) -> Path:
    """Repackage the host war with the component's plugin dependencies in `WEB-INF/plugins`.

    With `add_self`, an `hpi` project also adds its own packaged archive.

    Raises:
        ConfigurationError: If the host war is not a dependency.
        AssemblyIOError: If a plugin is not packaged or the war cannot be written.
    """
    project = session.project
    output = output or session.layout.build_dir / f"{project.project.artifact_id}.war"
    war = _host_war(session, war_id)

    plugins: dict[str, ArtifactFacade] = {}
    for artifact in ArtifactSet(session.project_artifacts()).plugins():
        current = plugins.get(artifact.artifact_id)
        if current is None or artifact.is_newer_than(current):
            plugins[artifact.artifact_id] = artifact
    entries = {f"WEB-INF/plugins/{aid}.hpi": _plugin_archive(session, a) for aid, a in sorted(plugins.items())}
    if add_self and project.packaging == "hpi":
        own = session.layout.output_file(project, ".hpi")
        logger.debug("This plugin %s to be added to custom war", project.display_name)
        entries[f"WEB-INF/plugins/{project.project.artifact_id}.hpi"] = own
    for source in entries.values():
        if not source.is_file():
            raise AssemblyIOError(f"{source} is a directory or not packaged yet, this isn't supported", source, output)

    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(war.file) as src, zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for info in src.infolist():
                if info.filename not in entries:
                    zf.writestr(info, src.read(info.filename))
            for name, source in entries.items():
                zf.write(source, name)
    except (OSError, zipfile.BadZipFile) as exc:
        raise AssemblyIOError("Failed to package war", war.file, output) from exc
    logger.info("Generated %s", output)
    return output


def _dependency_core_version(artifact: ArtifactFacade, own: str) -> VersionNumber:
    if artifact.file is None or not artifact.file.is_file():
        logger.warning(
            "Skipping core validation for %s since it has no archive to read a manifest from",
            artifact.id,
        )
        return VersionNumber(own)
    core = artifact.core_version()
    if core is None:
        raise CompatibilityError(f"Could not find the core version in the manifest of {artifact.id}")
    return VersionNumber(core)


def validate_core_compatibility(session: PackagingSession) -> str:
    """Check that no plugin dependency needs a newer host core than the component declares.

    Returns:
        The component's host core version.

    Raises:
        CompatibilityError: If some dependency requires a newer core.
    """
    own = find_core_version(session.project, session.config.core_id, session.config.core_version_override)
    core = VersionNumber(own)
    seen: set[str] = set()
    newest = VersionNumber("0")
    newest_artifact: ArtifactFacade | None = None
    candidates = ArtifactSet([*session.project_artifacts(), *session.direct_artifacts()]).plugins(best_effort=True)
    for artifact in candidates:
        if artifact.id in seen:
            continue
        seen.add(artifact.id)
        required = _dependency_core_version(artifact, own)
        if required > newest:
            newest = required
            newest_artifact = artifact
    if core < newest:
        raise CompatibilityError(f"Dependency {newest_artifact} requires Jenkins {newest} or higher.")
    return own


def record_core_location(session: PackagingSession, workspace_map: PluginWorkspaceMap | None = None) -> bool:
    """Remember where a snapshot build lives so other builds can find it.

    Returns:
        True if the location was recorded.
    """
    gav = session.project.project
    if not gav.is_snapshot:
        return False
    workspace_map = workspace_map or PluginWorkspaceMap(session.config.workspace_map)
    workspace_map.write(_component_id(session.project), session.layout.basedir)
    return True
