"""Compute the metadata header of a packaged component.

Covers the plugin version (snapshot overrides and the private build
qualifier), the host core version, plugin-to-plugin dependencies and the
dynamic-loading flag derived from the extension index.
"""

from __future__ import annotations

import getpass
import json
import logging
import subprocess
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from hpi_packager.artifact import ArtifactFacade
from hpi_packager.config import PackagerConfig
from hpi_packager.exceptions import ConfigurationError, PackagerError, VersionPolicyViolation
from hpi_packager.filters import ArtifactSet
from hpi_packager.manifest import ManifestHeader, PluginDependency
from hpi_packager.models import Developer, GAV, MavenProject, SNAPSHOT_SUFFIX
from hpi_packager.versioning import VersionNumber


logger = logging.getLogger(__name__)

CORE_GROUP_IDS = ("org.jenkins-ci.main", "org.jvnet.hudson.main")
CORE_ARTIFACT_IDS = ("jenkins-core", "hudson-core")
PLUGIN_SERVICE_FILE = "META-INF/services/hudson.Plugin"
EXTENSION_INDEX = "META-INF/annotations/hudson.Extension.json"
JENKINS_MODULE_PACKAGING = "jenkins-module"
QUALIFIER_TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M"


def resolve_plugin_version(
    version: str,
    override: str | None = None,
    fail_on_different_release: bool = True,
) -> str:
    """Apply a snapshot version override.

    Only `-SNAPSHOT` versions are overridden. The override has to start with
    the version without its `-SNAPSHOT` suffix, so that `2.5-SNAPSHOT` can
    become `2.5-rc1.abcdef-SNAPSHOT` but not `2.6`.

    Raises:
        VersionPolicyViolation: If the override names a different release and
            `fail_on_different_release` is set.
    """
    if not version.endswith(SNAPSHOT_SUFFIX) or override is None:
        return version
    release = version[: -len(SNAPSHOT_SUFFIX)]
    if not override.startswith(release):
        message = (
            f"The snapshot version override of {override} does not start with "
            f"the current target release version {version}"
        )
        if fail_on_different_release:
            raise VersionPolicyViolation(message)
        logger.warning(message)
    logger.info("Snapshot version override enabled. Using %s in place of %s", override, version)
    return override


def git_rev_parse(basedir: Path, *args: str) -> str | None:
    """Output of `git rev-parse ARGS` in `basedir`, or None if git fails."""
    command = ["git", "rev-parse", *args]
    try:
        result = subprocess.run(
            command,
            cwd=basedir,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        logger.debug("Failed to run %s: %s", " ".join(command), exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def _uses_git(project: MavenProject) -> bool:
    return bool(project.scm.connection and project.scm.connection.startswith("scm:git"))


def git_head_hash(project: MavenProject, basedir: Path) -> str | None:
    if not _uses_git(project):
        return None
    sha = git_rev_parse(basedir, "HEAD")
    if sha is None or len(sha) < 8:
        # repository without commits
        return None
    return sha


def module_path(project: MavenProject, basedir: Path) -> str | None:
    """Path of the project directory relative to the git work tree, or None at the top."""
    if not _uses_git(project):
        return None
    top_level = git_rev_parse(basedir, "--show-toplevel")
    if top_level is None:
        return None
    try:
        rel = basedir.resolve().relative_to(Path(top_level).resolve())
    except ValueError:
        logger.warning("Project directory %s is outside the git work tree %s", basedir, top_level)
        return None
    path = rel.as_posix()
    return None if path in ("", ".") else path


def synthesize_qualifier(
    git_hash: str | None,
    now: datetime | None = None,
    user: str | None = None,
) -> str:
    """`private-<hash[:8] or timestamp>-<user>` for builds without an explicit description."""
    if git_hash:
        stamp = git_hash[:8]
    else:
        stamp = (now or datetime.now()).strftime(QUALIFIER_TIMESTAMP_FORMAT)
    return f"private-{stamp}-{user or getpass.getuser()}"


def plugin_version_string(
    version: str,
    description: str | None = None,
    git_hash: str | None = None,
    now: datetime | None = None,
    user: str | None = None,
) -> str:
    if version.endswith(SNAPSHOT_SUFFIX) and description is None:
        description = synthesize_qualifier(git_hash, now, user)
    if description is not None:
        return f"{version} ({description})"
    return version


def _is_core(group_id: str, artifact_id: str, core_id: str | None) -> bool:
    if core_id is not None:
        return f"{group_id}:{artifact_id}" == core_id
    return group_id in CORE_GROUP_IDS and artifact_id in CORE_ARTIFACT_IDS


def find_core_version(
    project: MavenProject,
    core_id: str | None = None,
    override: str | None = None,
) -> str:
    """Host core version the component is built against.

    Taken from the first direct dependency on the host core. An override is
    used only when it is newer than the detected version, or when no core
    dependency is declared.

    Raises:
        ConfigurationError: If no core dependency exists and no override is set.
    """
    if override is not None and not override.strip():
        override = None
    for dep in project.dependencies:
        if not _is_core(dep.gav.group_id, dep.gav.artifact_id, core_id):
            continue
        detected = dep.gav.version
        if override is not None:
            if VersionNumber(detected) < VersionNumber(override):
                return override
            logger.warning(
                "Ignoring core version override of %s as the detected version, %s, is newer. "
                "Please remove the redundant version override.",
                override,
                detected,
            )
        return detected
    if override is not None:
        return override
    raise ConfigurationError("Failed to determine the host core version this component depends on.")


def plugin_dependencies(
    direct: Iterable[ArtifactFacade],
    project: GAV,
    scopes: Iterable[str] = ("compile", "runtime"),
) -> list[PluginDependency]:
    """Direct plugin dependencies as recorded in `Plugin-Dependencies`.

    Raises:
        ConfigurationError: If a plugin is declared with `provided` scope.
    """
    allowed = set(scopes)
    items = ArtifactSet(direct).remove_all(lambda a: a.has_same_ga_as(project))
    provided = ArtifactSet(items).scope_is("provided").plugins()
    if provided:
        raise ConfigurationError(
            f"{provided[0].id} is marked as 'provided' scope dependency, but it should be the 'compile' scope."
        )
    return [
        PluginDependency(artifact_id=a.actual_artifact_id(), version=a.actual_version(), optional=a.optional)
        for a in items.retain_all(lambda a: (a.scope or "compile") in allowed).plugins()
    ]


def developers_attribute(developers: Iterable[Developer]) -> str:
    """`name:id:email` per developer, comma separated; missing parts are empty."""
    return ",".join(f"{d.name or ''}:{d.id or ''}:{d.email or ''}" for d in developers)


class DynamicLoadable(str, Enum):
    YES = "YES"
    NO = "NO"
    MAYBE = "MAYBE"


class ExtensionEntry(BaseModel):
    """One entry of the extension index written by the annotation processor."""

    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(alias="className")
    dynamic_loadable: DynamicLoadable = Field(default=DynamicLoadable.YES, alias="dynamicLoadable")


_EXTENSION_LIST = TypeAdapter(list[ExtensionEntry])


def read_extension_index(classes_dir: Path) -> list[ExtensionEntry]:
    """Extensions declared by the compiled classes; empty when there is no index.

    Raises:
        PackagerError: If the index exists but is malformed.
    """
    path = classes_dir / EXTENSION_INDEX
    if not path.is_file():
        return []
    try:
        return _EXTENSION_LIST.validate_python(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise PackagerError(f"Malformed extension index {path}: {exc}") from exc


def merge_dynamic_loading(values: Iterable[DynamicLoadable]) -> bool | None:
    """Combine per-extension flags: any NO wins, then any MAYBE, else YES."""
    seen = set(values)
    if DynamicLoadable.NO in seen:
        return False
    if DynamicLoadable.MAYBE in seen:
        return None
    return True


def read_plugin_class(classes_dir: Path) -> str | None:
    path = classes_dir / PLUGIN_SERVICE_FILE
    if not path.is_file():
        return None
    lines = path.read_text(encoding="utf-8").splitlines()
    return lines[0].strip() if lines else None


def build_manifest_header(
    project: MavenProject,
    config: PackagerConfig,
    direct: Iterable[ArtifactFacade],
    classes_dir: Path,
    basedir: Path,
    now: datetime | None = None,
    user: str | None = None,
) -> ManifestHeader:
    """Assemble every attribute of the component's metadata header."""
    gav = project.project
    git_hash = git_head_hash(project, basedir)
    version = resolve_plugin_version(gav.version, config.version_override, config.fail_on_version_override)
    plugin_version = plugin_version_string(version, config.version_description, git_hash, now, user)
    extensions = read_extension_index(classes_dir)

    return ManifestHeader(
        plugin_class=read_plugin_class(classes_dir),
        group_id=gav.group_id,
        artifact_id=gav.artifact_id,
        short_name=gav.artifact_id,
        long_name=project.display_name,
        url=project.url,
        compatible_since_version=config.compatible_since,
        sandbox_status=config.sandbox_status,
        plugin_version=None if project.packaging == JENKINS_MODULE_PACKAGING else plugin_version,
        core_version=find_core_version(project, config.core_id, config.core_version_override),
        mask_classes=config.mask_classes,
        global_mask_classes=config.global_mask_classes,
        plugin_first_classloader=config.plugin_first_classloader,
        dependencies=plugin_dependencies(direct, gav, config.scopes),
        developers=developers_attribute(project.developers) if project.developers else None,
        support_dynamic_loading=merge_dynamic_loading(e.dynamic_loadable for e in extensions),
        licenses=[(lic.name, lic.url) for lic in project.licenses],
        changelog_url=project.properties.get("hpi.pluginChangelogUrl"),
        logo_url=project.properties.get("hpi.pluginLogoUrl"),
        scm_connection=project.scm.connection,
        scm_tag=project.scm.tag,
        scm_url=project.scm.url,
        git_hash=git_hash,
        module_path=module_path(project, basedir),
    )
