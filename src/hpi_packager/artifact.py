"""Resolved artifacts and the behaviour layered on top of them.

A resolved dependency record is a bare data structure. `ArtifactFacade`
wraps one and adds the queries the packaging goals need: is it a plugin,
what is its default file name, is it newer than another resolution of the
same artifact.
"""

from __future__ import annotations

import logging
import re
import zipfile
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict

from hpi_packager.exceptions import ClassificationError
from hpi_packager.manifest import read_archive_manifest
from hpi_packager.models import GAV, SNAPSHOT_SUFFIX
from hpi_packager.versioning import compare_versions


logger = logging.getLogger(__name__)

PLUGIN_TYPES = frozenset({"hpi", "jpi"})
PLUGIN_MARKER_ATTRIBUTES = ("Plugin-Class", "Plugin-Version")

_EXTENSIONS = {
    "ejb": "jar",
    "ejb-client": "jar",
    "test-jar": "jar",
    "java-source": "jar",
    "javadoc": "jar",
    "maven-plugin": "jar",
    "executable-war": "war",
}
_VERSION_DESCRIPTION_RE = re.compile(r" [(].+[)]$")


def extension_for(type_: str) -> str:
    """File extension used for an artifact type."""
    return _EXTENSIONS.get(type_, type_)


class ArtifactCoordinate(BaseModel):
    """Coordinates of one resolved dependency edge."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    artifact_id: str
    version: str
    type: str = "jar"
    classifier: str | None = None
    scope: str | None = None
    optional: bool = False

    @property
    def id(self) -> str:
        """`groupId:artifactId:type[:classifier]:version`, the form used in dependency trails."""
        parts = [self.group_id, self.artifact_id, self.type]
        if self.classifier:
            parts.append(self.classifier)
        parts.append(self.version)
        return ":".join(parts)

    @property
    def key(self) -> tuple[str, str]:
        return (self.group_id, self.artifact_id)

    @property
    def extension(self) -> str:
        return extension_for(self.type)

    @property
    def is_snapshot(self) -> bool:
        return self.version.endswith(SNAPSHOT_SUFFIX)

    def gav(self) -> GAV:
        return GAV(group_id=self.group_id, artifact_id=self.artifact_id, version=self.version)


class ArtifactFacade:
    """Read-only view over a resolved artifact.

    Args:
        coordinate: The artifact coordinates, scope and optionality.
        file: Resolved file, or None when the resolver did not produce one.
        trail: Ids from the traversal root to this artifact, root first, self last.
        packaging: `<packaging>` of the artifact's POM when the resolver read it.
    """

    def __init__(
        self,
        coordinate: ArtifactCoordinate,
        file: Path | None = None,
        trail: Sequence[str] = (),
        packaging: str | None = None,
    ) -> None:
        self.coordinate = coordinate
        self.file = file
        self.trail: tuple[str, ...] = tuple(trail) or (coordinate.id,)
        self.packaging = packaging

    @property
    def id(self) -> str:
        return self.coordinate.id

    @property
    def group_id(self) -> str:
        return self.coordinate.group_id

    @property
    def artifact_id(self) -> str:
        return self.coordinate.artifact_id

    @property
    def version(self) -> str:
        return self.coordinate.version

    @property
    def type(self) -> str:
        return self.coordinate.type

    @property
    def classifier(self) -> str | None:
        return self.coordinate.classifier

    @property
    def scope(self) -> str | None:
        return self.coordinate.scope

    @property
    def optional(self) -> bool:
        return self.coordinate.optional

    def has_scope(self, *scopes: str | None) -> bool:
        """Returns true if the artifact has one of the given scopes (including None)."""
        return self.scope in scopes

    def _archive_file(self) -> Path | None:
        if self.file is None or not self.file.exists() or self.file.is_dir():
            return None
        return self.file

    def read_manifest(self) -> dict[str, str] | None:
        """Main manifest attributes of the artifact's archive.

        Raises:
            ClassificationError: If the file cannot be opened as an archive.
        """
        path = self._archive_file()
        if path is None:
            return None
        try:
            return read_archive_manifest(path)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ClassificationError(f"Failed to open artifact {self.id} at {self.file}") from exc

    def is_plugin(self) -> bool:
        """Is this a plugin?

        Artifacts typed `hpi`/`jpi` are plugins; any other non-jar type is
        not. A jar is a plugin when its POM packaging says so or its manifest
        carries `Plugin-Class` or `Plugin-Version`. Directories and missing
        files (reactor builds in progress) are never plugins.

        Raises:
            ClassificationError: If the jar cannot be opened as an archive.
        """
        if self.type in PLUGIN_TYPES:
            return True
        if self.type != "jar":
            return False
        if self.classifier:
            # core-assets, tests, etc.
            return False
        if self.packaging in PLUGIN_TYPES:
            return True
        if self._archive_file() is None:
            return False
        manifest = self.read_manifest()
        if manifest is None:
            return False
        return any(key in manifest for key in PLUGIN_MARKER_ATTRIBUTES)

    def is_plugin_best_effort(self) -> bool:
        """Like `is_plugin`, but an unreadable archive is logged and treated as a library."""
        try:
            return self.is_plugin()
        except ClassificationError as exc:
            logger.warning("While inspecting %s: %s", self.id, exc.__cause__ or exc)
            return False

    def is_library(self) -> bool:
        return not self.is_plugin()

    def default_final_name(self) -> str:
        """Converts the artifact to `artifactId-version[-classifier].ext`."""
        name = f"{self.artifact_id}-{self.version}"
        if self.classifier:
            name += f"-{self.classifier}"
        if self.coordinate.extension:
            name += f".{self.coordinate.extension}"
        return name

    def qualified_final_name(self) -> str:
        """The final name prefixed with the groupId, used to break name collisions."""
        return f"{self.group_id}-{self.default_final_name()}"

    def is_newer_than(self, other: "ArtifactFacade") -> bool:
        return compare_versions(self.version, other.version) > 0

    def has_same_ga_as(self, gav: GAV) -> bool:
        return self.group_id == gav.group_id and self.artifact_id == gav.artifact_id

    def actual_artifact_id(self) -> str:
        """For a plugin archive, the `Short-Name` from its manifest; otherwise the artifactId."""
        manifest = self.read_manifest()
        if manifest is None:
            return self.artifact_id
        return manifest.get("Short-Name") or self.artifact_id

    def actual_version(self) -> str:
        """For a plugin archive, `Plugin-Version` without the ` (description)` suffix."""
        manifest = self.read_manifest()
        if manifest is None or "Plugin-Version" not in manifest:
            return self.version
        return _VERSION_DESCRIPTION_RE.sub("", manifest["Plugin-Version"])

    def core_version(self) -> str | None:
        """Host core version the plugin was built against, from its manifest."""
        manifest = self.read_manifest()
        if manifest is None:
            return None
        return manifest.get("Jenkins-Version") or manifest.get("Hudson-Version")

    def with_trail(self, trail: Sequence[str]) -> "ArtifactFacade":
        return ArtifactFacade(self.coordinate, self.file, trail, self.packaging)

    def __repr__(self) -> str:
        return f"ArtifactFacade({self.id})"

    def __str__(self) -> str:
        return self.id
