"""Pydantic models for Maven projects and their declared dependencies."""

from __future__ import annotations

from pydantic import BaseModel, Field


UNKNOWN_VERSION = "Unknown"
SNAPSHOT_SUFFIX = "-SNAPSHOT"


class GAV(BaseModel):
    """Maven coordinates (GroupId, ArtifactId, Version)."""

    group_id: str = Field(..., min_length=1)
    artifact_id: str = Field(..., min_length=1)
    version: str = Field(default=UNKNOWN_VERSION, min_length=1)

    def compact(self) -> str:
        """Return a compact string representation.

        Returns:
            A string like `groupId:artifactId:version`.
        """
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    def key(self) -> str:
        """Return the version-less `groupId:artifactId` key."""
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def is_snapshot(self) -> bool:
        return self.version.endswith(SNAPSHOT_SUFFIX)


class Exclusion(BaseModel):
    """A `<exclusion>` entry; `*` matches any group or artifact."""

    group_id: str
    artifact_id: str

    def matches(self, group_id: str, artifact_id: str) -> bool:
        return self.group_id in ("*", group_id) and self.artifact_id in ("*", artifact_id)


class Dependency(BaseModel):
    """A Maven dependency entry."""

    gav: GAV
    type: str = "jar"
    classifier: str | None = None
    scope: str | None = None
    optional: bool | None = None
    exclusions: list[Exclusion] = Field(default_factory=list)

    def label(self) -> str:
        """Return a user-facing label for the dependency.

        Returns:
            A formatted string including GAV and scope when present.
        """
        parts: list[str] = [self.gav.compact()]
        if self.type != "jar":
            parts.append(f"(type={self.type})")
        if self.scope:
            parts.append(f"(scope={self.scope})")
        if self.optional is True:
            parts.append("(optional)")
        return " ".join(parts)

    def management_key(self) -> tuple[str, str, str, str | None]:
        """Key used to match `<dependencyManagement>` entries."""
        return (self.gav.group_id, self.gav.artifact_id, self.type, self.classifier)


class Developer(BaseModel):
    name: str | None = None
    id: str | None = None
    email: str | None = None


class License(BaseModel):
    name: str | None = None
    url: str | None = None


class Scm(BaseModel):
    connection: str | None = None
    tag: str | None = None
    url: str | None = None


class Resource(BaseModel):
    directory: str


class MavenProject(BaseModel):
    """A parsed Maven project model."""

    project: GAV
    packaging: str = "jar"
    name: str | None = None
    url: str | None = None
    dependencies: list[Dependency] = Field(default_factory=list)
    dependency_management: list[Dependency] = Field(default_factory=list)
    properties: dict[str, str] = Field(default_factory=dict)
    developers: list[Developer] = Field(default_factory=list)
    licenses: list[License] = Field(default_factory=list)
    scm: Scm = Field(default_factory=Scm)
    resources: list[Resource] = Field(default_factory=list)
    final_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.project.artifact_id

    @property
    def build_final_name(self) -> str:
        return self.final_name or f"{self.project.artifact_id}-{self.project.version}"
