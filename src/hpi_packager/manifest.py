"""Reading and writing JAR-style manifests and the plugin metadata header."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Iterable, Mapping

from pydantic import BaseModel, Field


MANIFEST_PATH = "META-INF/MANIFEST.MF"
MAX_LINE_BYTES = 72


def parse_manifest(text: str) -> dict[str, str]:
    """Parse the main section of a manifest.

    Continuation lines (starting with a single space) are joined to the
    previous attribute. Parsing stops at the first blank line, which ends the
    main section.
    """
    attributes: dict[str, str] = {}
    last_key: str | None = None
    for raw in text.splitlines():
        if not raw.strip():
            if attributes:
                break
            continue
        if raw.startswith(" ") and last_key is not None:
            attributes[last_key] += raw[1:]
            continue
        key, sep, value = raw.partition(":")
        if not sep:
            continue
        last_key = key.strip()
        attributes[last_key] = value[1:] if value.startswith(" ") else value
    return attributes


def _wrap(line: str) -> list[str]:
    encoded = line.encode("utf-8")
    if len(encoded) <= MAX_LINE_BYTES:
        return [line]
    out: list[str] = []
    current = ""
    limit = MAX_LINE_BYTES
    for ch in line:
        if len((current + ch).encode("utf-8")) > limit:
            out.append(current)
            current = ""
            # continuation lines carry a leading space
            limit = MAX_LINE_BYTES - 1
        current += ch
    out.append(current)
    return [out[0], *(" " + part for part in out[1:])]


def format_manifest(attributes: Mapping[str, str]) -> str:
    """Render attributes as a manifest main section with 72-byte line wrapping."""
    lines: list[str] = []
    items = dict(attributes)
    version = items.pop("Manifest-Version", "1.0")
    for key, value in [("Manifest-Version", version), *items.items()]:
        lines.extend(_wrap(f"{key}: {value}"))
    return "\r\n".join(lines) + "\r\n\r\n"


def read_archive_manifest(path: Path) -> dict[str, str] | None:
    """Read the main manifest section of a zip archive.

    Returns:
        The attributes, or None when the archive has no manifest.

    Raises:
        OSError, zipfile.BadZipFile: If the file is not a readable archive.
    """
    with zipfile.ZipFile(path) as zf:
        try:
            data = zf.read(MANIFEST_PATH)
        except KeyError:
            return None
    return parse_manifest(data.decode("utf-8", errors="replace"))


def read_manifest_file(path: Path) -> dict[str, str]:
    return parse_manifest(path.read_text(encoding="utf-8"))


def write_manifest_file(path: Path, attributes: Mapping[str, str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(format_manifest(attributes).encode("utf-8"))
    return path


class PluginDependency(BaseModel):
    """One entry of the `Plugin-Dependencies` attribute."""

    artifact_id: str
    version: str
    optional: bool = False

    def render(self) -> str:
        text = f"{self.artifact_id}:{self.version}"
        if self.optional:
            text += ";resolution:=optional"
        return text


class ManifestHeader(BaseModel):
    """Metadata header written into every packaged component.

    Field order is the attribute order of the rendered manifest.
    """

    plugin_class: str | None = None
    group_id: str
    artifact_id: str
    short_name: str
    long_name: str
    url: str | None = None
    compatible_since_version: str | None = None
    sandbox_status: str | None = None
    plugin_version: str | None = None
    core_version: str | None = None
    mask_classes: str | None = None
    global_mask_classes: str | None = None
    plugin_first_classloader: bool = False
    dependencies: list[PluginDependency] = Field(default_factory=list)
    developers: str | None = None
    support_dynamic_loading: bool | None = None
    licenses: list[tuple[str | None, str | None]] = Field(default_factory=list)
    changelog_url: str | None = None
    logo_url: str | None = None
    scm_connection: str | None = None
    scm_tag: str | None = None
    scm_url: str | None = None
    git_hash: str | None = None
    module_path: str | None = None

    def dependency_string(self) -> str:
        return ",".join(d.render() for d in self.dependencies)

    def to_attributes(self) -> dict[str, str]:
        attrs: dict[str, str] = {}

        def put(name: str, value: str | None) -> None:
            if value is not None:
                attrs[name] = value

        put("Plugin-Class", self.plugin_class)
        put("Group-Id", self.group_id)
        put("Artifact-Id", self.artifact_id)
        put("Short-Name", self.short_name)
        put("Long-Name", self.long_name)
        put("Url", self.url)
        put("Compatible-Since-Version", self.compatible_since_version)
        put("Sandbox-Status", self.sandbox_status)
        put("Plugin-Version", self.plugin_version)
        put("Hudson-Version", self.core_version)
        put("Jenkins-Version", self.core_version)
        put("Mask-Classes", self.mask_classes)
        put("Global-Mask-Classes", self.global_mask_classes)
        if self.plugin_first_classloader:
            attrs["PluginFirstClassLoader"] = "true"
        if self.dependencies:
            attrs["Plugin-Dependencies"] = self.dependency_string()
        put("Plugin-Developers", self.developers)
        if self.support_dynamic_loading is not None:
            attrs["Support-Dynamic-Loading"] = "true" if self.support_dynamic_loading else "false"
        for i, (name, url) in enumerate(self.licenses, start=1):
            suffix = "" if i == 1 else f"-{i}"
            put(f"Plugin-License-Name{suffix}", name)
            put(f"Plugin-License-Url{suffix}", url)
        put("Plugin-ChangelogUrl", self.changelog_url)
        put("Plugin-LogoUrl", self.logo_url)
        put("Plugin-ScmConnection", self.scm_connection)
        put("Plugin-ScmTag", self.scm_tag)
        put("Plugin-ScmUrl", self.scm_url)
        put("Plugin-GitHash", self.git_hash)
        put("Plugin-ModulePath", self.module_path)
        return attrs


def merge_attributes(*sections: Iterable[tuple[str, str]] | Mapping[str, str]) -> dict[str, str]:
    """Merge attribute sources; later sources append, never reorder earlier keys."""
    out: dict[str, str] = {}
    for section in sections:
        pairs = section.items() if isinstance(section, Mapping) else section
        for key, value in pairs:
            out[key] = value
    return out
