"""Packager configuration module.

Configuration is read from environment variables; command-line options
override individual fields.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from hpi_packager.exceptions import ConfigurationError


KNOWN_SCOPES = frozenset({"compile", "runtime", "provided", "system", "test", "import"})
SANDBOX_STATUSES = frozenset({"safe", "unsafe"})

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass
class PackagerConfig:
    """Packager configuration container.

    Attributes:
        local_repository: Maven local repository the dependencies are resolved from.
        workspace_map: File mapping development builds to component ids.
        scopes: Scopes whose dependencies are needed at runtime.
        include_optional: Follow optional dependencies when assembling plugins.
        core_id: `groupId:artifactId` of the host core, if not the default ones.
        core_version_override: Host core version to record instead of the detected one.
        version_override: Replacement for a `-SNAPSHOT` project version.
        version_description: Qualifier appended to the plugin version.
        fail_on_version_override: Reject overrides that switch to another release.
        compatible_since: Oldest version whose stored configuration is compatible.
        mask_classes: Host packages the component hides from itself.
        global_mask_classes: Host packages hidden from every component.
        plugin_first_classloader: Prefer bundled libraries over the host's.
        sandbox_status: Declared sandbox status (`safe` or `unsafe`).
    """

    local_repository: Path = field(default_factory=lambda: Path.home() / ".m2" / "repository")
    workspace_map: Path = field(default_factory=lambda: Path.home() / ".jenkins-hpl-map")
    scopes: tuple[str, ...] = ("compile", "runtime")
    include_optional: bool = False
    core_id: str | None = None
    core_version_override: str | None = None
    version_override: str | None = None
    version_description: str | None = None
    fail_on_version_override: bool = True
    compatible_since: str | None = None
    mask_classes: str | None = None
    global_mask_classes: str | None = None
    plugin_first_classloader: bool = False
    sandbox_status: str | None = None

    @classmethod
    def from_env(cls) -> "PackagerConfig":
        """Create configuration from environment variables.

        Environment variables:
            HPI_LOCAL_REPOSITORY: Local repository (default: "~/.m2/repository")
            HPI_WORKSPACE_MAP: Workspace map file (default: "~/.jenkins-hpl-map")
            HPI_SCOPES: Comma separated runtime scopes (default: "compile,runtime")
            HPI_INCLUDE_OPTIONAL: Follow optional dependencies (default: false)
            HPI_CORE_ID: Host core `groupId:artifactId`
            HPI_CORE_VERSION_OVERRIDE: Host core version override
            HPI_VERSION_OVERRIDE: Snapshot version override
            HPI_VERSION_DESCRIPTION: Plugin version qualifier
            HPI_FAIL_ON_VERSION_OVERRIDE: Reject overrides to another release (default: true)
            HPI_COMPATIBLE_SINCE: Compatible-Since-Version
            HPI_MASK_CLASSES: Mask-Classes
            HPI_GLOBAL_MASK_CLASSES: Global-Mask-Classes
            HPI_PLUGIN_FIRST_CLASSLOADER: PluginFirstClassLoader (default: false)
            HPI_SANDBOX_STATUS: Sandbox-Status
        """
        defaults = cls()
        repo = _optional("HPI_LOCAL_REPOSITORY")
        workspace_map = _optional("HPI_WORKSPACE_MAP")
        scopes = _optional("HPI_SCOPES")
        return cls(
            local_repository=Path(repo).expanduser() if repo else defaults.local_repository,
            workspace_map=Path(workspace_map).expanduser() if workspace_map else defaults.workspace_map,
            scopes=tuple(s.strip() for s in scopes.split(",") if s.strip()) if scopes else defaults.scopes,
            include_optional=_flag("HPI_INCLUDE_OPTIONAL", False),
            core_id=_optional("HPI_CORE_ID"),
            core_version_override=_optional("HPI_CORE_VERSION_OVERRIDE"),
            version_override=_optional("HPI_VERSION_OVERRIDE"),
            version_description=_optional("HPI_VERSION_DESCRIPTION"),
            fail_on_version_override=_flag("HPI_FAIL_ON_VERSION_OVERRIDE", True),
            compatible_since=_optional("HPI_COMPATIBLE_SINCE"),
            mask_classes=_optional("HPI_MASK_CLASSES"),
            global_mask_classes=_optional("HPI_GLOBAL_MASK_CLASSES"),
            plugin_first_classloader=_flag("HPI_PLUGIN_FIRST_CLASSLOADER", False),
            sandbox_status=_optional("HPI_SANDBOX_STATUS"),
        )

    def with_overrides(self, **changes: object) -> "PackagerConfig":
        """Copy with the given fields replaced; `None` values are ignored."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ConfigurationError: If a value is missing or invalid.
        """
        if not self.scopes:
            raise ConfigurationError("HPI_SCOPES must name at least one scope")
        unknown = sorted(set(self.scopes) - KNOWN_SCOPES)
        if unknown:
            raise ConfigurationError(f"Unknown scope(s) in HPI_SCOPES: {', '.join(unknown)}")
        if self.core_id is not None and self.core_id.count(":") != 1:
            raise ConfigurationError(f"HPI_CORE_ID must be groupId:artifactId, got {self.core_id!r}")
        if self.sandbox_status is not None and self.sandbox_status not in SANDBOX_STATUSES:
            raise ConfigurationError(f"HPI_SANDBOX_STATUS must be one of {sorted(SANDBOX_STATUSES)}")
