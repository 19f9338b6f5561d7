"""Custom exceptions for HPI Packager."""

from __future__ import annotations

from pathlib import Path


class PackagerError(Exception):
    """Base exception for HPI Packager."""


class ConfigurationError(PackagerError):
    """Raised when the packager configuration is incomplete or invalid."""


class ResolutionError(PackagerError):
    """Raised when the dependency graph of a component cannot be built."""


class PomNotFoundError(ResolutionError):
    """Raised when a pom.xml file cannot be found."""


class PomParseError(ResolutionError):
    """Raised when a pom.xml file cannot be parsed."""


class PomModelError(ResolutionError):
    """Raised when required Maven model fields are missing or invalid."""


class ClassificationError(PackagerError):
    """Raised when an artifact cannot be opened to decide whether it is a plugin."""


class VersionPolicyViolation(PackagerError):
    """Raised when a snapshot version override would switch to a different release."""


class AssemblyIOError(PackagerError):
    """Raised when copying or unpacking an artifact into the assembly fails."""

    def __init__(self, message: str, source: Path | None = None, destination: Path | None = None):
        self.source = source
        self.destination = destination
        detail = message
        if source is not None or destination is not None:
            detail = f"{message} (source={source}, destination={destination})"
        super().__init__(detail)


class CompatibilityError(PackagerError):
    """Raised when a dependency requires a newer host core than the component declares."""


class OptionalDependencyConflict(PackagerError):
    """Raised when a bundled plugin optionally depends on a newer version of another bundled plugin."""
