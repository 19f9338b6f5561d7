"""Class and resource visibility policies for running a component locally.

A host runs the component inside a servlet container that is itself loaded
by the build tool. Three loaders sit between them:

- masking: hides the build tool's own libraries from everything below it.
- servlet API only: the component sees the servlet API from the container
  and nothing else of it.
- container and servlet API: additionally exposes the container's classes,
  used when the container must be reachable (e.g. for JNDI).

Each is an `IsolationPolicy` applied by an `IsolatingLoader`. Loaders are
themselves `ClassSource`s, so they compose by delegation.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Protocol, Sequence


MASKED_CLASS_PREFIXES = (
    "org.kohsuke",
    "org.apache.maven",
    "org.sonatype",
    "org.cyberneko",
    "org.codehaus.plexus",
)
MASKED_RESOURCE_PREFIXES = (
    "org/kohsuke",
    "org/apache/maven",
    "org/sonatype",
    "org/codehaus/plexus",
    "META-INF/plexus",
    "META-INF/maven",
)
META_INF_SERVICES = "META-INF/services/"


class ClassNotFound(LookupError):
    """Raised when a class is not visible through a source."""


class ClassSource(Protocol):
    def find_class(self, name: str) -> str:
        """Return the location of a class by its binary name, or raise `ClassNotFound`."""
        ...

    def find_resource(self, name: str) -> str | None:
        ...

    def find_resources(self, name: str) -> list[str]:
        ...


def class_resource_name(name: str) -> str:
    """`a.b.C` -> `a/b/C.class`."""
    return name.replace(".", "/") + ".class"


class StaticClassSource:
    """In-memory source: class names and resource names mapped to locations."""

    def __init__(
        self,
        classes: Mapping[str, str] | Iterable[str] = (),
        resources: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        if isinstance(classes, Mapping):
            self.classes = dict(classes)
        else:
            self.classes = {name: f"static:{name}" for name in classes}
        self.resources = {k: list(v) for k, v in (resources or {}).items()}

    def find_class(self, name: str) -> str:
        try:
            return self.classes[name]
        except KeyError:
            raise ClassNotFound(name) from None

    def find_resource(self, name: str) -> str | None:
        found = self.find_resources(name)
        return found[0] if found else None

    def find_resources(self, name: str) -> list[str]:
        return list(self.resources.get(name, []))


class ArchiveClassSource:
    """Classpath of jar files and class directories, searched in order."""

    def __init__(self, entries: Iterable[Path]) -> None:
        self.entries = list(entries)
        self._index: list[tuple[Path, frozenset[str] | None]] | None = None

    def _load(self) -> list[tuple[Path, frozenset[str] | None]]:
        if self._index is None:
            index: list[tuple[Path, frozenset[str] | None]] = []
            for entry in self.entries:
                if entry.is_dir():
                    index.append((entry, None))
                elif entry.is_file():
                    with zipfile.ZipFile(entry) as zf:
                        index.append((entry, frozenset(zf.namelist())))
            self._index = index
        return self._index

    def find_resources(self, name: str) -> list[str]:
        found: list[str] = []
        for entry, names in self._load():
            if names is None:
                if (entry / name).is_file():
                    found.append((entry / name).as_uri())
            elif name in names:
                found.append(f"jar:{entry.as_uri()}!/{name}")
        return found

    def find_resource(self, name: str) -> str | None:
        found = self.find_resources(name)
        return found[0] if found else None

    def find_class(self, name: str) -> str:
        location = self.find_resource(class_resource_name(name))
        if location is None:
            raise ClassNotFound(name)
        return location


@dataclass(frozen=True)
class IsolationPolicy:
    """Allow/deny rules applied by an `IsolatingLoader`.

    Attributes:
        masked_class_prefixes: Classes never visible, not even from the parent.
        masked_resource_prefixes: Resources never visible.
        mask_services: Also hide `META-INF/services/<masked class>` files.
        exported_class_prefixes: Classes the secondary source may supply when
            the parent does not have them.
        exported_resources: When set, `find_resources` answers only these
            names, and only from the secondary source.
    """

    name: str
    masked_class_prefixes: tuple[str, ...] = ()
    masked_resource_prefixes: tuple[str, ...] = ()
    mask_services: bool = False
    exported_class_prefixes: tuple[str, ...] = ()
    exported_resources: tuple[str, ...] | None = None

    def is_masked_class(self, name: str) -> bool:
        return name.startswith(self.masked_class_prefixes) if self.masked_class_prefixes else False

    def is_masked_resource(self, name: str) -> bool:
        if self.mask_services and name.startswith(META_INF_SERVICES):
            if self.is_masked_class(name[len(META_INF_SERVICES):]):
                return True
        return name.startswith(self.masked_resource_prefixes) if self.masked_resource_prefixes else False

    def is_exported_class(self, name: str) -> bool:
        return name.startswith(self.exported_class_prefixes) if self.exported_class_prefixes else False


def masking_policy() -> IsolationPolicy:
    return IsolationPolicy(
        name="masking",
        masked_class_prefixes=MASKED_CLASS_PREFIXES,
        masked_resource_prefixes=MASKED_RESOURCE_PREFIXES,
        mask_services=True,
    )


def servlet_api_only_policy() -> IsolationPolicy:
    return IsolationPolicy(name="servlet-api-only", exported_class_prefixes=("javax.",))


def infrastructure_and_servlet_policy() -> IsolationPolicy:
    return IsolationPolicy(
        name="container-and-servlet-api",
        exported_class_prefixes=("javax.", "org.eclipse.jetty."),
        exported_resources=("jndi.properties",),
    )


POLICIES = {
    "masking": masking_policy,
    "servlet": servlet_api_only_policy,
    "container": infrastructure_and_servlet_policy,
}


class EmptyClassSource:
    def find_class(self, name: str) -> str:
        raise ClassNotFound(name)

    def find_resource(self, name: str) -> str | None:
        return None

    def find_resources(self, name: str) -> list[str]:
        return []


class IsolatingLoader:
    """Parent-first lookup filtered by an `IsolationPolicy`.

    Args:
        policy: What to hide and what to take from `secondary`.
        parent: Consulted first for everything not masked.
        secondary: Supplies exported classes the parent lacks.
    """

    def __init__(
        self,
        policy: IsolationPolicy,
        parent: ClassSource | None = None,
        secondary: ClassSource | None = None,
    ) -> None:
        self.policy = policy
        self.parent = parent or EmptyClassSource()
        self.secondary = secondary

    def find_class(self, name: str) -> str:
        if self.policy.is_masked_class(name):
            raise ClassNotFound(name)
        try:
            return self.parent.find_class(name)
        except ClassNotFound:
            if self.secondary is not None and self.policy.is_exported_class(name):
                return self.secondary.find_class(name)
            raise

    def find_resource(self, name: str) -> str | None:
        if self.policy.is_masked_resource(name):
            return None
        return self.parent.find_resource(name)

    def find_resources(self, name: str) -> list[str]:
        if self.policy.is_masked_resource(name):
            return []
        if self.policy.exported_resources is not None:
            if self.secondary is not None and name in self.policy.exported_resources:
                return self.secondary.find_resources(name)
            return []
        return self.parent.find_resources(name)

    def __repr__(self) -> str:
        return f"IsolatingLoader({self.policy.name})"


def build_run_chain(
    host: ClassSource,
    container: ClassSource,
    expose_container: bool = False,
) -> IsolatingLoader:
    """Loader chain the component's webapp loader delegates to when run locally.

    The build tool's classes in `host` are masked; from `container` only the
    servlet API (plus the container itself when `expose_container`) is visible.
    """
    masked = IsolatingLoader(masking_policy(), host)
    policy = infrastructure_and_servlet_policy() if expose_container else servlet_api_only_policy()
    return IsolatingLoader(policy, masked, container)
