"""Parse Maven pom.xml files using lxml."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

from lxml import etree

from hpi_packager.exceptions import PomModelError, PomNotFoundError, PomParseError
from hpi_packager.models import (
    Dependency,
    Developer,
    Exclusion,
    GAV,
    License,
    MavenProject,
    Resource,
    Scm,
    UNKNOWN_VERSION,
)


_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_PROJECT = "/*[local-name()='project']"


def _text_first(node: etree._Element, xpath_expr: str) -> str | None:
    """Get text of the first matching element using namespace-agnostic XPath.

    Args:
        node: Root element to query under.
        xpath_expr: XPath expression (should use local-name()).

    Returns:
        Text content if found and non-empty, otherwise None.
    """
    found = node.xpath(xpath_expr)
    if not found:
        return None
    first = found[0]
    if isinstance(first, etree._Element):
        text = (first.text or "").strip()
        return text or None
    if isinstance(first, str):
        text = first.strip()
        return text or None
    return None


def _bool_text(value: str | None) -> bool | None:
    """Convert Maven boolean-ish text to bool.

    Args:
        value: String like 'true'/'false' or None.

    Returns:
        True/False for recognized values, otherwise None.
    """
    if value is None:
        return None
    v = value.strip().lower()
    if v == "true":
        return True
    if v == "false":
        return False
    return None


def _parse_xml(path: Path) -> etree._Element:
    """Parse an XML file and return its root element.

    Args:
        path: Path to the pom.xml file.

    Raises:
        PomNotFoundError: If the file does not exist.
        PomParseError: If XML cannot be parsed.

    Returns:
        Root XML element.
    """
    if not path.exists():
        raise PomNotFoundError(f"pom.xml not found: {path}")
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        tree = etree.parse(str(path), parser=parser)
        return tree.getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise PomParseError(f"Failed to parse pom.xml: {path}") from exc


def _resolve_placeholders(value: str, props: Mapping[str, str]) -> str:
    """Resolve ${...} placeholders using provided properties.

    Unknown placeholders are preserved as-is.
    """
    current = value
    for _ in range(5):
        changed = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal changed
            key = m.group(1)
            replacement = props.get(key)
            if replacement:
                changed = True
                return replacement
            return m.group(0)

        nxt = _PLACEHOLDER_RE.sub(_sub, current)
        current = nxt
        if not changed:
            break
    return current


def _resolve_optional(value: str | None, props: Mapping[str, str]) -> str | None:
    if value is None:
        return None
    return _resolve_placeholders(value, props)


def _normalize_version(value: str | None, props: Mapping[str, str]) -> str:
    """Resolve and normalize a Maven version string.

    Rules:
      - Missing version => "Unknown"
      - If placeholders remain after resolution (e.g. "${x.y}"), treat as unresolved => "Unknown"
    """
    if value is None:
        return UNKNOWN_VERSION

    resolved = _resolve_placeholders(value, props).strip()
    if not resolved:
        return UNKNOWN_VERSION

    if _PLACEHOLDER_RE.search(resolved):
        return UNKNOWN_VERSION

    return resolved


def _parse_properties(root: etree._Element) -> dict[str, str]:
    props: dict[str, str] = {}
    nodes = root.xpath(f"{_PROJECT}/*[local-name()='properties']/*")
    for n in nodes:
        if not isinstance(n, etree._Element):
            continue
        key = etree.QName(n).localname
        val = (n.text or "").strip()
        if key and val:
            props[key] = val
    return props


def _parse_exclusions(dep: etree._Element) -> list[Exclusion]:
    out: list[Exclusion] = []
    for ex in dep.xpath("./*[local-name()='exclusions']/*[local-name()='exclusion']"):
        group_id = _text_first(ex, "./*[local-name()='groupId']")
        artifact_id = _text_first(ex, "./*[local-name()='artifactId']")
        if group_id and artifact_id:
            out.append(Exclusion(group_id=group_id, artifact_id=artifact_id))
    return out


def _parse_dependencies(root: etree._Element, xpath_expr: str, props: Mapping[str, str]) -> list[Dependency]:
    deps: list[Dependency] = []
    for dep in root.xpath(xpath_expr):
        dep_group_id = _resolve_optional(_text_first(dep, "./*[local-name()='groupId']"), props)
        dep_artifact_id = _resolve_optional(_text_first(dep, "./*[local-name()='artifactId']"), props)
        dep_version = _text_first(dep, "./*[local-name()='version']")
        dep_type = _text_first(dep, "./*[local-name()='type']") or "jar"
        dep_classifier = _text_first(dep, "./*[local-name()='classifier']")
        dep_scope = _text_first(dep, "./*[local-name()='scope']")
        dep_optional = _bool_text(_text_first(dep, "./*[local-name()='optional']"))

        if dep_group_id is None or dep_artifact_id is None:
            continue

        deps.append(
            Dependency(
                gav=GAV(
                    group_id=dep_group_id,
                    artifact_id=dep_artifact_id,
                    version=_normalize_version(dep_version, props),
                ),
                type=dep_type,
                classifier=dep_classifier,
                scope=dep_scope,
                optional=dep_optional,
                exclusions=_parse_exclusions(dep),
            )
        )
    return deps


def _parse_developers(root: etree._Element) -> list[Developer]:
    out: list[Developer] = []
    for d in root.xpath(f"{_PROJECT}/*[local-name()='developers']/*[local-name()='developer']"):
        out.append(
            Developer(
                name=_text_first(d, "./*[local-name()='name']"),
                id=_text_first(d, "./*[local-name()='id']"),
                email=_text_first(d, "./*[local-name()='email']"),
            )
        )
    return out


def _parse_licenses(root: etree._Element) -> list[License]:
    out: list[License] = []
    for lic in root.xpath(f"{_PROJECT}/*[local-name()='licenses']/*[local-name()='license']"):
        out.append(
            License(
                name=_text_first(lic, "./*[local-name()='name']"),
                url=_text_first(lic, "./*[local-name()='url']"),
            )
        )
    return out


def parse_parent(path: str | Path) -> GAV | None:
    """Return the `<parent>` coordinates of a POM, if it declares one."""
    root = _parse_xml(Path(path))
    group_id = _text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='groupId']")
    artifact_id = _text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='artifactId']")
    version = _text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='version']")
    if group_id is None or artifact_id is None:
        return None
    return GAV(group_id=group_id, artifact_id=artifact_id, version=version or UNKNOWN_VERSION)


def parse_pom(path: str | Path, inherited_properties: Mapping[str, str] | None = None) -> MavenProject:
    """Parse a Maven pom.xml into a `MavenProject`.

    Notes:
        - Namespace handling: uses `local-name()` XPath so it works with or without XML namespaces.
        - Property placeholders like `${...}` are resolved when possible, including
          properties inherited from a parent POM when `inherited_properties` is given.
          If a version cannot be resolved, it is stored as "Unknown".

    Args:
        path: Path to a pom.xml.
        inherited_properties: Properties of the parent POM, overridden by the child's own.

    Raises:
        PomModelError: If required fields are missing.

    Returns:
        A `MavenProject` with coordinates, dependencies, dependency management and metadata.
    """
    pom_path = Path(path)
    root = _parse_xml(pom_path)

    raw_group_id = _text_first(root, f"{_PROJECT}/*[local-name()='groupId']")
    raw_artifact_id = _text_first(root, f"{_PROJECT}/*[local-name()='artifactId']")
    raw_version = _text_first(root, f"{_PROJECT}/*[local-name()='version']")

    parent_group_id = _text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='groupId']")
    parent_version = _text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='version']")

    if raw_artifact_id is None:
        raise PomModelError(f"Missing required <artifactId> in {pom_path}")

    raw_group_id = raw_group_id or parent_group_id
    raw_version = raw_version or parent_version

    if raw_group_id is None:
        raise PomModelError(f"Missing required <groupId> (or parent <groupId>) in {pom_path}")

    props = {**(inherited_properties or {}), **_parse_properties(root)}
    effective_version = raw_version or UNKNOWN_VERSION
    builtins: dict[str, str] = {
        "project.groupId": raw_group_id,
        "project.artifactId": raw_artifact_id,
        "project.version": effective_version,
        "pom.groupId": raw_group_id,
        "pom.artifactId": raw_artifact_id,
        "pom.version": effective_version,
        "groupId": raw_group_id,
        "artifactId": raw_artifact_id,
        "version": effective_version,
    }
    if parent_version:
        builtins["project.parent.version"] = parent_version
    if parent_group_id:
        builtins["project.parent.groupId"] = parent_group_id
    merged_props = {**props, **builtins}

    group_id = _resolve_placeholders(raw_group_id, merged_props)
    version = _normalize_version(effective_version, merged_props)

    project_gav = GAV(group_id=group_id, artifact_id=raw_artifact_id, version=version)

    deps = _parse_dependencies(
        root,
        f"{_PROJECT}/*[local-name()='dependencies']/*[local-name()='dependency']",
        merged_props,
    )
    managed = _parse_dependencies(
        root,
        f"{_PROJECT}/*[local-name()='dependencyManagement']"
        "/*[local-name()='dependencies']/*[local-name()='dependency']",
        merged_props,
    )

    resources = [
        Resource(directory=_resolve_placeholders(d, merged_props))
        for d in (
            _text_first(r, "./*[local-name()='directory']")
            for r in root.xpath(
                f"{_PROJECT}/*[local-name()='build']/*[local-name()='resources']/*[local-name()='resource']"
            )
        )
        if d
    ]
    final_name = _resolve_optional(
        _text_first(root, f"{_PROJECT}/*[local-name()='build']/*[local-name()='finalName']"),
        merged_props,
    )

    return MavenProject(
        project=project_gav,
        packaging=_text_first(root, f"{_PROJECT}/*[local-name()='packaging']") or "jar",
        name=_resolve_optional(_text_first(root, f"{_PROJECT}/*[local-name()='name']"), merged_props),
        url=_resolve_optional(_text_first(root, f"{_PROJECT}/*[local-name()='url']"), merged_props),
        dependencies=deps,
        dependency_management=managed,
        properties=props,
        developers=_parse_developers(root),
        licenses=_parse_licenses(root),
        scm=Scm(
            connection=_text_first(root, f"{_PROJECT}/*[local-name()='scm']/*[local-name()='connection']"),
            tag=_text_first(root, f"{_PROJECT}/*[local-name()='scm']/*[local-name()='tag']"),
            url=_text_first(root, f"{_PROJECT}/*[local-name()='scm']/*[local-name()='url']"),
        ),
        resources=resources,
        final_name=final_name,
    )
