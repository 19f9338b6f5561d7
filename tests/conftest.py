"""Pytest configuration and fixtures for hpi-packager tests."""
from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path
from typing import Callable, Iterable, Mapping

import pytest

from hpi_packager.manifest import MANIFEST_PATH, format_manifest


def write_jar(path: Path, manifest: Mapping[str, str] | None = None, entries: Mapping[str, str] | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        if manifest is not None:
            zf.writestr(MANIFEST_PATH, format_manifest(manifest))
        for name, content in (entries or {}).items():
            zf.writestr(name, content)
    return path


def _dependency_xml(spec: str | Mapping[str, object]) -> str:
    if isinstance(spec, str):
        group_id, artifact_id, version = spec.split(":")
        spec = {"groupId": group_id, "artifactId": artifact_id, "version": version}
    lines = ["    <dependency>"]
    for key in ("groupId", "artifactId", "version", "type", "classifier", "scope", "optional"):
        value = spec.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        lines.append(f"      <{key}>{value}</{key}>")
    exclusions = spec.get("exclusions") or []
    if exclusions:
        lines.append("      <exclusions>")
        for ex in exclusions:  # type: ignore[union-attr]
            g, a = str(ex).split(":")
            lines.append(f"        <exclusion><groupId>{g}</groupId><artifactId>{a}</artifactId></exclusion>")
        lines.append("      </exclusions>")
    lines.append("    </dependency>")
    return "\n".join(lines)


def pom_xml(
    gav: str,
    packaging: str = "jar",
    dependencies: Iterable[str | Mapping[str, object]] = (),
    extra: str = "",
    managed: Iterable[str | Mapping[str, object]] = (),
) -> str:
    group_id, artifact_id, version = gav.split(":")
    deps = "\n".join(_dependency_xml(d) for d in dependencies)
    management = ""
    managed = list(managed)
    if managed:
        management = (
            "  <dependencyManagement>\n  <dependencies>\n"
            + "\n".join(_dependency_xml(d) for d in managed)
            + "\n  </dependencies>\n  </dependencyManagement>\n"
        )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>{group_id}</groupId>
  <artifactId>{artifact_id}</artifactId>
  <version>{version}</version>
  <packaging>{packaging}</packaging>
{extra}
{management}  <dependencies>
{deps}
  </dependencies>
</project>
"""


class FakeRepository:
    """A Maven local repository laid out under a temporary directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def base(self, group_id: str, artifact_id: str, version: str) -> Path:
        return self.root / group_id.replace(".", "/") / artifact_id / version

    def add(
        self,
        gav: str,
        dependencies: Iterable[str | Mapping[str, object]] = (),
        packaging: str = "jar",
        manifest: Mapping[str, str] | None = None,
        extension: str | None = None,
        extra: str = "",
    ) -> Path:
        """Add a POM and its archive; returns the archive path."""
        group_id, artifact_id, version = gav.split(":")
        base = self.base(group_id, artifact_id, version)
        base.mkdir(parents=True, exist_ok=True)
        (base / f"{artifact_id}-{version}.pom").write_text(
            pom_xml(gav, packaging, dependencies, extra), encoding="utf-8"
        )
        if packaging == "pom":
            return base / f"{artifact_id}-{version}.pom"
        ext = extension or ("jar" if packaging in ("jar", "hpi", "jpi") else packaging)
        archive = write_jar(base / f"{artifact_id}-{version}.{ext}", manifest if manifest is not None else {})
        if packaging in ("hpi", "jpi"):
            write_jar(base / f"{artifact_id}-{version}.{packaging}", manifest or {})
        return archive

    def add_plugin(
        self,
        gav: str,
        dependencies: Iterable[str | Mapping[str, object]] = (),
        core_version: str = "2.361",
    ) -> Path:
        _, artifact_id, version = gav.split(":")
        manifest = {
            "Plugin-Version": version,
            "Short-Name": artifact_id,
            "Jenkins-Version": core_version,
        }
        return self.add(gav, dependencies, packaging="hpi", manifest=manifest)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep HPI_* settings of the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("HPI_"):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo the CLI's logging setup so caplog sees package records again."""
    yield
    logger = logging.getLogger("hpi_packager")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def make_jar() -> Callable[..., Path]:
    return write_jar


@pytest.fixture
def repo(tmp_path: Path) -> FakeRepository:
    return FakeRepository(tmp_path / "repository")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    (path / "target" / "classes").mkdir(parents=True)
    return path


@pytest.fixture
def write_pom(project_dir: Path) -> Callable[..., Path]:
    def _write(gav: str, dependencies: Iterable[str | Mapping[str, object]] = (), **kwargs: object) -> Path:
        path = project_dir / "pom.xml"
        path.write_text(pom_xml(gav, dependencies=dependencies, **kwargs), encoding="utf-8")  # type: ignore[arg-type]
        return path

    return _write
