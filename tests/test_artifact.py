from __future__ import annotations

import logging
from pathlib import Path

import pytest

from hpi_packager.artifact import ArtifactCoordinate, ArtifactFacade
from hpi_packager.exceptions import ClassificationError
from hpi_packager.models import GAV


def _facade(file: Path | None = None, **kwargs) -> ArtifactFacade:
    packaging = kwargs.pop("packaging", None)
    fields = {"group_id": "org.example", "artifact_id": "lib", "version": "1.0", **kwargs}
    return ArtifactFacade(ArtifactCoordinate(**fields), file, packaging=packaging)


def test_coordinate_id_includes_type_and_classifier() -> None:
    assert ArtifactCoordinate(group_id="g", artifact_id="a", version="1").id == "g:a:jar:1"
    assert ArtifactCoordinate(group_id="g", artifact_id="a", version="1", classifier="tests").id == "g:a:jar:tests:1"


def test_hpi_and_jpi_types_are_plugins_without_a_file() -> None:
    assert _facade(type="hpi").is_plugin()
    assert _facade(type="jpi").is_plugin()


def test_non_jar_types_are_never_plugins(tmp_path: Path, make_jar) -> None:
    jar = make_jar(tmp_path / "a.war", {"Plugin-Class": "x.Y"})
    assert not _facade(jar, type="war").is_plugin()
    assert not _facade(jar, type="pom").is_plugin()


def test_missing_file_and_directory_are_not_plugins(tmp_path: Path) -> None:
    assert not _facade(None).is_plugin()
    assert not _facade(tmp_path / "missing.jar").is_plugin()
    assert not _facade(tmp_path).is_plugin()


def test_manifest_markers_make_a_plugin(tmp_path: Path, make_jar) -> None:
    assert _facade(make_jar(tmp_path / "a.jar", {"Plugin-Class": "x.Y"})).is_plugin()
    assert _facade(make_jar(tmp_path / "b.jar", {"Plugin-Version": "1.0"})).is_plugin()
    assert not _facade(make_jar(tmp_path / "c.jar", {"Implementation-Version": "1.0"})).is_plugin()
    assert _facade(make_jar(tmp_path / "d.jar", {}), packaging="hpi").is_plugin()


def test_classified_jar_is_not_a_plugin(tmp_path: Path, make_jar) -> None:
    jar = make_jar(tmp_path / "a.jar", {"Plugin-Class": "x.Y"})
    assert not _facade(jar, classifier="tests").is_plugin()


def test_unreadable_archive(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    broken = tmp_path / "broken.jar"
    broken.write_bytes(b"not a zip")
    facade = _facade(broken)

    with pytest.raises(ClassificationError):
        facade.is_plugin()

    with caplog.at_level(logging.WARNING, logger="hpi_packager.artifact"):
        assert facade.is_plugin_best_effort() is False
    assert "org.example:lib:jar:1.0" in caplog.text


def test_final_names() -> None:
    assert _facade().default_final_name() == "lib-1.0.jar"
    assert _facade(classifier="linux").default_final_name() == "lib-1.0-linux.jar"
    assert _facade(type="ejb-client").default_final_name() == "lib-1.0.jar"
    assert _facade(type="test-jar").default_final_name() == "lib-1.0.jar"
    assert _facade(type="par").default_final_name() == "lib-1.0.par"
    assert _facade().qualified_final_name() == "org.example-lib-1.0.jar"


def test_is_newer_than() -> None:
    assert _facade(version="1.2").is_newer_than(_facade(version="1.10")) is False
    assert _facade(version="1.10").is_newer_than(_facade(version="1.2"))
    assert not _facade(version="1.0").is_newer_than(_facade(version="1.0"))


def test_actual_id_and_version_from_manifest(tmp_path: Path, make_jar) -> None:
    jar = make_jar(
        tmp_path / "p.jar",
        {"Short-Name": "real-name", "Plugin-Version": "2.0 (private-abc-user)", "Jenkins-Version": "2.400"},
    )
    facade = _facade(jar, artifact_id="renamed", version="2.0")
    assert facade.actual_artifact_id() == "real-name"
    assert facade.actual_version() == "2.0"
    assert facade.core_version() == "2.400"

    plain = _facade(None)
    assert plain.actual_artifact_id() == "lib"
    assert plain.actual_version() == "1.0"
    assert plain.core_version() is None


def test_scope_and_ga_helpers() -> None:
    facade = _facade(scope="runtime")
    assert facade.has_scope("compile", "runtime")
    assert not facade.has_scope(None)
    assert facade.has_same_ga_as(GAV(group_id="org.example", artifact_id="lib", version="9"))
    assert facade.trail == ("org.example:lib:jar:1.0",)
