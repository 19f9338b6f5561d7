from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import pytest

from hpi_packager.artifact import ArtifactCoordinate, ArtifactFacade
from hpi_packager.config import PackagerConfig
from hpi_packager.exceptions import ConfigurationError, PackagerError, VersionPolicyViolation
from hpi_packager.models import GAV, Dependency, Developer, License, MavenProject, Scm
from hpi_packager.versions_policy import (
    DynamicLoadable,
    build_manifest_header,
    developers_attribute,
    find_core_version,
    git_head_hash,
    merge_dynamic_loading,
    plugin_dependencies,
    plugin_version_string,
    read_extension_index,
    read_plugin_class,
    resolve_plugin_version,
    synthesize_qualifier,
)


NOW = datetime(2024, 3, 5, 14, 7)
CORE = "org.jenkins-ci.main:jenkins-core"


def _project(*deps: str, version: str = "1.0", **kwargs) -> MavenProject:
    dependencies = []
    for spec in deps:
        group_id, artifact_id, dep_version = spec.split(":")
        dependencies.append(
            Dependency(gav=GAV(group_id=group_id, artifact_id=artifact_id, version=dep_version), scope="provided")
        )
    return MavenProject(
        project=GAV(group_id="com.acme", artifact_id="demo", version=version),
        packaging=kwargs.pop("packaging", "hpi"),
        dependencies=dependencies,
        **kwargs,
    )


def test_matching_snapshot_override_is_applied(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="hpi_packager.versions_policy"):
        assert resolve_plugin_version("2.5-SNAPSHOT", "2.5-rc1.abcdef-SNAPSHOT") == "2.5-rc1.abcdef-SNAPSHOT"
    assert "Snapshot version override enabled" in caplog.text


def test_override_to_another_release_is_rejected() -> None:
    with pytest.raises(VersionPolicyViolation):
        resolve_plugin_version("2.5-SNAPSHOT", "2.6-SNAPSHOT")


def test_override_to_another_release_warns_when_allowed(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="hpi_packager.versions_policy"):
        assert resolve_plugin_version("2.5-SNAPSHOT", "2.6-SNAPSHOT", fail_on_different_release=False) == "2.6-SNAPSHOT"
    assert "does not start with" in caplog.text


def test_release_versions_are_never_overridden() -> None:
    assert resolve_plugin_version("2.5", "3.0") == "2.5"
    assert resolve_plugin_version("2.5-SNAPSHOT") == "2.5-SNAPSHOT"


def test_qualifier_uses_hash_or_timestamp() -> None:
    assert synthesize_qualifier("0123456789abcdef", NOW, "alice") == "private-01234567-alice"
    assert synthesize_qualifier(None, NOW, "alice") == "private-03/05/2024 14:07-alice"


def test_plugin_version_string() -> None:
    assert plugin_version_string("1.0") == "1.0"
    assert plugin_version_string("1.0", "custom") == "1.0 (custom)"
    assert plugin_version_string("1.0-SNAPSHOT", None, "0123456789", NOW, "bob") == "1.0-SNAPSHOT (private-01234567-bob)"
    assert plugin_version_string("1.0-SNAPSHOT", "mine") == "1.0-SNAPSHOT (mine)"


def test_git_hash_requires_git_scm(tmp_path: Path) -> None:
    project = _project(scm=Scm(connection="scm:svn:http://example.org/svn"))
    assert git_head_hash(project, tmp_path) is None


@pytest.mark.parametrize(
    ("deps", "override", "expected"),
    [
        ((f"{CORE}:2.361",), None, "2.361"),
        ((f"{CORE}:2.361",), "2.400", "2.400"),
        ((f"{CORE}:2.400",), "2.361", "2.400"),
        ((), "2.300", "2.300"),
        (("org.jvnet.hudson.main:hudson-core:1.395",), "  ", "1.395"),
    ],
)
def test_find_core_version(deps: tuple[str, ...], override: str | None, expected: str) -> None:
    assert find_core_version(_project(*deps), override=override) == expected


def test_find_core_version_with_configured_core() -> None:
    project = _project("com.fork:fork-core:5.0", f"{CORE}:2.361")
    assert find_core_version(project, core_id="com.fork:fork-core") == "5.0"


def test_find_core_version_without_core_fails() -> None:
    with pytest.raises(ConfigurationError):
        find_core_version(_project("org.lib:a:1.0"))


def _direct(gav: str, scope: str = "compile", optional: bool = False, **kwargs) -> ArtifactFacade:
    group_id, artifact_id, version = gav.split(":")
    coordinate = ArtifactCoordinate(
        group_id=group_id, artifact_id=artifact_id, version=version, scope=scope, optional=optional
    )
    return ArtifactFacade(coordinate, **kwargs)


def test_plugin_dependencies_use_manifest_names(tmp_path: Path, make_jar) -> None:
    jar = make_jar(tmp_path / "git.jar", {"Short-Name": "git", "Plugin-Version": "4.0 (private-x-y)"})
    direct = [
        _direct("org.plugins:git-plugin:4.0", file=jar),
        _direct("org.plugins:ssh:1.2", optional=True, packaging="hpi"),
        _direct("org.plugins:junit:1.0", scope="test", packaging="hpi"),
        _direct("org.lib:commons:1.0"),
    ]
    deps = plugin_dependencies(direct, GAV(group_id="com.acme", artifact_id="demo", version="1.0"))
    assert [d.render() for d in deps] == ["git:4.0", "ssh:1.2;resolution:=optional"]


def test_provided_plugin_dependency_is_an_error() -> None:
    direct = [_direct("org.plugins:ssh:1.2", scope="provided", packaging="hpi")]
    with pytest.raises(ConfigurationError, match="provided"):
        plugin_dependencies(direct, GAV(group_id="com.acme", artifact_id="demo", version="1.0"))


@pytest.mark.parametrize(
    ("values", "expected"),
    [
        ([], True),
        ([DynamicLoadable.YES], True),
        ([DynamicLoadable.YES, DynamicLoadable.MAYBE], None),
        ([DynamicLoadable.MAYBE, DynamicLoadable.NO], False),
    ],
)
def test_merge_dynamic_loading(values: list[DynamicLoadable], expected: bool | None) -> None:
    assert merge_dynamic_loading(values) is expected


def _write_index(classes: Path, content: str) -> None:
    path = classes / "META-INF" / "annotations" / "hudson.Extension.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_read_extension_index(tmp_path: Path) -> None:
    assert read_extension_index(tmp_path) == []
    _write_index(
        tmp_path,
        json.dumps([{"className": "a.B"}, {"className": "a.C", "dynamicLoadable": "NO"}]),
    )
    entries = read_extension_index(tmp_path)
    assert [(e.class_name, e.dynamic_loadable) for e in entries] == [
        ("a.B", DynamicLoadable.YES),
        ("a.C", DynamicLoadable.NO),
    ]


def test_malformed_extension_index(tmp_path: Path) -> None:
    _write_index(tmp_path, "{not json")
    with pytest.raises(PackagerError):
        read_extension_index(tmp_path)


def test_developers_attribute() -> None:
    developers = [Developer(name="Alice", id="alice", email="a@example.org"), Developer(id="bob")]
    assert developers_attribute(developers) == "Alice:alice:a@example.org,:bob:"


def test_build_manifest_header(tmp_path: Path) -> None:
    classes = tmp_path / "classes"
    services = classes / "META-INF" / "services"
    services.mkdir(parents=True)
    (services / "hudson.Plugin").write_text("com.acme.DemoPlugin\n", encoding="utf-8")
    _write_index(classes, json.dumps([{"className": "a.B", "dynamicLoadable": "MAYBE"}]))

    project = _project(
        f"{CORE}:2.361",
        version="1.0-SNAPSHOT",
        name="Demo Plugin",
        licenses=[License(name="MIT", url="https://opensource.org/licenses/MIT")],
        properties={"hpi.pluginChangelogUrl": "https://example.org/changelog"},
        developers=[Developer(id="alice")],
    )
    config = PackagerConfig(version_description="dev", compatible_since="0.9", sandbox_status="safe")

    header = build_manifest_header(project, config, [], classes, tmp_path, now=NOW, user="alice")
    attrs = header.to_attributes()

    assert attrs["Plugin-Class"] == "com.acme.DemoPlugin"
    assert attrs["Short-Name"] == "demo"
    assert attrs["Long-Name"] == "Demo Plugin"
    assert attrs["Plugin-Version"] == "1.0-SNAPSHOT (dev)"
    assert attrs["Jenkins-Version"] == "2.361"
    assert attrs["Compatible-Since-Version"] == "0.9"
    assert attrs["Sandbox-Status"] == "safe"
    assert attrs["Plugin-Developers"] == ":alice:"
    assert "Support-Dynamic-Loading" not in attrs
    assert header.changelog_url == "https://example.org/changelog"
    assert header.git_hash is None


def test_jenkins_module_has_no_plugin_version(tmp_path: Path) -> None:
    project = _project(f"{CORE}:2.361", packaging="jenkins-module")
    header = build_manifest_header(project, PackagerConfig(), [], tmp_path, tmp_path, now=NOW, user="u")
    assert header.plugin_version is None
    assert read_plugin_class(tmp_path) is None
