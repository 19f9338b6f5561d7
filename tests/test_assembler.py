from __future__ import annotations

import os
from pathlib import Path

import pytest

from hpi_packager.artifact import ArtifactCoordinate, ArtifactFacade
from hpi_packager.assembler import (
    ClasspathAssembler,
    Destination,
    apply_overlay,
    copy_if_modified,
    unpack_cached,
)
from hpi_packager.exceptions import AssemblyIOError
from hpi_packager.traversal import BundleDecision, host_core_matcher


ROOT = "com.acme:demo:hpi:1.0"


def _artifact(
    gav: str,
    file: Path | None = None,
    trail: tuple[str, ...] = (),
    type_: str = "jar",
    scope: str | None = "compile",
    optional: bool = False,
    packaging: str | None = None,
) -> ArtifactFacade:
    group_id, artifact_id, version = gav.split(":")
    coordinate = ArtifactCoordinate(
        group_id=group_id, artifact_id=artifact_id, version=version, type=type_, scope=scope, optional=optional
    )
    return ArtifactFacade(coordinate, file, trail or (ROOT, coordinate.id), packaging)


def _touch(path: Path, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


def test_decide_checks_in_order(tmp_path: Path) -> None:
    plugin = _artifact("org.plugins:git:4.0", packaging="hpi")
    via_plugin = _artifact("org.lib:jgit:5.0", trail=(ROOT, plugin.id, "org.lib:jgit:jar:5.0"))
    core = "org.jenkins-ci.main:jenkins-core:jar:2.361"
    via_core = _artifact("org.lib:guava:31.0", trail=(ROOT, core, "org.lib:guava:jar:31.0"))
    tests_only = _artifact("org.lib:junit:4.13", scope="test")
    optional = _artifact("org.lib:extra:1.0", optional=True)
    unscoped = _artifact("org.lib:plain:1.0", scope=None)
    lib = _artifact("org.lib:commons:1.0")

    decisions = ClasspathAssembler(tmp_path).decide([plugin, via_plugin, via_core, tests_only, optional, unscoped, lib])

    assert decisions == {
        plugin.id: BundleDecision.EXCLUDE_AS_PLUGIN,
        via_plugin.id: BundleDecision.EXCLUDE_TRANSITIVE_THROUGH_PLUGIN,
        via_core.id: BundleDecision.EXCLUDE_COVERED_BY_HOST,
        tests_only.id: BundleDecision.EXCLUDE_SCOPE,
        optional.id: BundleDecision.EXCLUDE_OPTIONAL,
        unscoped.id: BundleDecision.BUNDLE_AS_LIBRARY,
        lib.id: BundleDecision.BUNDLE_AS_LIBRARY,
    }


def test_bundled_respects_configured_core(tmp_path: Path) -> None:
    via_fork = _artifact("org.lib:guava:31.0", trail=(ROOT, "com.fork:core:jar:1.0", "org.lib:guava:jar:31.0"))
    assert ClasspathAssembler(tmp_path).bundled([via_fork]) == [via_fork]
    assert ClasspathAssembler(tmp_path, host_core=host_core_matcher("com.fork:core")).bundled([via_fork]) == []


def test_plan_destinations_by_type(tmp_path: Path) -> None:
    artifacts = [
        _artifact("org.lib:tags:1.0", type_="tld"),
        _artifact("org.lib:beans:1.0", type_="ejb"),
        _artifact("org.lib:archive:1.0", type_="par"),
        _artifact("org.lib:skin:1.0", type_="war"),
        _artifact("org.lib:bom:1.0", type_="pom"),
        _artifact("org.lib:commons:1.0"),
    ]
    placements = {p.artifact.artifact_id: p for p in ClasspathAssembler(tmp_path).plan(artifacts)}

    assert set(placements) == {"tags", "beans", "archive", "skin", "commons"}
    assert placements["tags"].destination is Destination.TLD
    assert placements["beans"].destination is Destination.LIBRARY
    assert placements["archive"].file_name == "archive-1.0.jar"
    assert placements["skin"].destination is Destination.OVERLAY
    assert placements["commons"].target(tmp_path / "webapp") == tmp_path / "webapp" / "WEB-INF" / "lib" / "commons-1.0.jar"


def test_plan_renames_later_duplicates_only(tmp_path: Path) -> None:
    first = _artifact("org.a:util:1.0")
    second = _artifact("org.b:util:1.0")
    assembler = ClasspathAssembler(tmp_path)

    placements = assembler.plan([second, first])
    assert [(p.file_name, p.renamed_to) for p in placements] == [
        ("util-1.0.jar", None),
        ("org.b-util-1.0.jar", "org.b-util-1.0.jar"),
    ]
    assert assembler.plan([first, second]) == placements


def test_copy_if_modified(tmp_path: Path) -> None:
    source = tmp_path / "a.jar"
    source.write_text("v1")
    target = tmp_path / "out" / "a.jar"

    assert copy_if_modified(source, target)
    assert target.read_text() == "v1"
    assert not copy_if_modified(source, target)

    source.write_text("v2")
    _touch(source, target.stat().st_mtime + 10)
    assert copy_if_modified(source, target)
    assert target.read_text() == "v2"


def test_copy_missing_source_raises(tmp_path: Path) -> None:
    with pytest.raises(AssemblyIOError) as exc_info:
        copy_if_modified(tmp_path / "missing.jar", tmp_path / "out.jar")
    assert exc_info.value.source == tmp_path / "missing.jar"


def test_overlay_cache_is_reused_until_archive_changes(tmp_path: Path, make_jar) -> None:
    war = make_jar(tmp_path / "skin.war", {"Created-By": "test"}, {"css/style.css": "a{}"})
    cache = tmp_path / "cache"

    assert unpack_cached(war, cache)
    assert (cache / "css" / "style.css").read_text() == "a{}"
    assert not unpack_cached(war, cache)

    _touch(war, cache.stat().st_mtime + 10)
    assert unpack_cached(war, cache)


def test_overlay_never_overwrites_and_skips_manifest(tmp_path: Path) -> None:
    source = tmp_path / "overlay"
    (source / "META-INF").mkdir(parents=True)
    (source / "META-INF" / "MANIFEST.MF").write_text("Manifest-Version: 1.0\n")
    (source / "index.html").write_text("overlay")
    (source / "img").mkdir()
    (source / "img" / "logo.png").write_text("png")

    webapp = tmp_path / "webapp"
    webapp.mkdir()
    (webapp / "index.html").write_text("own")

    copied = apply_overlay(source, webapp)

    assert copied == [webapp / "img" / "logo.png"]
    assert (webapp / "index.html").read_text() == "own"
    assert not (webapp / "META-INF" / "MANIFEST.MF").exists()


def test_assemble_copies_and_overlays(tmp_path: Path, make_jar) -> None:
    lib = _artifact("org.lib:commons:1.0", file=make_jar(tmp_path / "repo" / "commons-1.0.jar", {}))
    war = _artifact(
        "org.lib:skin:1.0",
        file=make_jar(tmp_path / "repo" / "skin-1.0.war", None, {"help.html": "help"}),
        type_="war",
    )
    assembler = ClasspathAssembler(tmp_path / "work")
    webapp = tmp_path / "webapp"

    placements = assembler.plan([lib, war])
    report = assembler.assemble(placements, webapp)

    assert report.copied == [webapp / "WEB-INF" / "lib" / "commons-1.0.jar"]
    assert report.extracted == [tmp_path / "work" / "overlays" / "skin-1.0"]
    assert (webapp / "help.html").read_text() == "help"

    again = assembler.assemble(placements, webapp)
    assert again.copied == []
    assert again.up_to_date == [webapp / "WEB-INF" / "lib" / "commons-1.0.jar"]
    assert again.extracted == []


def test_assemble_without_file_fails(tmp_path: Path) -> None:
    assembler = ClasspathAssembler(tmp_path)
    placements = assembler.plan([_artifact("org.lib:ghost:1.0")])
    with pytest.raises(AssemblyIOError):
        assembler.assemble(placements, tmp_path / "webapp")
