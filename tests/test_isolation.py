from __future__ import annotations

from pathlib import Path

import pytest

from hpi_packager.isolation import (
    POLICIES,
    ArchiveClassSource,
    ClassNotFound,
    IsolatingLoader,
    StaticClassSource,
    build_run_chain,
    class_resource_name,
    masking_policy,
)


@pytest.fixture
def host() -> StaticClassSource:
    return StaticClassSource(
        ["org.apache.maven.Maven", "org.kohsuke.stapler.Stapler", "java.util.List", "com.example.Util"],
        resources={
            "META-INF/services/org.apache.maven.Spi": ["host:spi"],
            "META-INF/services/com.example.Spi": ["host:example-spi"],
            "META-INF/maven/plugin.xml": ["host:plugin.xml"],
            "jndi.properties": ["host:jndi"],
            "logging.properties": ["host:logging"],
        },
    )


@pytest.fixture
def container() -> StaticClassSource:
    return StaticClassSource(
        ["javax.servlet.Servlet", "org.eclipse.jetty.server.Server", "org.slf4j.Logger"],
        resources={"jndi.properties": ["container:jndi"], "logging.properties": ["container:logging"]},
    )


def test_masking_hides_build_tool_classes(host: StaticClassSource) -> None:
    loader = IsolatingLoader(masking_policy(), host)

    with pytest.raises(ClassNotFound):
        loader.find_class("org.apache.maven.Maven")
    with pytest.raises(ClassNotFound):
        loader.find_class("org.kohsuke.stapler.Stapler")
    assert loader.find_class("java.util.List") == "static:java.util.List"


def test_masking_hides_resources_and_services(host: StaticClassSource) -> None:
    loader = IsolatingLoader(masking_policy(), host)

    assert loader.find_resource("META-INF/maven/plugin.xml") is None
    assert loader.find_resources("META-INF/services/org.apache.maven.Spi") == []
    assert loader.find_resources("META-INF/services/com.example.Spi") == ["host:example-spi"]


def test_servlet_policy_exports_only_the_servlet_api(host, container) -> None:
    loader = build_run_chain(host, container)

    assert loader.find_class("javax.servlet.Servlet") == "static:javax.servlet.Servlet"
    assert loader.find_class("com.example.Util") == "static:com.example.Util"
    with pytest.raises(ClassNotFound):
        loader.find_class("org.eclipse.jetty.server.Server")
    with pytest.raises(ClassNotFound):
        loader.find_class("org.slf4j.Logger")
    with pytest.raises(ClassNotFound):
        loader.find_class("org.apache.maven.Maven")


def test_container_policy_exposes_container_and_jndi(host, container) -> None:
    loader = build_run_chain(host, container, expose_container=True)

    assert loader.find_class("org.eclipse.jetty.server.Server") == "static:org.eclipse.jetty.server.Server"
    with pytest.raises(ClassNotFound):
        loader.find_class("org.slf4j.Logger")
    assert loader.find_resources("jndi.properties") == ["container:jndi"]
    assert loader.find_resources("logging.properties") == []


def test_parent_wins_over_secondary() -> None:
    parent = StaticClassSource({"javax.inject.Inject": "parent:inject"})
    secondary = StaticClassSource({"javax.inject.Inject": "secondary:inject"})
    loader = IsolatingLoader(POLICIES["servlet"](), parent, secondary)
    assert loader.find_class("javax.inject.Inject") == "parent:inject"


def test_policy_registry_names() -> None:
    assert sorted(POLICIES) == ["container", "masking", "servlet"]
    assert POLICIES["container"]().exported_resources == ("jndi.properties",)


def test_archive_source_searches_jars_then_directories(tmp_path: Path, make_jar) -> None:
    jar = make_jar(tmp_path / "lib.jar", None, {"com/example/Util.class": "x"})
    classes = tmp_path / "classes"
    (classes / "com" / "example").mkdir(parents=True)
    (classes / "com" / "example" / "Util.class").write_text("y")
    (classes / "com" / "example" / "Own.class").write_text("z")

    source = ArchiveClassSource([jar, classes, tmp_path / "missing.jar"])

    assert source.find_class("com.example.Util") == f"jar:{jar.as_uri()}!/com/example/Util.class"
    assert source.find_class("com.example.Own") == (classes / "com" / "example" / "Own.class").as_uri()
    assert len(source.find_resources(class_resource_name("com.example.Util"))) == 2
    with pytest.raises(ClassNotFound):
        source.find_class("com.example.Missing")
