"""Typer CLI entry point for HPI Packager."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from hpi_packager.config import PackagerConfig
from hpi_packager.exceptions import PackagerError
from hpi_packager.graph import is_acyclic
from hpi_packager.isolation import (
    ArchiveClassSource,
    ClassNotFound,
    IsolatingLoader,
    POLICIES,
    build_run_chain,
    masking_policy,
)
from hpi_packager.logging_setup import configure_logging
from hpi_packager.packaging import (
    PackagingSession,
    assemble_dependencies,
    bundle_plugins,
    custom_war,
    list_plugin_dependencies,
    package_component,
    record_core_location,
    validate_core_compatibility,
    write_development_descriptor,
    write_test_descriptor,
)
from hpi_packager.visualize import build_dependency_tree, build_placement_table

app = typer.Typer(add_completion=False, help="Package Jenkins-style plugins from a Maven project.")
console = Console()

PomArg = Annotated[Path, typer.Argument(help="Path to the project's pom.xml.")]
RepoOpt = Annotated[Optional[Path], typer.Option("--repo", help="Maven local repository (default: HPI_LOCAL_REPOSITORY).")]


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    return typer.Exit(code=1)


def _session(pom: Path, repo: Path | None, **overrides: object) -> PackagingSession:
    config = PackagerConfig.from_env().with_overrides(local_repository=repo, **overrides)
    config.validate()
    return PackagingSession(pom, config)


@app.callback()
def main_options(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
) -> None:
    configure_logging(verbose, console)


@app.command()
def package(
    pom: PomArg,
    repo: RepoOpt = None,
    version_override: Annotated[
        Optional[str], typer.Option("--version-override", help="Replacement for a -SNAPSHOT version.")
    ] = None,
) -> None:
    """Build target/<finalName>.hpi with its bundled libraries."""
    try:
        session = _session(pom, repo, version_override=version_override)
        result = package_component(session)
        console.print(build_placement_table(result.placements))
        console.print(f"[green]Wrote[/green] {result.archive}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command()
def hpl(
    pom: PomArg,
    home: Annotated[Path, typer.Option("--home", help="Host home directory ($JENKINS_HOME).")],
    repo: RepoOpt = None,
) -> None:
    """Write the .hpl descriptor for running the unpacked build."""
    try:
        path = write_development_descriptor(_session(pom, repo), home)
        if path is None:
            console.print("[dim]Not an hpi project, nothing written.[/dim]")
            return
        console.print(f"[green]Wrote[/green] {path}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("assemble-dependencies")
def assemble_dependencies_command(
    pom: PomArg,
    out: Annotated[Path, typer.Option("--out", help="Directory to copy plugin archives into.")],
    repo: RepoOpt = None,
    jpi: Annotated[bool, typer.Option("--jpi", help="Use the .jpi extension instead of .hpi.")] = False,
    include_optional: Annotated[
        bool, typer.Option("--include-optional", help="Follow optional plugin dependencies.")
    ] = False,
) -> None:
    """Copy every transitive plugin dependency (newest version wins) into a directory."""
    try:
        session = _session(pom, repo, include_optional=include_optional or None)
        copied = assemble_dependencies(session, out, use_jpi=jpi)
        for path in copied:
            console.print(str(path))
        console.print(f"[green]Copied[/green] {len(copied)} plugin(s) into [bold]{out}[/bold].")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("list-plugin-dependencies")
def list_plugin_dependencies_command(
    pom: PomArg,
    repo: RepoOpt = None,
    out: Annotated[Optional[Path], typer.Option("--out", help="Also write the list to this file.")] = None,
) -> None:
    """List direct plugin dependencies as groupId:artifactId:version."""
    try:
        for line in list_plugin_dependencies(_session(pom, repo), out):
            console.print(line)
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("bundle-plugins")
def bundle_plugins_command(
    pom: PomArg,
    repo: RepoOpt = None,
    ignore_optional_conflicts: Annotated[
        bool,
        typer.Option("--ignore-optional-conflicts", help="Warn instead of failing on optional dependency conflicts."),
    ] = False,
) -> None:
    """Copy the plugins a distribution bundles into WEB-INF/plugins."""
    try:
        result = bundle_plugins(_session(pom, repo), ignore_optional_conflicts=ignore_optional_conflicts)
        table = Table(title="Bundled plugins")
        table.add_column("Artifact ID")
        table.add_column("Version")
        table.add_column("Optional")
        table.add_column("Group ID")
        for a in result.plugins:
            table.add_row(a.artifact_id, a.version, "optional" if a.artifact_id in result.optional else "", a.group_id)
        console.print(table)
        console.print(f"[green]Wrote[/green] {result.listing}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("custom-war")
def custom_war_command(
    pom: PomArg,
    repo: RepoOpt = None,
    out: Annotated[
        Optional[Path], typer.Option("--out", help="War to write (default: target/<artifactId>.war).")
    ] = None,
    war_id: Annotated[
        Optional[str], typer.Option("--war-id", help="groupId:artifactId of the host war dependency.")
    ] = None,
    add_self: Annotated[bool, typer.Option("--add-self", help="Also add this plugin's own .hpi.")] = False,
) -> None:
    """Repackage the host war with the plugin dependencies added."""
    try:
        path = custom_war(_session(pom, repo), output=out, war_id=war_id, add_self=add_self)
        console.print(f"[green]Wrote[/green] {path}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("test-hpl")
def test_hpl_command(pom: PomArg, repo: RepoOpt = None) -> None:
    """Write target/test-classes/the.hpl for test harnesses."""
    try:
        path = write_test_descriptor(_session(pom, repo))
        if path is None:
            console.print("[dim]Not an hpi project, nothing written.[/dim]")
            return
        console.print(f"[green]Wrote[/green] {path}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command()
def validate(pom: PomArg, repo: RepoOpt = None) -> None:
    """Check that no plugin dependency needs a newer host core."""
    try:
        core = validate_core_compatibility(_session(pom, repo))
        console.print(f"[green]OK[/green] all plugin dependencies run on core {core}")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command()
def tree(pom: PomArg, repo: RepoOpt = None) -> None:
    """Print the resolved dependency tree with bundling decisions."""
    try:
        session = _session(pom, repo)
        result = session.libraries()
        console.print(build_dependency_tree(session.root, result.decisions))
        if not is_acyclic(session.root):
            console.print("[yellow]Warning:[/yellow] the dependency graph has a cycle.")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command()
def explain(pom: PomArg, repo: RepoOpt = None) -> None:
    """Show the bundling decision for every resolved artifact."""
    try:
        session = _session(pom, repo)
        decisions = session.assembler().decide(session.project_artifacts())
        table = Table(title=f"Bundling decisions for {session.project.project.compact()}")
        table.add_column("Artifact")
        table.add_column("Decision")
        for artifact_id, decision in sorted(decisions.items()):
            table.add_row(artifact_id, decision.value)
        console.print(table)
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command("record-core-location")
def record_core_location_command(pom: PomArg, repo: RepoOpt = None) -> None:
    """Remember where this snapshot build lives in the workspace map."""
    try:
        session = _session(pom, repo)
        if record_core_location(session):
            console.print(f"[green]Recorded[/green] {session.layout.basedir} in {session.config.workspace_map}")
        else:
            console.print("[dim]Not a snapshot, nothing recorded.[/dim]")
    except PackagerError as exc:
        raise _fail(exc) from None


@app.command()
def isolation(
    name: Annotated[str, typer.Argument(help="Class name to look up, e.g. javax.servlet.Servlet.")],
    policy: Annotated[str, typer.Option("--policy", help="masking, servlet or container.")] = "servlet",
    host: Annotated[Optional[list[Path]], typer.Option("--host", help="Jar or directory on the parent classpath.")] = None,
    container: Annotated[
        Optional[list[Path]], typer.Option("--container", help="Jar or directory of the servlet container.")
    ] = None,
) -> None:
    """Check whether a class is visible through an isolation policy.

    `masking` looks through the masked host alone; `servlet` and `container`
    look through the run chain of masked host plus container.
    """
    if policy not in POLICIES:
        raise _fail(ValueError(f"Unknown policy {policy!r}; expected one of {', '.join(POLICIES)}"))
    host_source = ArchiveClassSource(host or [])
    if policy == "masking":
        loader = IsolatingLoader(masking_policy(), host_source)
    else:
        container_source = ArchiveClassSource(container or [])
        loader = build_run_chain(host_source, container_source, expose_container=policy == "container")
    try:
        location = loader.find_class(name)
    except ClassNotFound:
        console.print(f"[yellow]{name}[/yellow] is not visible through {policy}")
        raise typer.Exit(code=2) from None
    except (OSError, zipfile.BadZipFile) as exc:
        raise _fail(exc) from None
    console.print(f"[green]{name}[/green] -> {location}")


def main() -> None:
    """Console-script entry point."""
    app()
