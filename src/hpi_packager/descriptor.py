"""The `.hpl` descriptor: a manifest pointing the host at an unpacked development build."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping

from hpi_packager.exceptions import AssemblyIOError
from hpi_packager.manifest import merge_attributes, write_manifest_file
from hpi_packager.models import MavenProject


logger = logging.getLogger(__name__)


def hpl_path(home: Path, project: MavenProject) -> Path:
    """`<home>/plugins/<finalName>.hpl`."""
    return home / "plugins" / f"{project.build_final_name}.hpl"


def library_entries(
    project: MavenProject,
    basedir: Path,
    classes_dir: Path,
    libraries: Iterable[Path],
) -> list[str]:
    """Classpath of the development build.

    Resource directories come before the classes directory so the originals
    win over their copies; the bundled libraries follow.
    """
    paths: list[str] = []
    for resource in project.resources:
        directory = Path(resource.directory)
        if not directory.is_absolute():
            directory = basedir / directory
        if directory.exists():
            paths.append(str(directory))
    paths.append(str(classes_dir))
    paths.extend(str(lib) for lib in libraries)
    return paths


def write_hpl(
    destination: Path,
    header: Mapping[str, str],
    libraries: Iterable[str],
    resource_path: Path,
) -> Path:
    attributes = merge_attributes(
        header,
        [("Libraries", ",".join(libraries)), ("Resource-Path", str(resource_path.absolute()))],
    )
    logger.info("Generating %s", destination)
    try:
        return write_manifest_file(destination, attributes)
    except OSError as exc:
        raise AssemblyIOError("Failed to write descriptor", destination=destination) from exc
