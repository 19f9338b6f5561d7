"""Map of development builds: where on disk each component was last built.

Stored as a Java-properties style file of `absolutePath=componentId`
lines. Writes are read-modify-write without locking; concurrent builds can
lose each other's entries.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from hpi_packager.exceptions import PackagerError


logger = logging.getLogger(__name__)

HEADER_COMMENT = " List of development files for Jenkins plugins that have been built."

_ESCAPES = {"\\": "\\\\", "=": "\\=", ":": "\\:", "#": "\\#", "!": "\\!", "\t": "\\t", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def escape_key(text: str) -> str:
    out = "".join(_ESCAPES.get(ch, ch) for ch in text)
    return out.replace(" ", "\\ ")


def escape_value(text: str) -> str:
    out = "".join(_ESCAPES.get(ch, ch) for ch in text)
    # only a leading space is significant in a value
    return "\\ " + out[1:] if out.startswith(" ") else out


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt == "u" and i + 6 <= len(text):
                out.append(chr(int(text[i + 2 : i + 6], 16)))
                i += 6
                continue
            out.append(_UNESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _split_entry(line: str) -> tuple[str, str]:
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=: \t":
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip(" \t")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t")
    return _unescape(key), _unescape(rest)


def parse_properties(text: str) -> dict[str, str]:
    """Parse properties text; continuation lines ending in a backslash are joined."""
    entries: dict[str, str] = {}
    logical = ""
    for raw in text.splitlines():
        line = raw.lstrip() if not logical else raw.lstrip(" \t")
        if not logical and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            logical += line[:-1]
            continue
        logical += line
        key, value = _split_entry(logical)
        entries[key] = value
        logical = ""
    if logical:
        key, value = _split_entry(logical)
        entries[key] = value
    return entries


def format_properties(entries: dict[str, str], comment: str | None = None, now: datetime | None = None) -> str:
    lines: list[str] = []
    if comment is not None:
        lines.append(f"#{comment}")
    lines.append(f"#{(now or datetime.now()).strftime('%a %b %d %H:%M:%S %Y')}")
    lines.extend(f"{escape_key(k)}={escape_value(v)}" for k, v in entries.items())
    return "\n".join(lines) + "\n"


class PluginWorkspaceMap:
    """Key-value store of component id by development location.

    Args:
        map_file: The properties file, e.g. `~/.jenkins-hpl-map`.
    """

    def __init__(self, map_file: Path) -> None:
        self.map_file = map_file

    def load(self) -> dict[str, str]:
        if not self.map_file.is_file():
            return {}
        try:
            return parse_properties(self.map_file.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PackagerError(f"Failed to read workspace map {self.map_file}: {exc}") from exc

    def read(self, component_id: str, workspace: str | None = None) -> Path | None:
        """Location recorded for `component_id`.

        Only locations that still exist are returned. Without `workspace`
        the first existing match wins. With it, the first match under the
        workspace wins, falling back to the last existing match elsewhere.
        """
        matching: Path | None = None
        for location, recorded in self.load().items():
            if recorded != component_id:
                continue
            path = Path(location)
            if not path.exists():
                continue
            matching = path
            if workspace is None or location.startswith(workspace):
                break
        return matching

    def write(self, component_id: str, location: Path) -> None:
        entries = self.load()
        entries[str(location.absolute())] = component_id
        try:
            self.map_file.parent.mkdir(parents=True, exist_ok=True)
            self.map_file.write_text(format_properties(entries, HEADER_COMMENT), encoding="utf-8")
        except OSError as exc:
            raise PackagerError(f"Failed to write workspace map {self.map_file}: {exc}") from exc
        logger.debug("Recorded %s at %s in %s", component_id, location, self.map_file)
