"""Maven-style version ordering.

Versions are split into numeric and qualifier items at `.`, `-` and at
digit/letter transitions. A `-` (or a digit/letter transition) opens a nested
list so that `1-1` sorts before `1.1`. Well-known qualifiers sort as

    alpha < beta < milestone < rc == cr < snapshot < "" == ga == final == release < sp

and unknown qualifiers sort after all of them, lexically. Trailing "null"
items (`0`, empty qualifiers) are dropped, so `1.0` == `1` == `1.0.0-ga`.
"""

from __future__ import annotations

from functools import total_ordering


_QUALIFIERS = ("alpha", "beta", "milestone", "rc", "snapshot", "", "sp")
_ALIASES = {"ga": "", "final": "", "release": "", "cr": "rc"}
_RELEASE_INDEX = str(_QUALIFIERS.index(""))


def _comparable_qualifier(qualifier: str) -> str:
    try:
        return str(_QUALIFIERS.index(qualifier))
    except ValueError:
        return f"{len(_QUALIFIERS)}-{qualifier}"


class _IntItem:
    def __init__(self, value: int) -> None:
        self.value = value

    def is_null(self) -> bool:
        return self.value == 0

    def compare_to(self, other: object) -> int:
        if other is None:
            return 0 if self.value == 0 else 1
        if isinstance(other, _IntItem):
            return (self.value > other.value) - (self.value < other.value)
        # 1.1 > 1-sp and 1.1 > 1-1
        return 1

    def __repr__(self) -> str:
        return str(self.value)


class _StringItem:
    def __init__(self, value: str, followed_by_digit: bool) -> None:
        if followed_by_digit and len(value) == 1:
            value = {"a": "alpha", "b": "beta", "m": "milestone"}.get(value, value)
        self.value = _ALIASES.get(value, value)

    def is_null(self) -> bool:
        return _comparable_qualifier(self.value) == _RELEASE_INDEX

    def compare_to(self, other: object) -> int:
        mine = _comparable_qualifier(self.value)
        if other is None:
            return (mine > _RELEASE_INDEX) - (mine < _RELEASE_INDEX)
        if isinstance(other, _IntItem):
            return -1
        if isinstance(other, _StringItem):
            theirs = _comparable_qualifier(other.value)
            return (mine > theirs) - (mine < theirs)
        # 1-1 > 1-sp
        return -1

    def __repr__(self) -> str:
        return self.value


class _ListItem(list):
    def is_null(self) -> bool:
        return len(self) == 0

    def normalize(self) -> None:
        for i in range(len(self) - 1, -1, -1):
            item = self[i]
            if item.is_null():
                del self[i]
            elif not isinstance(item, _ListItem):
                break

    def compare_to(self, other: object) -> int:
        if other is None:
            if not self:
                return 0
            return self[0].compare_to(None)
        if isinstance(other, _IntItem):
            return -1
        if isinstance(other, _StringItem):
            return 1
        assert isinstance(other, _ListItem)
        for i in range(max(len(self), len(other))):
            left = self[i] if i < len(self) else None
            right = other[i] if i < len(other) else None
            if left is None:
                result = 0 if right is None else -right.compare_to(None)
            else:
                result = left.compare_to(right)
            if result != 0:
                return result
        return 0


def _parse_item(is_digit: bool, buf: str, followed_by_digit: bool = False) -> object:
    if is_digit:
        return _IntItem(int(buf))
    return _StringItem(buf, followed_by_digit)


def _parse(version: str) -> _ListItem:
    version = version.lower()
    items = _ListItem()
    current = items
    stack = [current]
    is_digit = False
    start = 0

    for i, c in enumerate(version):
        if c == ".":
            current.append(_IntItem(0) if i == start else _parse_item(is_digit, version[start:i]))
            start = i + 1
        elif c == "-":
            current.append(_IntItem(0) if i == start else _parse_item(is_digit, version[start:i]))
            start = i + 1
            nested = _ListItem()
            current.append(nested)
            current = nested
            stack.append(current)
        elif c.isdigit():
            if not is_digit and i > start:
                current.append(_StringItem(version[start:i], True))
                start = i
                nested = _ListItem()
                current.append(nested)
                current = nested
                stack.append(current)
            is_digit = True
        else:
            if is_digit and i > start:
                current.append(_parse_item(True, version[start:i]))
                start = i
                nested = _ListItem()
                current.append(nested)
                current = nested
                stack.append(current)
            is_digit = False

    if len(version) > start:
        current.append(_parse_item(is_digit, version[start:]))

    while stack:
        stack.pop().normalize()
    return items


@total_ordering
class VersionNumber:
    """A version string with Maven ordering semantics."""

    def __init__(self, version: str) -> None:
        self.version = version
        self._items = _parse(version)

    def compare_to(self, other: "VersionNumber") -> int:
        return self._items.compare_to(other._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionNumber):
            return NotImplemented
        return self.compare_to(other) == 0

    def __lt__(self, other: "VersionNumber") -> bool:
        return self.compare_to(other) < 0

    def __hash__(self) -> int:
        return hash(repr(self._items))

    def __str__(self) -> str:
        return self.version

    def __repr__(self) -> str:
        return f"VersionNumber({self.version!r})"


def compare_versions(left: str, right: str) -> int:
    """Compare two version strings; ties are broken by plain string order."""
    result = VersionNumber(left).compare_to(VersionNumber(right))
    if result == 0:
        result = (left > right) - (left < right)
    return result
