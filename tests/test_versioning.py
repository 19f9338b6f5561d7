from __future__ import annotations

from hpi_packager.versioning import VersionNumber, compare_versions


def test_numeric_parts_compare_as_numbers() -> None:
    assert VersionNumber("1.10") > VersionNumber("1.9")
    assert VersionNumber("2.0") > VersionNumber("1.999")


def test_trailing_zeros_are_insignificant() -> None:
    assert VersionNumber("1.0") == VersionNumber("1")
    assert VersionNumber("1.0.0") == VersionNumber("1")


def test_qualifier_ordering() -> None:
    ordered = ["1.0-alpha", "1.0-beta", "1.0-rc1", "1.0-SNAPSHOT", "1.0", "1.0-sp", "1.1"]
    shuffled = [ordered[i] for i in (4, 0, 6, 2, 5, 1, 3)]
    assert sorted(shuffled, key=VersionNumber) == ordered


def test_snapshot_sorts_before_release() -> None:
    assert VersionNumber("2.5-SNAPSHOT") < VersionNumber("2.5")
    assert VersionNumber("2.5-SNAPSHOT") > VersionNumber("2.4")


def test_compare_versions_is_deterministic_on_ties() -> None:
    assert compare_versions("1.2", "1.0") > 0
    assert compare_versions("1.0", "1.2") < 0
    assert compare_versions("1.0", "1.0") == 0
    # equal by ordering, broken by plain string comparison
    assert compare_versions("1.0", "1") > 0
    assert compare_versions("1", "1.0") < 0
