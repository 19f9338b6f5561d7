"""Collection filter operations on a set of artifacts."""

from __future__ import annotations

from typing import Callable, Iterable

from hpi_packager.artifact import ArtifactFacade


Predicate = Callable[[ArtifactFacade], bool]


def scope_in(*scopes: str | None) -> Predicate:
    return lambda a: a.scope in scopes


def type_in(*types: str) -> Predicate:
    return lambda a: a.type in types


def group_id_in(*group_ids: str) -> Predicate:
    return lambda a: a.group_id in group_ids


def artifact_id_in(*artifact_ids: str) -> Predicate:
    return lambda a: a.artifact_id in artifact_ids


def is_optional(a: ArtifactFacade) -> bool:
    return a.optional


def all_of(*predicates: Predicate) -> Predicate:
    return lambda a: all(p(a) for p in predicates)


def any_of(*predicates: Predicate) -> Predicate:
    return lambda a: any(p(a) for p in predicates)


def negate(predicate: Predicate) -> Predicate:
    return lambda a: not predicate(a)


class ArtifactSet(list):
    """A list of `ArtifactFacade` with in-place, chainable filters.

    Example:
        >>> ArtifactSet(artifacts).scope_is("compile", "runtime").type_is_not("pom")
    """

    def __init__(self, artifacts: Iterable[ArtifactFacade] = ()) -> None:
        super().__init__(artifacts)

    def retain_all(self, predicate: Predicate) -> "ArtifactSet":
        self[:] = [a for a in self if predicate(a)]
        return self

    def remove_all(self, predicate: Predicate) -> "ArtifactSet":
        self[:] = [a for a in self if not predicate(a)]
        return self

    def scope_is(self, *scopes: str | None) -> "ArtifactSet":
        return self.retain_all(scope_in(*scopes))

    def scope_is_not(self, *scopes: str | None) -> "ArtifactSet":
        return self.remove_all(scope_in(*scopes))

    def type_is(self, *types: str) -> "ArtifactSet":
        return self.retain_all(type_in(*types))

    def type_is_not(self, *types: str) -> "ArtifactSet":
        return self.remove_all(type_in(*types))

    def group_id_is(self, *group_ids: str) -> "ArtifactSet":
        return self.retain_all(group_id_in(*group_ids))

    def group_id_is_not(self, *group_ids: str) -> "ArtifactSet":
        return self.remove_all(group_id_in(*group_ids))

    def artifact_id_is(self, *artifact_ids: str) -> "ArtifactSet":
        return self.retain_all(artifact_id_in(*artifact_ids))

    def artifact_id_is_not(self, *artifact_ids: str) -> "ArtifactSet":
        return self.remove_all(artifact_id_in(*artifact_ids))

    def optional_is(self, optional: bool) -> "ArtifactSet":
        return self.retain_all(lambda a: a.optional == optional)

    def plugins(self, best_effort: bool = False) -> "ArtifactSet":
        if best_effort:
            return self.retain_all(lambda a: a.is_plugin_best_effort())
        return self.retain_all(lambda a: a.is_plugin())

    def libraries(self) -> "ArtifactSet":
        return self.remove_all(lambda a: a.is_plugin())

    def ids(self) -> list[str]:
        return [a.id for a in self]

    def sorted_by_id(self) -> "ArtifactSet":
        return ArtifactSet(sorted(self, key=lambda a: a.id))
