from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from orgscope.domain.errors import InvalidRequestError

# Must never occur inside an organization id.
PATH_SEP = "/"


@dataclass(frozen=True)
class ScopedEntity:
    id: str
    path: str


def build_path(parent_path: str | None, org_id: str) -> str:
    if not org_id or PATH_SEP in org_id:
        raise InvalidRequestError(f"organization id must be non-empty and must not contain {PATH_SEP!r}")
    if parent_path is None:
        return org_id
    return f"{parent_path}{PATH_SEP}{org_id}"


def path_level(path: str) -> int:
    return path.count(PATH_SEP)


def is_ancestor_or_self(ancestor_path: str, descendant_path: str) -> bool:
    """Prefix containment on whole path segments.

    ``a/b`` covers ``a/b`` and ``a/b/c`` but not ``a/bc``.
    """
    if not ancestor_path or not descendant_path:
        return False
    if descendant_path == ancestor_path:
        return True
    return descendant_path.startswith(f"{ancestor_path}{PATH_SEP}")


def covers(scopes: Iterable[ScopedEntity], target: ScopedEntity) -> bool:
    return any(is_ancestor_or_self(scope.path, target.path) for scope in scopes)


def collapse_nested(entities: Sequence[ScopedEntity]) -> list[ScopedEntity]:
    """Drop every entity already covered by another entity in the list."""
    result: list[ScopedEntity] = []
    for entity in sorted(entities, key=lambda item: (path_level(item.path), item.path)):
        if any(is_ancestor_or_self(kept.path, entity.path) for kept in result):
            continue
        result.append(entity)
    return result
