from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from typing import Any

from orgscope.domain.errors import InvalidRequestError

# ``*`` and ``?`` only ever expand to characters from this class.
WILDCARD_CHAR_CLASS = r"[A-Za-z0-9_:/]"


class Effect(StrEnum):
    ALLOW = "Allow"
    DENY = "Deny"

    @classmethod
    def parse(cls, value: str) -> Effect:
        for item in cls:
            if item.value.lower() == value.strip().lower():
                return item
        raise InvalidRequestError(f"unknown statement effect: {value}")


@lru_cache(maxsize=1024)
def wildcard_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(f"{WILDCARD_CHAR_CLASS}*")
        elif char == "?":
            parts.append(WILDCARD_CHAR_CLASS)
        else:
            parts.append(re.escape(char))
    return re.compile(f"^{''.join(parts)}$")


def pattern_matches(pattern: str, value: str) -> bool:
    return value == pattern or wildcard_to_regex(pattern).fullmatch(value) is not None


@dataclass(frozen=True)
class Statement:
    effect: Effect
    actions: tuple[str, ...] = field(default_factory=tuple)
    resources: tuple[str, ...] = field(default_factory=tuple)

    def assert_(self, action: str, resource: str | None) -> Effect | None:
        """Return this statement's effect for the query, or None when it has no opinion."""
        if not any(pattern_matches(pattern, action) for pattern in self.actions):
            return None
        if resource is None:
            # An unscoped query is only answered by an unscoped statement.
            return self.effect if not self.resources else None
        if any(pattern_matches(pattern, resource) for pattern in self.resources):
            return self.effect
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Statement:
        effect = raw.get("effect")
        if not isinstance(effect, str) or not effect.strip():
            raise InvalidRequestError("statement effect must not be empty")
        actions = _string_list(raw.get("action"), "action")
        if not actions:
            raise InvalidRequestError("statement action must not be empty")
        resources = _string_list(raw.get("resource"), "resource")
        return cls(effect=Effect.parse(effect), actions=tuple(actions), resources=tuple(resources))

    def to_dict(self) -> dict[str, Any]:
        return {
            "effect": self.effect.value,
            "action": list(self.actions),
            "resource": list(self.resources),
        }


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise InvalidRequestError(f"statement {name} must be a list of strings")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise InvalidRequestError(f"statement {name} entries must be non-empty strings")
        items.append(item.strip())
    return items


def parse_statements(raw: Iterable[dict[str, Any]] | None) -> list[Statement]:
    return [Statement.from_dict(item) for item in raw or []]


def combine(effects: Iterable[Effect | None]) -> Effect:
    """Deny overrides allow; no opinion at all is a deny."""
    allowed = False
    for effect in effects:
        if effect is Effect.DENY:
            return Effect.DENY
        if effect is Effect.ALLOW:
            allowed = True
    return Effect.ALLOW if allowed else Effect.DENY


def role_verdict(
    statements: Iterable[Statement], mode: Effect, action: str, resource: str | None
) -> bool | None:
    """Whether one role's statements yield ``mode``; None when none of them has an opinion."""
    opinions = [effect for effect in (item.assert_(action, resource) for item in statements) if effect is not None]
    if not opinions:
        return None
    return mode in opinions


def all_roles_agree(verdicts: Iterable[bool | None]) -> bool:
    """True when at least one role voted and no voting role disagreed."""
    agreed = False
    for verdict in verdicts:
        if verdict is False:
            return False
        if verdict:
            agreed = True
    return agreed
