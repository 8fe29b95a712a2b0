"""Hierarchical namespaces that scope every long-term memory."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Tuple

_GLOBAL_SEGMENT = "__global__"
_SEPARATOR = "/"
_PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def _validate_segment(segment: object) -> str:
    if not isinstance(segment, str) or not segment.strip():
        raise ValueError("Namespace segments must be non-blank strings.")
    if _SEPARATOR in segment:
        raise ValueError(f"Namespace segment {segment!r} must not contain '{_SEPARATOR}'.")
    return segment


@dataclass(frozen=True, slots=True)
class Namespace:
    """Immutable ordered path such as ``user/alice/project/x``.

    Two namespaces are equal iff their segment sequences are equal. Long-term
    stores treat namespaces as exact-match partitions; ``starts_with`` exists so
    callers can compose hierarchical recall on top.
    """

    segments: Tuple[str, ...]

    def __post_init__(self) -> None:
        segments = tuple(self.segments)
        if not segments:
            raise ValueError("Namespace requires at least one segment.")
        for segment in segments:
            _validate_segment(segment)
        object.__setattr__(self, "segments", segments)

    @classmethod
    def of(cls, *parts: str) -> "Namespace":
        if not parts:
            return cls.global_()
        return cls(tuple(parts))

    @classmethod
    def from_path(cls, path: str) -> "Namespace":
        if not isinstance(path, str) or not path.strip():
            raise ValueError("Namespace path must be a non-blank string.")
        return cls(tuple(path.split(_SEPARATOR)))

    @classmethod
    def for_user(cls, user_id: str) -> "Namespace":
        return cls(("user", user_id))

    @classmethod
    def for_session(cls, session_id: str) -> "Namespace":
        return cls(("session", session_id))

    @classmethod
    def global_(cls) -> "Namespace":
        return cls((_GLOBAL_SEGMENT,))

    def child(self, segment: str) -> "Namespace":
        return Namespace(self.segments + (_validate_segment(segment),))

    def parent(self) -> "Namespace":
        """Return the enclosing namespace; the root level maps to the global namespace."""
        if len(self.segments) <= 1:
            return Namespace.global_()
        return Namespace(self.segments[:-1])

    def starts_with(self, prefix: "Namespace") -> bool:
        size = len(prefix.segments)
        return size <= len(self.segments) and self.segments[:size] == prefix.segments

    def contains(self, other: "Namespace") -> bool:
        return other.starts_with(self)

    @property
    def depth(self) -> int:
        return len(self.segments)

    @property
    def first(self) -> str:
        return self.segments[0]

    @property
    def last(self) -> str:
        return self.segments[-1]

    @property
    def is_global(self) -> bool:
        return self.segments == (_GLOBAL_SEGMENT,)

    def to_path(self) -> str:
        return _SEPARATOR.join(self.segments)

    def __str__(self) -> str:
        return self.to_path()


class NamespaceTemplate:
    """Resolve namespaces from patterns like ``user/{user_id}/org/{org_id}``."""

    USER = "user/{user_id}"
    ORG_USER = "org/{org_id}/user/{user_id}"
    USER_SESSION = "user/{user_id}/session/{session_id}"

    def __init__(self, pattern: str) -> None:
        if not pattern or not pattern.strip():
            raise ValueError("Namespace template must be a non-blank string.")
        self._pattern = pattern

    @property
    def pattern(self) -> str:
        return self._pattern

    @property
    def variables(self) -> Tuple[str, ...]:
        return tuple(_PLACEHOLDER.findall(self._pattern))

    def resolve(self, values: Mapping[str, object] | None = None, **kwargs: object) -> Namespace:
        context = dict(values or {})
        context.update(kwargs)

        def _substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            value = context.get(name)
            if value is None or not str(value).strip():
                raise ValueError(f"Namespace template variable '{name}' is missing.")
            return str(value)

        return Namespace.from_path(_PLACEHOLDER.sub(_substitute, self._pattern))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"NamespaceTemplate({self._pattern!r})"


def common_ancestors(namespace: Namespace) -> Iterable[Namespace]:
    """Yield ``namespace`` and each of its ancestors, most specific first."""
    current = namespace
    yield current
    while current.depth > 1:
        current = Namespace(current.segments[:-1])
        yield current


__all__ = ["Namespace", "NamespaceTemplate", "common_ancestors"]
