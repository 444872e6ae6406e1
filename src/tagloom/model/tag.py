"""Tag: a named segmentation label carrying its qualification rules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tagloom.model.conditions import QualificationRules

VALID_CATEGORIES: frozenset[str] = frozenset({"origin", "behavior", "opportunity"})
VALID_BEHAVIORS: frozenset[str] = frozenset({"set_once", "dynamic", "evolving"})

LIBRARY_SECTION = "library"
CUSTOM_SECTION = "custom"
SECTIONS: tuple[str, ...] = (LIBRARY_SECTION, CUSTOM_SECTION)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class Tag:
    """A segmentation label and the rules that decide which members receive it."""

    id: str
    name: str
    category: str  # "origin" | "behavior" | "opportunity"
    description: str
    icon: str
    color: str  # "#RRGGBB"
    behavior: str  # "set_once" | "dynamic" | "evolving"
    is_permanent: bool
    qualification_rules: QualificationRules
    dependencies: frozenset[str] = frozenset()
    is_custom: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def section(self) -> str:
        """Collection section this tag is stored under."""
        return CUSTOM_SECTION if self.is_custom else LIBRARY_SECTION

    def evolve(self, **changes: object) -> Tag:
        """Return a copy with *changes* applied (attribute names, not persisted keys)."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class TagCollection:
    """The working tag set of one project: pre-built library tags plus custom tags."""

    library: tuple[Tag, ...] = ()
    custom: tuple[Tag, ...] = ()

    def __iter__(self) -> Iterator[Tag]:
        yield from self.library
        yield from self.custom

    def __len__(self) -> int:
        return len(self.library) + len(self.custom)

    def all(self) -> list[Tag]:
        return [*self.library, *self.custom]

    def get(self, tag_id: str) -> Tag | None:
        for tag in self:
            if tag.id == tag_id:
                return tag
        return None

    def section(self, name: str) -> tuple[Tag, ...]:
        if name == LIBRARY_SECTION:
            return self.library
        if name == CUSTOM_SECTION:
            return self.custom
        msg = f"unknown section '{name}', must be one of {list(SECTIONS)}"
        raise ValueError(msg)

    def with_section(self, name: str, tags: tuple[Tag, ...]) -> TagCollection:
        if name == LIBRARY_SECTION:
            return replace(self, library=tags)
        if name == CUSTOM_SECTION:
            return replace(self, custom=tags)
        msg = f"unknown section '{name}', must be one of {list(SECTIONS)}"
        raise ValueError(msg)

    @classmethod
    def from_tags(cls, tags: list[Tag]) -> TagCollection:
        """Split *tags* into sections by their ``is_custom`` flag, keeping order."""
        return cls(
            library=tuple(t for t in tags if not t.is_custom),
            custom=tuple(t for t in tags if t.is_custom),
        )
