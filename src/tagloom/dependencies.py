"""Dependency report for one tag: what it requires and what would break without it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tagloom.model.tag import Tag


@dataclass(frozen=True)
class TagDependencies:
    """Both directions of the dependency graph around one tag."""

    tag_id: str
    requires: tuple[Tag, ...] = ()  # tags this one depends on
    required_by: tuple[Tag, ...] = ()  # tags that depend on this one
    missing: tuple[str, ...] = ()  # dependency ids with no matching tag

    @property
    def has_blockers(self) -> bool:
        """True when deleting the tag would leave other tags with a dangling dependency."""
        return bool(self.required_by)

    @property
    def dependent_count(self) -> int:
        return len(self.required_by)

    def to_dict(self) -> dict[str, object]:
        return {
            "tagId": self.tag_id,
            "requires": [t.id for t in self.requires],
            "requiredBy": [t.id for t in self.required_by],
            "missing": list(self.missing),
            "hasBlockers": self.has_blockers,
            "dependentCount": self.dependent_count,
        }


def find_dependents(tag_id: str, tags: Iterable[Tag]) -> list[Tag]:
    """Tags whose ``dependencies`` reference *tag_id*."""
    return [t for t in tags if t.id != tag_id and tag_id in t.dependencies]


def check_tag_dependencies(tag_id: str, tags: Iterable[Tag]) -> TagDependencies:
    """Build the dependency report for *tag_id* within *tags*."""
    all_tags = list(tags)
    by_id = {t.id: t for t in all_tags}
    tag = by_id.get(tag_id)
    wanted = sorted(tag.dependencies) if tag is not None else []
    return TagDependencies(
        tag_id=tag_id,
        requires=tuple(by_id[d] for d in wanted if d in by_id),
        required_by=tuple(find_dependents(tag_id, all_tags)),
        missing=tuple(d for d in wanted if d not in by_id),
    )
