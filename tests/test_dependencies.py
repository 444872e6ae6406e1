"""Tests for tagloom.dependencies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tagloom.dependencies import check_tag_dependencies, find_dependents

if TYPE_CHECKING:
    from collections.abc import Callable

    from tagloom.model.tag import Tag


def _graph(make_tag: Callable[..., Tag]) -> list[Tag]:
    return [
        make_tag("A", "Tag A"),
        make_tag("B", "Tag B", dependencies=("A",)),
        make_tag("C", "Tag C", dependencies=("A", "ghost")),
    ]


class TestCheckTagDependencies:
    def test_required_by(self, make_tag: Callable[..., Tag]) -> None:
        report = check_tag_dependencies("A", _graph(make_tag))
        assert [t.id for t in report.required_by] == ["B", "C"]
        assert report.has_blockers is True
        assert report.dependent_count == 2
        assert report.requires == ()

    def test_requires_and_missing(self, make_tag: Callable[..., Tag]) -> None:
        report = check_tag_dependencies("C", _graph(make_tag))
        assert [t.id for t in report.requires] == ["A"]
        assert report.missing == ("ghost",)
        assert report.has_blockers is False

    def test_unknown_tag(self, make_tag: Callable[..., Tag]) -> None:
        report = check_tag_dependencies("nope", _graph(make_tag))
        assert report.requires == ()
        assert report.required_by == ()

    def test_to_dict(self, make_tag: Callable[..., Tag]) -> None:
        assert check_tag_dependencies("B", _graph(make_tag)).to_dict() == {
            "tagId": "B",
            "requires": ["A"],
            "requiredBy": [],
            "missing": [],
            "hasBlockers": False,
            "dependentCount": 0,
        }


def test_self_reference_is_not_a_dependent(make_tag: Callable[..., Tag]) -> None:
    tags = [make_tag("A", "Tag A", dependencies=("A",))]
    assert find_dependents("A", tags) == []
