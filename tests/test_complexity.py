"""Tests for tagloom.validation.complexity."""

from __future__ import annotations

import pytest

from tagloom.model.conditions import (
    ActivityCondition,
    PropertyCondition,
    QualificationRules,
)
from tagloom.validation.complexity import (
    DEEP_NESTING_WARNING,
    HIGH_COMPLEXITY_WARNING,
    analyze_complexity,
    complexity_level,
)

AGE = PropertyCondition(object_name="contact", field="age", operator="greater_than", value=30)


def _activity(filters: int) -> ActivityCondition:
    return ActivityCondition(
        event_type="page_view", occurrence="has_occurred", filters=(AGE,) * filters
    )


class TestComplexityLevel:
    @pytest.mark.parametrize(
        ("score", "level"), [(0, "low"), (33, "low"), (34, "medium"), (66, "medium"), (67, "high")]
    )
    def test_bands(self, score: int, level: str) -> None:
        assert complexity_level(score) == level


class TestAnalyzeComplexity:
    def test_single_condition_is_low(self) -> None:
        analysis = analyze_complexity(QualificationRules(rule_type="property", conditions=(AGE,)))
        assert analysis.weight == 1
        assert analysis.score == 6
        assert analysis.level == "low"
        assert analysis.warnings == ()

    def test_nested_filters_weigh_double(self) -> None:
        rules = QualificationRules(rule_type="activity", conditions=(_activity(2),))
        analysis = analyze_complexity(rules)
        assert analysis.weight == 5
        assert analysis.score == 33

    def test_deep_nesting_warning(self) -> None:
        rules = QualificationRules(rule_type="activity", conditions=(_activity(6),))
        analysis = analyze_complexity(rules)
        assert analysis.weight == 13
        assert analysis.level == "high"
        assert analysis.warnings == (DEEP_NESTING_WARNING, HIGH_COMPLEXITY_WARNING)

    def test_score_is_capped(self) -> None:
        rules = QualificationRules(rule_type="property", conditions=(AGE,) * 20)
        analysis = analyze_complexity(rules)
        assert analysis.score == 100
        assert analysis.to_dict()["warnings"] == [HIGH_COMPLEXITY_WARNING]
