"""Advisory complexity scoring for qualification rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from tagloom.model.conditions import nested_filters

if TYPE_CHECKING:
    from tagloom.model.conditions import QualificationRules

# A rule weighing this much scores 100.
FULL_SCALE_WEIGHT = 15
LOW_MAX = 33
MEDIUM_MAX = 66
DEEP_NESTING_THRESHOLD = 5

DEEP_NESTING_WARNING = "Very deep nesting may impact performance"
HIGH_COMPLEXITY_WARNING = "Consider breaking this into multiple tags"


@dataclass(frozen=True)
class ComplexityAnalysis:
    """Score 0-100, its band, and advisory warnings. Never blocks a save."""

    score: int
    level: str  # "low" | "medium" | "high"
    weight: int
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "score": self.score,
            "level": self.level,
            "weight": self.weight,
            "warnings": list(self.warnings),
        }


def complexity_level(score: int) -> str:
    if score <= LOW_MAX:
        return "low"
    if score <= MEDIUM_MAX:
        return "medium"
    return "high"


def analyze_complexity(rules: QualificationRules) -> ComplexityAnalysis:
    """Weigh *rules* as ``conditions + 2 * nested filters`` and normalize to 0-100."""
    nested_counts = [len(nested_filters(c)) for c in rules.conditions]
    weight = len(rules.conditions) + 2 * sum(nested_counts)
    score = min(100, weight * 100 // FULL_SCALE_WEIGHT)
    level = complexity_level(score)

    warnings: list[str] = []
    if any(n > DEEP_NESTING_THRESHOLD for n in nested_counts):
        warnings.append(DEEP_NESTING_WARNING)
    if level == "high":
        warnings.append(HIGH_COMPLEXITY_WARNING)
    return ComplexityAnalysis(score=score, level=level, weight=weight, warnings=tuple(warnings))
