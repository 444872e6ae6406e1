"""Qualification rule conditions: four tagged variants composed under one combinator."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OPERATORS: tuple[str, ...] = (
    "equals",
    "not_equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "in",
    "not_in",
    "between",
    "is_known",
    "is_unknown",
)
VALID_OPERATORS: frozenset[str] = frozenset(OPERATORS)

COMPARISON_OPERATORS: frozenset[str] = frozenset(
    {
        "equals",
        "not_equals",
        "greater_than",
        "greater_than_or_equal",
        "less_than",
        "less_than_or_equal",
    }
)
SCORE_OPERATORS: frozenset[str] = COMPARISON_OPERATORS | {"between"}
LIST_OPERATORS: frozenset[str] = frozenset({"in", "not_in"})
VALUELESS_OPERATORS: frozenset[str] = frozenset({"is_known", "is_unknown"})

VALID_OCCURRENCES: frozenset[str] = frozenset({"has_occurred", "has_not_occurred", "count"})
VALID_ASSOCIATION_CONDITIONS: frozenset[str] = frozenset({"has_any", "has_none", "count"})
VALID_LOGIC: frozenset[str] = frozenset({"AND", "OR"})

RULE_TYPES: tuple[str, ...] = ("property", "activity", "association", "score")
VALID_RULE_TYPES: frozenset[str] = frozenset(RULE_TYPES)

# ---------------------------------------------------------------------------
# Condition variants
# ---------------------------------------------------------------------------


def _freeze(value: Any) -> Any:
    """Lists become tuples, recursively, so equal conditions compare and hash equal."""
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class PropertyCondition:
    """Compare a field of a data-model entity against a value."""

    kind: ClassVar[str] = "property"

    object_name: str
    field: str
    operator: str
    value: Any = None  # omitted for is_known / is_unknown
    id: str | None = None  # stable key for editors, not semantically meaningful

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _freeze(self.value))


@dataclass(frozen=True)
class ActivityCondition:
    """Test whether an event occurred (or how often) within a look-back window."""

    kind: ClassVar[str] = "activity"

    event_type: str
    occurrence: str  # "has_occurred" | "has_not_occurred" | "count"
    operator: str | None = None
    value: float | None = None  # required iff occurrence == "count"
    timeframe: float | None = None  # days
    filters: tuple[PropertyCondition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "filters", tuple(self.filters))


@dataclass(frozen=True)
class AssociationCondition:
    """Test the presence or number of related records."""

    kind: ClassVar[str] = "association"

    association_type: str
    related_object: str
    condition_type: str  # "has_any" | "has_none" | "count"
    operator: str | None = None
    value: float | None = None  # required iff condition_type == "count"
    nested_filters: tuple[PropertyCondition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "nested_filters", tuple(self.nested_filters))


@dataclass(frozen=True)
class Hysteresis:
    """Distinct entry/exit thresholds that keep a tag from flapping at a boundary."""

    add_threshold: float
    remove_threshold: float


@dataclass(frozen=True)
class ScoreCondition:
    """Compare a score field against a threshold or range."""

    kind: ClassVar[str] = "score"

    score_field: str
    operator: str
    threshold: float | None = None
    value: Any = None  # number, or (min, max) for "between"
    hysteresis: Hysteresis | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _freeze(self.value))


RuleCondition = PropertyCondition | ActivityCondition | AssociationCondition | ScoreCondition

CONDITION_TYPES: dict[str, type[RuleCondition]] = {
    "property": PropertyCondition,
    "activity": ActivityCondition,
    "association": AssociationCondition,
    "score": ScoreCondition,
}

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QualificationRules:
    """A flat list of conditions of one variant, joined by a single AND/OR."""

    rule_type: str
    logic: str = "AND"
    conditions: tuple[RuleCondition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def with_rule_type(self, rule_type: str, *, confirmed: bool = False) -> QualificationRules:
        """Return rules switched to *rule_type*.

        Switching discards every existing condition, so callers must pass
        ``confirmed=True`` once the user agreed to lose them.
        """
        if rule_type not in VALID_RULE_TYPES:
            msg = f"invalid rule type '{rule_type}', must be one of {sorted(VALID_RULE_TYPES)}"
            raise ValueError(msg)
        if rule_type == self.rule_type:
            return self
        if self.conditions and not confirmed:
            msg = (
                f"switching rule type from '{self.rule_type}' to '{rule_type}' "
                f"clears {len(self.conditions)} condition(s) and must be confirmed"
            )
            raise ValueError(msg)
        return replace(self, rule_type=rule_type, conditions=())

    def with_condition(self, condition: RuleCondition) -> QualificationRules:
        """Return rules with *condition* appended."""
        return replace(self, conditions=(*self.conditions, condition))

    def without_condition(self, index: int) -> QualificationRules:
        """Return rules with the condition at *index* removed."""
        conditions = list(self.conditions)
        del conditions[index]
        return replace(self, conditions=tuple(conditions))


def nested_filters(condition: RuleCondition) -> tuple[PropertyCondition, ...]:
    """Return the property filters nested inside an activity or association condition."""
    if isinstance(condition, ActivityCondition):
        return condition.filters
    if isinstance(condition, AssociationCondition):
        return condition.nested_filters
    return ()
