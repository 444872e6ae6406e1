"""Human-readable summaries of conditions and rules."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tagloom.catalog.events import EventCatalog
from tagloom.model.conditions import (
    ActivityCondition,
    AssociationCondition,
    PropertyCondition,
    ScoreCondition,
)

if TYPE_CHECKING:
    from tagloom.catalog.data_model import DataModel
    from tagloom.model.conditions import QualificationRules, RuleCondition

OPERATOR_LABELS: dict[str, str] = {
    "equals": "equals",
    "not_equals": "does not equal",
    "greater_than": "is greater than",
    "greater_than_or_equal": "is greater than or equal to",
    "less_than": "is less than",
    "less_than_or_equal": "is less than or equal to",
    "contains": "contains",
    "not_contains": "does not contain",
    "starts_with": "starts with",
    "ends_with": "ends with",
    "in": "is in list",
    "not_in": "is not in list",
    "between": "is between",
    "is_known": "is known (has value)",
    "is_unknown": "is unknown (no value)",
}

# Quantifiers for count-style activity and association conditions.
COUNT_LABELS: dict[str, str] = {
    "equals": "exactly",
    "not_equals": "other than",
    "greater_than": "more than",
    "greater_than_or_equal": "at least",
    "less_than": "fewer than",
    "less_than_or_equal": "at most",
}

_DEFAULT_CATALOG = EventCatalog()


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (tuple, list)):
        return ", ".join(format_value(v) for v in value)
    return str(value)


def _operator_clause(operator: str | None, value: Any) -> str:
    label = OPERATOR_LABELS.get(operator or "", operator or "")
    if operator in ("is_known", "is_unknown") or value is None:
        return label
    if operator == "between" and isinstance(value, (tuple, list)) and len(value) == 2:
        return f"{label} {format_value(value[0])} and {format_value(value[1])}"
    return f"{label} {format_value(value)}"


def _count_clause(operator: str | None, value: Any) -> str:
    quantifier = COUNT_LABELS.get(operator or "", operator or "")
    return f"{quantifier} {format_value(value)}".strip()


def _filters_clause(
    filters: tuple[PropertyCondition, ...], data_model: DataModel | None
) -> str:
    if not filters:
        return ""
    return " where " + " and ".join(summarize_condition(f, data_model=data_model) for f in filters)


def summarize_condition(
    condition: RuleCondition,
    catalog: EventCatalog | None = None,
    data_model: DataModel | None = None,
) -> str:
    """One-line description of *condition*.

    Event types are shown by their catalog display name and, when a
    *data_model* is given, entities by their label.
    """
    if isinstance(condition, PropertyCondition):
        entity = condition.object_name
        if data_model is not None:
            entity = data_model.entity_label(entity)
        subject = f"{entity}.{condition.field}"
        return f"{subject} {_operator_clause(condition.operator, condition.value)}"

    if isinstance(condition, ActivityCondition):
        events = catalog if catalog is not None else _DEFAULT_CATALOG
        text = events.display_name(condition.event_type)
        if condition.occurrence == "has_not_occurred":
            text += " has not occurred"
        elif condition.occurrence == "count":
            text += f" has occurred {_count_clause(condition.operator, condition.value)} times"
        else:
            text += " has occurred"
        if condition.timeframe is not None:
            days = format_value(condition.timeframe)
            text += f" in the last {days} day" + ("" if days == "1" else "s")
        return text + _filters_clause(condition.filters, data_model)

    if isinstance(condition, AssociationCondition):
        if condition.condition_type == "has_none":
            quantity = "no"
        elif condition.condition_type == "count":
            quantity = _count_clause(condition.operator, condition.value)
        else:
            quantity = "any"
        related = condition.related_object
        if data_model is not None:
            related = data_model.entity_label(related)
        text = f"has {quantity} {related} via {condition.association_type}"
        return text + _filters_clause(condition.nested_filters, data_model)

    if isinstance(condition, ScoreCondition):
        value = condition.value if condition.operator == "between" else condition.threshold
        if value is None:
            value = condition.value
        text = f"{condition.score_field} {_operator_clause(condition.operator, value)}"
        if condition.hysteresis is not None:
            text += (
                f" (add at {format_value(condition.hysteresis.add_threshold)}, "
                f"remove below {format_value(condition.hysteresis.remove_threshold)})"
            )
        return text

    return type(condition).__name__


def summarize_rules(
    rules: QualificationRules,
    catalog: EventCatalog | None = None,
    data_model: DataModel | None = None,
) -> str:
    """All conditions of *rules* joined by their combinator."""
    if not rules.conditions:
        return "No conditions"
    return f" {rules.logic} ".join(
        summarize_condition(c, catalog, data_model) for c in rules.conditions
    )
