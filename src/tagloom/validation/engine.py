"""Validation engine: the single gate a tag must pass before it may be persisted.

Every check returns errors as values. Nothing here raises for invalid input,
so callers can render per-field errors while keeping in-progress edits.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from tagloom.errors import (
    CyclicDependencyError,
    FieldError,
    ReferentialIntegrityError,
    StructuralValidationError,
    UniquenessConflictError,
)
from tagloom.model.conditions import (
    COMPARISON_OPERATORS,
    LIST_OPERATORS,
    SCORE_OPERATORS,
    VALID_ASSOCIATION_CONDITIONS,
    VALID_LOGIC,
    VALID_OCCURRENCES,
    VALID_OPERATORS,
    VALID_RULE_TYPES,
    VALUELESS_OPERATORS,
    ActivityCondition,
    AssociationCondition,
    PropertyCondition,
    ScoreCondition,
)
from tagloom.model.tag import VALID_BEHAVIORS, VALID_CATEGORIES
from tagloom.validation.cycles import find_dependency_cycle, format_cycle

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tagloom.catalog.data_model import DataModel, EntityField
    from tagloom.catalog.events import EventCatalog
    from tagloom.model.conditions import QualificationRules, RuleCondition
    from tagloom.model.tag import Tag, TagCollection

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_\- ]*$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
NAME_MIN, NAME_MAX = 2, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 500

RULES_PATH = "qualificationRules"

# ---------------------------------------------------------------------------
# Context & result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationContext:
    """What a tag is validated against.

    ``data_model`` enables entity/field existence and data-type checks,
    ``event_catalog`` enables event-type checks, and ``tags`` is the full
    project tag set used for uniqueness, dependency and cycle checks.
    """

    data_model: DataModel | None = None
    tags: tuple[Tag, ...] = ()
    event_catalog: EventCatalog | None = None

    def with_tags(self, tags: Iterable[Tag]) -> ValidationContext:
        return ValidationContext(
            data_model=self.data_model, tags=tuple(tags), event_catalog=self.event_catalog
        )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one tag."""

    errors: tuple[FieldError, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    def errors_for(self, field: str) -> list[FieldError]:
        """Errors attached to *field* or to any path nested under it."""
        return [e for e in self.errors if e.field == field or e.field.startswith(f"{field}.")]

    def to_dict(self) -> dict[str, object]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


@dataclass(frozen=True)
class CollectionValidation:
    """Per-tag results of validating a whole collection against itself."""

    results: tuple[tuple[Tag, ValidationResult], ...] = ()

    @property
    def valid(self) -> bool:
        return all(r.valid for _, r in self.results)

    def invalid(self) -> list[tuple[Tag, ValidationResult]]:
        return [(t, r) for t, r in self.results if not r.valid]

    def errors(self) -> list[tuple[str, FieldError]]:
        """Flattened ``(tag id, error)`` pairs."""
        return [(t.id, e) for t, r in self.results for e in r.errors]


# ---------------------------------------------------------------------------
# Tag fields
# ---------------------------------------------------------------------------


def _structural(field: str, message: str) -> StructuralValidationError:
    return StructuralValidationError(field=field, message=message)


def check_tag_fields(tag: Tag) -> list[FieldError]:
    """Length, format and enumeration checks on the tag's own attributes."""
    errors: list[FieldError] = []

    if not tag.id.strip():
        errors.append(_structural("id", "Tag id is required"))

    name = tag.name.strip()
    if len(name) < NAME_MIN:
        errors.append(_structural("name", f"Tag name must be at least {NAME_MIN} characters"))
    elif len(name) > NAME_MAX:
        errors.append(_structural("name", f"Tag name must be at most {NAME_MAX} characters"))
    elif not NAME_PATTERN.match(name):
        errors.append(
            _structural(
                "name",
                "Tag name must start with a letter and contain only letters, numbers, "
                "underscores, hyphens and spaces",
            )
        )

    if tag.category not in VALID_CATEGORIES:
        errors.append(
            _structural(
                "category",
                f"Invalid category '{tag.category}', must be one of {sorted(VALID_CATEGORIES)}",
            )
        )

    description = tag.description.strip()
    if len(description) < DESCRIPTION_MIN:
        errors.append(
            _structural("description", f"Description must be at least {DESCRIPTION_MIN} characters")
        )
    elif len(description) > DESCRIPTION_MAX:
        errors.append(
            _structural("description", f"Description must be at most {DESCRIPTION_MAX} characters")
        )

    if not tag.icon.strip():
        errors.append(_structural("icon", "Icon is required"))

    if not COLOR_PATTERN.match(tag.color):
        errors.append(_structural("color", "Color must be a hex code like #1A2B3C"))

    if tag.behavior not in VALID_BEHAVIORS:
        errors.append(
            _structural(
                "behavior",
                f"Invalid behavior '{tag.behavior}', must be one of {sorted(VALID_BEHAVIORS)}",
            )
        )
    return errors


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    try:
        date.fromisoformat(text[:10])
    except ValueError:
        return False
    return True


def _check_range(path: str, value: Any) -> list[FieldError]:
    """``between`` needs exactly two comparable values with min <= max."""
    if not isinstance(value, (tuple, list)) or len(value) != 2:
        return [_structural(f"{path}.value", "'between' requires exactly two values [min, max]")]
    low, high = value
    if _is_blank(low) or _is_blank(high):
        return [_structural(f"{path}.value", "'between' requires both a min and a max value")]
    comparable = (_is_number(low) and _is_number(high)) or (
        isinstance(low, str) and isinstance(high, str)
    )
    if not comparable:
        return [_structural(f"{path}.value", "'between' values must be of the same type")]
    if low > high:
        return [
            _structural(
                f"{path}.value",
                f"Inverted range: min ({low}) must not be greater than max ({high})",
            )
        ]
    return []


def _check_operator_value(path: str, operator: str, value: Any) -> list[FieldError]:
    """Arity checks shared by every operator-bearing property condition."""
    if operator in VALUELESS_OPERATORS:
        return []
    if operator == "between":
        return _check_range(path, value)
    if operator in LIST_OPERATORS:
        if not isinstance(value, (tuple, list)) or not value:
            return [_structural(f"{path}.value", f"'{operator}' requires a non-empty list of values")]
        if any(_is_blank(v) for v in value):
            return [_structural(f"{path}.value", f"'{operator}' values must not be empty")]
        return []
    if isinstance(value, (tuple, list)):
        return [_structural(f"{path}.value", f"'{operator}' requires a single value")]
    if _is_blank(value):
        return [_structural(f"{path}.value", "Value is required")]
    return []


def _value_items(operator: str, value: Any) -> list[Any]:
    if operator in VALUELESS_OPERATORS or value is None:
        return []
    if isinstance(value, (tuple, list)):
        return list(value)
    return [value]


def _check_value_type(path: str, entity_field: EntityField, operator: str, value: Any) -> list[FieldError]:
    """Each value must suit the field's data type."""
    data_type = entity_field.data_type
    for item in _value_items(operator, value):
        if data_type in ("number", "currency"):
            ok, expected = _is_number(item), "a number"
        elif data_type in ("date", "datetime"):
            ok, expected = _is_iso_date(item), "an ISO-8601 date"
        elif data_type == "boolean":
            ok, expected = isinstance(item, bool), "true or false"
        elif data_type == "enumeration":
            ok = isinstance(item, str) and (
                not entity_field.options or item in entity_field.options
            )
            expected = (
                f"one of {list(entity_field.options)}" if entity_field.options else "a string"
            )
        else:
            ok, expected = isinstance(item, str) and bool(item.strip()), "a non-empty string"
        if not ok:
            return [
                _structural(
                    f"{path}.value",
                    f"Field '{entity_field.name}' is {data_type}: value {item!r} must be {expected}",
                )
            ]
    return []


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


def check_property_condition(
    path: str, condition: PropertyCondition, context: ValidationContext
) -> list[FieldError]:
    """Operator, value arity, and (with a data model) field existence and typing."""
    errors: list[FieldError] = []
    if not condition.object_name.strip():
        errors.append(_structural(f"{path}.object", "Object is required"))
    if not condition.field.strip():
        errors.append(_structural(f"{path}.field", "Field is required"))
    if condition.operator not in VALID_OPERATORS:
        errors.append(_structural(f"{path}.operator", f"Unknown operator '{condition.operator}'"))
        return errors
    errors.extend(_check_operator_value(path, condition.operator, condition.value))

    model = context.data_model
    if model is None or errors:
        return errors

    entity = model.get_entity(condition.object_name)
    if entity is None:
        errors.append(
            ReferentialIntegrityError(
                field=f"{path}.object",
                message=f"Object '{condition.object_name}' does not exist in the data model",
            )
        )
        return errors
    entity_field = entity.get_field(condition.field)
    if entity_field is None:
        errors.append(
            ReferentialIntegrityError(
                field=f"{path}.field",
                message=f"Field '{condition.field}' does not exist on object '{entity.name}'",
            )
        )
        return errors
    if condition.operator not in entity_field.allowed_operators:
        errors.append(
            _structural(
                f"{path}.operator",
                f"Operator '{condition.operator}' is not available for "
                f"{entity_field.data_type} field '{entity_field.name}'",
            )
        )
        return errors
    errors.extend(_check_value_type(path, entity_field, condition.operator, condition.value))
    return errors


def _check_count(
    path: str, selector_key: str, is_count: bool, operator: str | None, value: float | None
) -> list[FieldError]:
    """Count-style conditions need a comparison and a non-negative number, others neither."""
    errors: list[FieldError] = []
    if is_count:
        if operator is None:
            errors.append(_structural(f"{path}.operator", "Operator is required for 'count'"))
        elif operator not in COMPARISON_OPERATORS:
            errors.append(
                _structural(
                    f"{path}.operator",
                    f"Operator '{operator}' is not a comparison, must be one of "
                    f"{sorted(COMPARISON_OPERATORS)}",
                )
            )
        if value is None:
            errors.append(_structural(f"{path}.value", "Value is required for 'count'"))
        elif not _is_number(value) or value < 0:
            errors.append(_structural(f"{path}.value", "Count must be a non-negative number"))
    elif value is not None:
        errors.append(
            _structural(f"{path}.value", f"Value is only allowed when {selector_key} is 'count'")
        )
    return errors


def _check_filters(
    path: str, key: str, filters: tuple[PropertyCondition, ...], context: ValidationContext
) -> list[FieldError]:
    errors: list[FieldError] = []
    for index, sub in enumerate(filters):
        sub_path = f"{path}.{key}.{index}"
        if not isinstance(sub, PropertyCondition):
            errors.append(_structural(sub_path, "Nested filters must be property conditions"))
            continue
        errors.extend(check_property_condition(sub_path, sub, context))
    return errors


def check_activity_condition(
    path: str, condition: ActivityCondition, context: ValidationContext
) -> list[FieldError]:
    errors: list[FieldError] = []
    if not condition.event_type.strip():
        errors.append(_structural(f"{path}.eventType", "Event type is required"))
    elif context.event_catalog is not None and not context.event_catalog.is_known(
        condition.event_type
    ):
        errors.append(
            ReferentialIntegrityError(
                field=f"{path}.eventType",
                message=f"Unknown event type '{condition.event_type}'",
            )
        )
    if condition.occurrence not in VALID_OCCURRENCES:
        errors.append(
            _structural(
                f"{path}.occurrence",
                f"Invalid occurrence '{condition.occurrence}', must be one of "
                f"{sorted(VALID_OCCURRENCES)}",
            )
        )
    else:
        errors.extend(
            _check_count(
                path,
                "occurrence",
                condition.occurrence == "count",
                condition.operator,
                condition.value,
            )
        )
    if condition.timeframe is not None and (
        not _is_number(condition.timeframe) or condition.timeframe <= 0
    ):
        errors.append(_structural(f"{path}.timeframe", "Timeframe must be a positive number of days"))
    errors.extend(_check_filters(path, "filters", condition.filters, context))
    return errors


def check_association_condition(
    path: str, condition: AssociationCondition, context: ValidationContext
) -> list[FieldError]:
    errors: list[FieldError] = []
    if not condition.association_type.strip():
        errors.append(_structural(f"{path}.associationType", "Association type is required"))
    if not condition.related_object.strip():
        errors.append(_structural(f"{path}.relatedObject", "Related object is required"))
    elif (
        context.data_model is not None
        and context.data_model.get_entity(condition.related_object) is None
    ):
        errors.append(
            ReferentialIntegrityError(
                field=f"{path}.relatedObject",
                message=f"Object '{condition.related_object}' does not exist in the data model",
            )
        )
    if condition.condition_type not in VALID_ASSOCIATION_CONDITIONS:
        errors.append(
            _structural(
                f"{path}.conditionType",
                f"Invalid condition type '{condition.condition_type}', must be one of "
                f"{sorted(VALID_ASSOCIATION_CONDITIONS)}",
            )
        )
    else:
        errors.extend(
            _check_count(
                path,
                "conditionType",
                condition.condition_type == "count",
                condition.operator,
                condition.value,
            )
        )
    errors.extend(_check_filters(path, "nestedFilters", condition.nested_filters, context))
    return errors


def check_score_condition(path: str, condition: ScoreCondition) -> list[FieldError]:
    errors: list[FieldError] = []
    if not condition.score_field.strip():
        errors.append(_structural(f"{path}.scoreField", "Score field is required"))

    if condition.operator not in SCORE_OPERATORS:
        errors.append(
            _structural(
                f"{path}.operator",
                f"Operator '{condition.operator}' is not available for scores, must be one of "
                f"{sorted(SCORE_OPERATORS)}",
            )
        )
    elif condition.operator == "between":
        range_errors = _check_range(path, condition.value)
        if not range_errors and not all(_is_number(v) for v in condition.value):
            range_errors.append(_structural(f"{path}.value", "Score range bounds must be numbers"))
        errors.extend(range_errors)
    else:
        for key, raw in (("threshold", condition.threshold), ("value", condition.value)):
            if raw is not None and not _is_number(raw):
                errors.append(_structural(f"{path}.{key}", f"{key.capitalize()} must be a number"))
        if condition.threshold is None and condition.value is None and condition.hysteresis is None:
            errors.append(_structural(f"{path}.threshold", "Threshold is required"))

    hysteresis = condition.hysteresis
    if hysteresis is not None:
        if not (_is_number(hysteresis.add_threshold) and _is_number(hysteresis.remove_threshold)):
            errors.append(_structural(f"{path}.hysteresis", "Hysteresis thresholds must be numbers"))
        elif hysteresis.add_threshold <= hysteresis.remove_threshold:
            errors.append(
                _structural(
                    f"{path}.hysteresis",
                    f"addThreshold ({hysteresis.add_threshold}) must be greater than "
                    f"removeThreshold ({hysteresis.remove_threshold})",
                )
            )
    return errors


def check_condition(
    path: str, condition: RuleCondition, context: ValidationContext
) -> list[FieldError]:
    """Dispatch on the condition variant."""
    if isinstance(condition, PropertyCondition):
        return check_property_condition(path, condition, context)
    if isinstance(condition, ActivityCondition):
        return check_activity_condition(path, condition, context)
    if isinstance(condition, AssociationCondition):
        return check_association_condition(path, condition, context)
    if isinstance(condition, ScoreCondition):
        return check_score_condition(path, condition)
    return [_structural(path, f"Unsupported condition type {type(condition).__name__}")]


def check_rules(rules: QualificationRules, context: ValidationContext) -> list[FieldError]:
    """Rule type, combinator, non-empty conditions, and every condition matching the rule type."""
    errors: list[FieldError] = []
    if rules.rule_type not in VALID_RULE_TYPES:
        errors.append(
            _structural(
                f"{RULES_PATH}.ruleType",
                f"Invalid rule type '{rules.rule_type}', must be one of {sorted(VALID_RULE_TYPES)}",
            )
        )
    if rules.logic not in VALID_LOGIC:
        errors.append(_structural(f"{RULES_PATH}.logic", "Logic must be AND or OR"))
    if not rules.conditions:
        errors.append(
            _structural(f"{RULES_PATH}.conditions", "At least one condition is required")
        )

    for index, condition in enumerate(rules.conditions):
        path = f"{RULES_PATH}.conditions.{index}"
        if rules.rule_type in VALID_RULE_TYPES and condition.kind != rules.rule_type:
            errors.append(
                _structural(
                    path,
                    f"Expected a {rules.rule_type} condition for a {rules.rule_type} rule, "
                    f"got {condition.kind}",
                )
            )
            continue
        errors.extend(check_condition(path, condition, context))
    return errors


# ---------------------------------------------------------------------------
# Cross-tag checks
# ---------------------------------------------------------------------------


def check_uniqueness(tag: Tag, tags: Iterable[Tag]) -> list[FieldError]:
    """Name must be unique case-insensitively among the other tags (self excluded by id)."""
    key = tag.name.strip().casefold()
    for other in tags:
        if other.id != tag.id and other.name.strip().casefold() == key:
            return [
                UniquenessConflictError(
                    field="name",
                    message=f"A tag named '{other.name}' already exists",
                    conflicting_id=other.id,
                )
            ]
    return []


def check_dependencies(tag: Tag, tags: Iterable[Tag]) -> list[FieldError]:
    """Every dependency must exist and the graph through *tag* must stay acyclic."""
    edges: dict[str, frozenset[str]] = {t.id: t.dependencies for t in tags}
    edges[tag.id] = tag.dependencies
    errors: list[FieldError] = []

    for dep in sorted(tag.dependencies):
        if dep != tag.id and dep not in edges:
            errors.append(
                ReferentialIntegrityError(
                    field="dependencies", message=f"Dependency '{dep}' does not exist"
                )
            )

    cycle = find_dependency_cycle(tag.id, edges)
    if cycle is not None:
        errors.append(
            CyclicDependencyError(
                field="dependencies",
                message=f"Circular dependency detected: {format_cycle(cycle)}",
                cycle=cycle,
            )
        )
    return errors


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def validate_tag(tag: Tag, context: ValidationContext) -> ValidationResult:
    """Run every check on *tag* against *context* and collect the field errors."""
    errors: list[FieldError] = []
    errors.extend(check_tag_fields(tag))
    errors.extend(check_rules(tag.qualification_rules, context))
    errors.extend(check_uniqueness(tag, context.tags))
    errors.extend(check_dependencies(tag, context.tags))
    if errors:
        logger.debug("Tag %s failed validation with %d error(s)", tag.id, len(errors))
    return ValidationResult(errors=tuple(errors))


def validate_collection(
    tags: TagCollection | Iterable[Tag], context: ValidationContext | None = None
) -> CollectionValidation:
    """Validate every tag against the whole set (the full closure), not in isolation.

    Duplicate ids inside the set are reported on the later occurrence.
    """
    all_tags = tuple(tags)
    base = context if context is not None else ValidationContext()
    closure = base.with_tags(all_tags)

    seen_ids: set[str] = set()
    results: list[tuple[Tag, ValidationResult]] = []
    for tag in all_tags:
        result = validate_tag(tag, closure)
        if tag.id in seen_ids:
            result = ValidationResult(
                errors=(
                    *result.errors,
                    _structural("id", f"Duplicate tag id '{tag.id}'"),
                )
            )
        seen_ids.add(tag.id)
        results.append((tag, result))
    return CollectionValidation(results=tuple(results))
