"""Persisted representation of tags: camelCase keys, ISO-8601 dates, explicit ``kind``.

Parsing is tolerant: a malformed record never raises, it yields ``None`` plus
a list of field-scoped :class:`StructuralValidationError` values so that one
corrupt record can be quarantined without failing a whole load.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from tagloom.errors import StructuralValidationError
from tagloom.model.conditions import (
    CONDITION_TYPES,
    ActivityCondition,
    AssociationCondition,
    Hysteresis,
    PropertyCondition,
    QualificationRules,
    RuleCondition,
    ScoreCondition,
)
from tagloom.model.tag import Tag, TagCollection, utcnow

if TYPE_CHECKING:
    from collections.abc import Mapping

# Attribute name -> persisted key, for building update patches.
TAG_KEYS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "category": "category",
    "description": "description",
    "icon": "icon",
    "color": "color",
    "behavior": "behavior",
    "is_permanent": "isPermanent",
    "qualification_rules": "qualificationRules",
    "dependencies": "dependencies",
    "is_custom": "isCustom",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

# Fields whose presence identifies a condition variant in records without ``kind``.
_DISCRIMINATORS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("property", ("object", "field")),
    ("activity", ("eventType",)),
    ("association", ("associationType",)),
    ("score", ("scoreField",)),
)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def format_datetime(value: datetime) -> str:
    """Serialize an in-memory timestamp to ISO-8601 (UTC assumed for naive values)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_datetime(raw: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix accepted) into an aware datetime.

    Raises ``ValueError`` when *raw* is not a valid timestamp.
    """
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _dump_value(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_dump_value(v) for v in value]
    return value


def _load_value(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_load_value(v) for v in value)
    return value


def _put(out: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = _dump_value(value)


def condition_to_dict(condition: RuleCondition) -> dict[str, Any]:
    """Serialize a condition, always including its ``kind`` discriminant."""
    out: dict[str, Any] = {"kind": condition.kind}
    if isinstance(condition, PropertyCondition):
        _put(out, "id", condition.id)
        out["object"] = condition.object_name
        out["field"] = condition.field
        out["operator"] = condition.operator
        _put(out, "value", condition.value)
    elif isinstance(condition, ActivityCondition):
        out["eventType"] = condition.event_type
        out["occurrence"] = condition.occurrence
        _put(out, "operator", condition.operator)
        _put(out, "value", condition.value)
        _put(out, "timeframe", condition.timeframe)
        if condition.filters:
            out["filters"] = [condition_to_dict(f) for f in condition.filters]
    elif isinstance(condition, AssociationCondition):
        out["associationType"] = condition.association_type
        out["relatedObject"] = condition.related_object
        out["conditionType"] = condition.condition_type
        _put(out, "operator", condition.operator)
        _put(out, "value", condition.value)
        if condition.nested_filters:
            out["nestedFilters"] = [condition_to_dict(f) for f in condition.nested_filters]
    elif isinstance(condition, ScoreCondition):
        out["scoreField"] = condition.score_field
        out["operator"] = condition.operator
        _put(out, "threshold", condition.threshold)
        _put(out, "value", condition.value)
        if condition.hysteresis is not None:
            out["hysteresis"] = {
                "addThreshold": condition.hysteresis.add_threshold,
                "removeThreshold": condition.hysteresis.remove_threshold,
            }
    else:  # pragma: no cover - exhaustive over RuleCondition
        msg = f"unsupported condition type {type(condition).__name__}"
        raise TypeError(msg)
    return out


def rules_to_dict(rules: QualificationRules) -> dict[str, Any]:
    return {
        "ruleType": rules.rule_type,
        "logic": rules.logic,
        "conditions": [condition_to_dict(c) for c in rules.conditions],
    }


def tag_to_dict(tag: Tag) -> dict[str, Any]:
    """Serialize a tag to its persisted mapping."""
    return {
        "id": tag.id,
        "name": tag.name,
        "category": tag.category,
        "description": tag.description,
        "icon": tag.icon,
        "color": tag.color,
        "behavior": tag.behavior,
        "isPermanent": tag.is_permanent,
        "qualificationRules": rules_to_dict(tag.qualification_rules),
        "dependencies": sorted(tag.dependencies),
        "isCustom": tag.is_custom,
        "createdAt": format_datetime(tag.created_at),
        "updatedAt": format_datetime(tag.updated_at),
    }


def collection_to_blob(collection: TagCollection) -> dict[str, list[dict[str, Any]]]:
    """Serialize a collection to the ``{library: [...], custom: [...]}`` blob."""
    return {
        "library": [tag_to_dict(t) for t in collection.library],
        "custom": [tag_to_dict(t) for t in collection.custom],
    }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _Reader:
    """Typed accessors over a raw mapping that collect errors instead of raising."""

    def __init__(self, data: Mapping[str, Any], path: str, errors: list[StructuralValidationError]):
        self.data = data
        self.path = path
        self.errors = errors

    def _where(self, key: str) -> str:
        return f"{self.path}.{key}" if self.path else key

    def error(self, key: str, message: str) -> None:
        self.errors.append(StructuralValidationError(field=self._where(key), message=message))

    def string(self, key: str, *, required: bool = True) -> str | None:
        raw = self.data.get(key)
        if raw is None:
            if required:
                self.error(key, f"'{key}' is required")
            return None
        if not isinstance(raw, str):
            self.error(key, f"'{key}' must be a string")
            return None
        return raw

    def number(self, key: str) -> float | None:
        raw = self.data.get(key)
        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            self.error(key, f"'{key}' must be a number")
            return None
        return raw

    def boolean(self, key: str, *, default: bool | None = None) -> bool | None:
        raw = self.data.get(key, default)
        if raw is None:
            self.error(key, f"'{key}' is required")
            return None
        if not isinstance(raw, bool):
            self.error(key, f"'{key}' must be true or false")
            return None
        return raw

    def mapping_list(self, key: str) -> list[Mapping[str, Any]]:
        raw = self.data.get(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            self.error(key, f"'{key}' must be a list")
            return []
        items: list[Mapping[str, Any]] = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                self.error(f"{key}.{index}", "entry must be a mapping")
                continue
            items.append(item)
        return items

    def timestamp(self, key: str) -> datetime:
        raw = self.data.get(key)
        if raw is None:
            return utcnow()
        if isinstance(raw, datetime):
            return raw if raw.tzinfo is not None else raw.replace(tzinfo=timezone.utc)
        if not isinstance(raw, str):
            self.error(key, f"'{key}' must be an ISO-8601 timestamp")
            return utcnow()
        try:
            return parse_datetime(raw)
        except ValueError:
            self.error(key, f"'{key}' is not a valid ISO-8601 timestamp: {raw!r}")
            return utcnow()


def discriminate_condition(data: Mapping[str, Any]) -> tuple[str | None, str | None]:
    """Decide which variant a raw condition is.

    Returns ``(kind, None)`` on success or ``(None, message)`` when the
    record names an unknown kind, matches no variant, or matches several.
    """
    explicit = data.get("kind")
    if explicit is not None:
        if explicit not in CONDITION_TYPES:
            return None, f"unknown condition kind {explicit!r}, must be one of {list(CONDITION_TYPES)}"
        return str(explicit), None

    matches = [
        kind for kind, keys in _DISCRIMINATORS if all(data.get(k) is not None for k in keys)
    ]
    if not matches:
        return None, (
            "cannot determine condition kind: expected 'object'+'field', "
            "'eventType', 'associationType' or 'scoreField'"
        )
    if len(matches) > 1:
        return None, f"ambiguous condition: fields of {matches} are all present, set 'kind'"
    return matches[0], None


def _parse_property(reader: _Reader) -> PropertyCondition | None:
    object_name = reader.string("object")
    field_name = reader.string("field")
    operator = reader.string("operator")
    condition_id = reader.string("id", required=False)
    if object_name is None or field_name is None or operator is None:
        return None
    return PropertyCondition(
        object_name=object_name,
        field=field_name,
        operator=operator,
        value=_load_value(reader.data.get("value")),
        id=condition_id,
    )


def _parse_filters(
    reader: _Reader, key: str
) -> tuple[PropertyCondition, ...] | None:
    filters: list[PropertyCondition] = []
    ok = True
    for index, raw in enumerate(reader.mapping_list(key)):
        path = f"{reader._where(key)}.{index}"
        kind, problem = discriminate_condition(raw)
        if kind != "property":
            reader.errors.append(
                StructuralValidationError(
                    field=path,
                    message=problem or "nested filters must be property conditions",
                )
            )
            ok = False
            continue
        parsed = _parse_property(_Reader(raw, path, reader.errors))
        if parsed is None:
            ok = False
            continue
        filters.append(parsed)
    return tuple(filters) if ok else None


def _parse_activity(reader: _Reader) -> ActivityCondition | None:
    event_type = reader.string("eventType")
    occurrence = reader.string("occurrence")
    operator = reader.string("operator", required=False)
    value = reader.number("value")
    timeframe = reader.number("timeframe")
    filters = _parse_filters(reader, "filters")
    if event_type is None or occurrence is None or filters is None:
        return None
    return ActivityCondition(
        event_type=event_type,
        occurrence=occurrence,
        operator=operator,
        value=value,
        timeframe=timeframe,
        filters=filters,
    )


def _parse_association(reader: _Reader) -> AssociationCondition | None:
    association_type = reader.string("associationType")
    related_object = reader.string("relatedObject")
    condition_type = reader.string("conditionType")
    operator = reader.string("operator", required=False)
    value = reader.number("value")
    nested = _parse_filters(reader, "nestedFilters")
    if association_type is None or related_object is None or condition_type is None:
        return None
    if nested is None:
        return None
    return AssociationCondition(
        association_type=association_type,
        related_object=related_object,
        condition_type=condition_type,
        operator=operator,
        value=value,
        nested_filters=nested,
    )


def _parse_score(reader: _Reader) -> ScoreCondition | None:
    score_field = reader.string("scoreField")
    operator = reader.string("operator")
    threshold = reader.number("threshold")
    raw_value = reader.data.get("value")
    if raw_value is not None and not isinstance(raw_value, (int, float, list)):
        reader.error("value", "'value' must be a number or a [min, max] pair")
        raw_value = None

    hysteresis: Hysteresis | None = None
    raw_hysteresis = reader.data.get("hysteresis")
    if raw_hysteresis is not None:
        if not isinstance(raw_hysteresis, dict):
            reader.error("hysteresis", "'hysteresis' must be a mapping")
        else:
            sub = _Reader(raw_hysteresis, reader._where("hysteresis"), reader.errors)
            add = sub.number("addThreshold")
            remove = sub.number("removeThreshold")
            if add is None:
                sub.error("addThreshold", "'addThreshold' is required")
            if remove is None:
                sub.error("removeThreshold", "'removeThreshold' is required")
            if add is not None and remove is not None:
                hysteresis = Hysteresis(add_threshold=add, remove_threshold=remove)

    if score_field is None or operator is None:
        return None
    return ScoreCondition(
        score_field=score_field,
        operator=operator,
        threshold=threshold,
        value=_load_value(raw_value),
        hysteresis=hysteresis,
    )


_PARSERS = {
    "property": _parse_property,
    "activity": _parse_activity,
    "association": _parse_association,
    "score": _parse_score,
}


def parse_condition(
    data: Any, path: str = "condition"
) -> tuple[RuleCondition | None, list[StructuralValidationError]]:
    """Parse one raw condition; returns the condition or ``None`` plus errors."""
    errors: list[StructuralValidationError] = []
    if not isinstance(data, dict):
        errors.append(StructuralValidationError(field=path, message="condition must be a mapping"))
        return None, errors
    kind, problem = discriminate_condition(data)
    if kind is None:
        errors.append(StructuralValidationError(field=path, message=problem or "invalid condition"))
        return None, errors
    before = len(errors)
    condition = _PARSERS[kind](_Reader(data, path, errors))
    if len(errors) > before:
        return None, errors
    return condition, errors


def parse_rules(
    data: Any, path: str = "qualificationRules"
) -> tuple[QualificationRules | None, list[StructuralValidationError]]:
    """Parse a raw ``qualificationRules`` mapping."""
    errors: list[StructuralValidationError] = []
    if not isinstance(data, dict):
        errors.append(StructuralValidationError(field=path, message="must be a mapping"))
        return None, errors
    reader = _Reader(data, path, errors)
    rule_type = reader.string("ruleType")
    logic = reader.string("logic", required=False) or "AND"
    conditions: list[RuleCondition] = []
    for index, raw in enumerate(reader.mapping_list("conditions")):
        condition, condition_errors = parse_condition(raw, f"{path}.conditions.{index}")
        errors.extend(condition_errors)
        if condition is not None:
            conditions.append(condition)
    if errors or rule_type is None:
        return None, errors
    return QualificationRules(rule_type=rule_type, logic=logic, conditions=tuple(conditions)), errors


def tag_from_dict(data: Any) -> tuple[Tag | None, list[StructuralValidationError]]:
    """Parse a persisted tag record.

    Returns ``(tag, [])`` on success, or ``(None, errors)`` listing every
    shape problem found. Value constraints (lengths, enumerations, operator
    semantics) are checked later by the validation engine.
    """
    errors: list[StructuralValidationError] = []
    if not isinstance(data, dict):
        errors.append(StructuralValidationError(field="", message="tag record must be a mapping"))
        return None, errors

    reader = _Reader(data, "", errors)
    tag_id = reader.string("id")
    name = reader.string("name")
    category = reader.string("category")
    description = reader.string("description")
    icon = reader.string("icon")
    color = reader.string("color")
    behavior = reader.string("behavior")
    is_permanent = reader.boolean("isPermanent")
    is_custom = reader.boolean("isCustom", default=False)
    created_at = reader.timestamp("createdAt")
    updated_at = reader.timestamp("updatedAt")

    dependencies: frozenset[str] = frozenset()
    raw_deps = data.get("dependencies")
    if raw_deps is not None:
        if not isinstance(raw_deps, list) or not all(isinstance(d, str) for d in raw_deps):
            reader.error("dependencies", "'dependencies' must be a list of tag ids")
        else:
            dependencies = frozenset(raw_deps)

    rules: QualificationRules | None = None
    if "qualificationRules" not in data:
        reader.error("qualificationRules", "'qualificationRules' is required")
    else:
        rules, rule_errors = parse_rules(data["qualificationRules"])
        errors.extend(rule_errors)

    if errors:
        return None, errors
    return (
        Tag(
            id=str(tag_id),
            name=str(name),
            category=str(category),
            description=str(description),
            icon=str(icon),
            color=str(color),
            behavior=str(behavior),
            is_permanent=bool(is_permanent),
            qualification_rules=rules,  # type: ignore[arg-type]
            dependencies=dependencies,
            is_custom=bool(is_custom),
            created_at=created_at,
            updated_at=updated_at,
        ),
        errors,
    )


def tag_patch(before: Tag, after: Tag) -> dict[str, Any]:
    """Persisted keys whose values differ between *before* and *after*."""
    old = tag_to_dict(before)
    new = tag_to_dict(after)
    return {key: value for key, value in new.items() if key != "id" and old.get(key) != value}
