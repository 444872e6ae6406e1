"""Data Model provider: entities and their typed fields, loaded from YAML."""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEXT_TYPES: frozenset[str] = frozenset({"text", "multiline_text", "email", "phone", "url"})
NUMERIC_TYPES: frozenset[str] = frozenset({"number", "currency"})
TEMPORAL_TYPES: frozenset[str] = frozenset({"date", "datetime"})
VALID_DATA_TYPES: frozenset[str] = (
    TEXT_TYPES | NUMERIC_TYPES | TEMPORAL_TYPES | {"boolean", "enumeration"}
)

_COMMON = frozenset({"equals", "not_equals", "is_known", "is_unknown"})
_LISTS = frozenset({"in", "not_in"})
_ORDERED = frozenset(
    {"greater_than", "greater_than_or_equal", "less_than", "less_than_or_equal", "between"}
)

# Operators a property condition may apply to a field of each data type.
OPERATORS_BY_TYPE: dict[str, frozenset[str]] = {
    **{t: _COMMON | _LISTS | {"contains", "not_contains", "starts_with", "ends_with"} for t in TEXT_TYPES},
    **{t: _COMMON | _LISTS | _ORDERED for t in NUMERIC_TYPES | TEMPORAL_TYPES},
    "boolean": _COMMON,
    "enumeration": _COMMON | _LISTS,
}

DEFAULT_DATA_MODEL_RESOURCE = "default_data_model.yml"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityField:
    """A typed field on a data-model entity."""

    name: str
    data_type: str
    label: str = ""
    options: tuple[str, ...] = ()  # allowed values for enumeration fields

    @property
    def allowed_operators(self) -> frozenset[str]:
        return OPERATORS_BY_TYPE[self.data_type]


@dataclass(frozen=True)
class Entity:
    """An object in the client's data model (contact, account, loan, ...)."""

    name: str
    label: str = ""
    fields: dict[str, EntityField] = field(default_factory=dict)

    def get_field(self, name: str) -> EntityField | None:
        return self.fields.get(name)


@dataclass(frozen=True)
class DataModel:
    """The set of entities referenced by property and association conditions."""

    entities: dict[str, Entity] = field(default_factory=dict)

    def get_entity(self, name: str) -> Entity | None:
        return self.entities.get(name)

    def get_field(self, entity_name: str, field_name: str) -> EntityField | None:
        entity = self.entities.get(entity_name)
        if entity is None:
            return None
        return entity.get_field(field_name)

    def entity_label(self, name: str) -> str:
        """Display label for *name*, falling back to the name itself."""
        entity = self.entities.get(name)
        if entity is None or not entity.label:
            return name
        return entity.label


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _parse_field(entity: str, name: str, data: Any) -> EntityField:
    if isinstance(data, str):
        data = {"type": data}
    if not isinstance(data, dict):
        msg = f"data model: field '{entity}.{name}' must be a mapping or a type name"
        raise ValueError(msg)

    data_type = data.get("type")
    if data_type not in VALID_DATA_TYPES:
        msg = (
            f"data model: field '{entity}.{name}' has invalid type {data_type!r}, "
            f"must be one of {sorted(VALID_DATA_TYPES)}"
        )
        raise ValueError(msg)

    options_raw = data.get("options", [])
    if not isinstance(options_raw, list):
        msg = f"data model: field '{entity}.{name}' options must be a list"
        raise ValueError(msg)
    # Options may be plain values or {label, value} mappings.
    options = tuple(
        str(o["value"]) if isinstance(o, dict) and "value" in o else str(o) for o in options_raw
    )
    return EntityField(name=name, data_type=data_type, label=str(data.get("label", "")), options=options)


def data_model_from_mapping(data: Any) -> DataModel:
    """Build a :class:`DataModel` from a parsed YAML/JSON mapping.

    Expected shape::

        entities:
          contact:
            label: Contact
            fields:
              age: {type: number}
              segment: {type: enumeration, options: [retail, business]}

    Raises ``ValueError`` on schema errors.
    """
    if not isinstance(data, dict):
        msg = "data model must be a mapping"
        raise ValueError(msg)
    entities_raw = data.get("entities", {})
    if not isinstance(entities_raw, dict):
        msg = "data model: 'entities' must be a mapping"
        raise ValueError(msg)

    entities: dict[str, Entity] = {}
    for entity_name, entity_data in entities_raw.items():
        if not isinstance(entity_data, dict):
            msg = f"data model: entity '{entity_name}' must be a mapping"
            raise ValueError(msg)
        fields_raw = entity_data.get("fields", {}) or {}
        if not isinstance(fields_raw, dict):
            msg = f"data model: entity '{entity_name}' fields must be a mapping"
            raise ValueError(msg)
        fields = {
            str(name): _parse_field(str(entity_name), str(name), spec)
            for name, spec in fields_raw.items()
        }
        entities[str(entity_name)] = Entity(
            name=str(entity_name),
            label=str(entity_data.get("label", "")),
            fields=fields,
        )
    return DataModel(entities=entities)


def load_data_model(path: Path) -> DataModel:
    """Parse a data model YAML file.

    Raises ``ValueError`` on schema errors and ``OSError`` if unreadable.
    """
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data_model_from_mapping(data or {})


def default_data_model() -> DataModel:
    """The retail-banking data model the pre-built library tags are written against."""
    text = resources.files("tagloom.catalog").joinpath(DEFAULT_DATA_MODEL_RESOURCE).read_text(
        encoding="utf-8"
    )
    return data_model_from_mapping(yaml.safe_load(text))
