"""Catalog domain: data model, event types, and the pre-built tag library."""

from tagloom.catalog.data_model import (
    OPERATORS_BY_TYPE,
    VALID_DATA_TYPES,
    DataModel,
    Entity,
    EntityField,
    data_model_from_mapping,
    default_data_model,
    load_data_model,
)
from tagloom.catalog.events import (
    STANDARD_EVENTS,
    EventCatalog,
    EventType,
    is_custom_event,
)
from tagloom.catalog.library import find_library_tag, library_closure, load_library

__all__ = [
    "OPERATORS_BY_TYPE",
    "STANDARD_EVENTS",
    "VALID_DATA_TYPES",
    "DataModel",
    "Entity",
    "EntityField",
    "EventCatalog",
    "EventType",
    "data_model_from_mapping",
    "default_data_model",
    "find_library_tag",
    "is_custom_event",
    "library_closure",
    "load_data_model",
    "load_library",
]
