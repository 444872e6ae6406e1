"""Model domain: conditions, qualification rules, tags and their persisted form."""

from tagloom.model.conditions import (
    CONDITION_TYPES,
    OPERATORS,
    RULE_TYPES,
    ActivityCondition,
    AssociationCondition,
    Hysteresis,
    PropertyCondition,
    QualificationRules,
    RuleCondition,
    ScoreCondition,
    nested_filters,
)
from tagloom.model.serialization import (
    collection_to_blob,
    condition_to_dict,
    discriminate_condition,
    parse_condition,
    parse_rules,
    tag_from_dict,
    tag_patch,
    tag_to_dict,
)
from tagloom.model.tag import (
    CUSTOM_SECTION,
    LIBRARY_SECTION,
    VALID_BEHAVIORS,
    VALID_CATEGORIES,
    Tag,
    TagCollection,
)

__all__ = [
    "CONDITION_TYPES",
    "CUSTOM_SECTION",
    "LIBRARY_SECTION",
    "OPERATORS",
    "RULE_TYPES",
    "VALID_BEHAVIORS",
    "VALID_CATEGORIES",
    "ActivityCondition",
    "AssociationCondition",
    "Hysteresis",
    "PropertyCondition",
    "QualificationRules",
    "RuleCondition",
    "ScoreCondition",
    "Tag",
    "TagCollection",
    "collection_to_blob",
    "condition_to_dict",
    "discriminate_condition",
    "nested_filters",
    "parse_condition",
    "parse_rules",
    "tag_from_dict",
    "tag_patch",
    "tag_to_dict",
]
