"""Tests for tagloom.model.conditions and tagloom.model.tag."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tagloom.model.conditions import (
    ActivityCondition,
    AssociationCondition,
    PropertyCondition,
    QualificationRules,
    ScoreCondition,
    nested_filters,
)
from tagloom.model.tag import CUSTOM_SECTION, LIBRARY_SECTION, TagCollection

if TYPE_CHECKING:
    from collections.abc import Callable

    from tagloom.model.tag import Tag

AGE = PropertyCondition(object_name="contact", field="age", operator="greater_than", value=30)
ACTIVE_LOAN = PropertyCondition(object_name="loan", field="status", operator="equals", value="active")


class TestConditionKinds:
    def test_each_variant_carries_its_kind(self) -> None:
        assert AGE.kind == "property"
        assert ActivityCondition(event_type="page_view", occurrence="has_occurred").kind == "activity"
        assert (
            AssociationCondition(
                association_type="contact_to_loan", related_object="loan", condition_type="has_any"
            ).kind
            == "association"
        )
        assert ScoreCondition(score_field="engagement", operator="greater_than").kind == "score"

    def test_nested_filters(self) -> None:
        activity = ActivityCondition(
            event_type="page_view", occurrence="has_occurred", filters=(AGE,)
        )
        association = AssociationCondition(
            association_type="contact_to_loan",
            related_object="loan",
            condition_type="has_any",
            nested_filters=(ACTIVE_LOAN,),
        )
        assert nested_filters(activity) == (AGE,)
        assert nested_filters(association) == (ACTIVE_LOAN,)
        assert nested_filters(AGE) == ()


class TestQualificationRules:
    def test_with_and_without_condition(self) -> None:
        rules = QualificationRules(rule_type="property")
        rules = rules.with_condition(AGE).with_condition(ACTIVE_LOAN)
        assert rules.conditions == (AGE, ACTIVE_LOAN)
        assert rules.without_condition(0).conditions == (ACTIVE_LOAN,)

    def test_rule_type_switch_requires_confirmation(self) -> None:
        rules = QualificationRules(rule_type="property", conditions=(AGE,))
        with pytest.raises(ValueError, match="must be confirmed"):
            rules.with_rule_type("activity")

    def test_confirmed_switch_clears_conditions(self) -> None:
        rules = QualificationRules(rule_type="property", logic="OR", conditions=(AGE,))
        switched = rules.with_rule_type("activity", confirmed=True)
        assert switched.rule_type == "activity"
        assert switched.conditions == ()
        assert switched.logic == "OR"

    def test_switch_without_conditions_needs_no_confirmation(self) -> None:
        rules = QualificationRules(rule_type="property")
        assert rules.with_rule_type("score").rule_type == "score"

    def test_same_rule_type_is_a_no_op(self) -> None:
        rules = QualificationRules(rule_type="property", conditions=(AGE,))
        assert rules.with_rule_type("property") is rules

    def test_invalid_rule_type(self) -> None:
        with pytest.raises(ValueError, match="invalid rule type"):
            QualificationRules(rule_type="property").with_rule_type("segment")


class TestTagCollection:
    def test_sections_follow_is_custom(self, make_tag: Callable[..., Tag]) -> None:
        library = make_tag("lib-1", "Library Tag", is_custom=False)
        custom = make_tag("custom-1", "Custom Tag")
        collection = TagCollection.from_tags([custom, library])

        assert collection.library == (library,)
        assert collection.custom == (custom,)
        assert library.section == LIBRARY_SECTION
        assert custom.section == CUSTOM_SECTION
        assert len(collection) == 2
        assert collection.all() == [library, custom]

    def test_get(self, make_tag: Callable[..., Tag]) -> None:
        tag = make_tag()
        collection = TagCollection(custom=(tag,))
        assert collection.get(tag.id) is tag
        assert collection.get("missing") is None

    def test_unknown_section(self) -> None:
        with pytest.raises(ValueError, match="unknown section"):
            TagCollection().section("archive")

    def test_evolve_returns_copy(self, make_tag: Callable[..., Tag]) -> None:
        tag = make_tag()
        renamed = tag.evolve(name="Renamed Tag")
        assert renamed.name == "Renamed Tag"
        assert tag.name == "Loyal Customer"
