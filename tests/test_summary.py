"""Tests for tagloom.summary."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tagloom.model.conditions import (
    ActivityCondition,
    AssociationCondition,
    Hysteresis,
    PropertyCondition,
    QualificationRules,
    ScoreCondition,
)
from tagloom.summary import format_value, summarize_condition, summarize_rules

if TYPE_CHECKING:
    from tagloom.catalog.data_model import DataModel


class TestPropertySummary:
    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            ("greater_than", 30, "contact.age is greater than 30"),
            ("between", (18, 65), "contact.age is between 18 and 65"),
            ("in", ["a", "b"], "contact.age is in list a, b"),
            ("is_known", None, "contact.age is known (has value)"),
        ],
    )
    def test_operators(self, operator: str, value: object, expected: str) -> None:
        condition = PropertyCondition(object_name="contact", field="age", operator=operator, value=value)
        assert summarize_condition(condition) == expected

    def test_entity_label_from_data_model(self, data_model: DataModel) -> None:
        condition = PropertyCondition(object_name="contact", field="age", operator="less_than", value=25)
        assert summarize_condition(condition, data_model=data_model) == "Contact.age is less than 25"

    def test_unknown_entity_keeps_its_name(self, data_model: DataModel) -> None:
        condition = PropertyCondition(object_name="boat", field="length", operator="is_known")
        assert summarize_condition(condition, data_model=data_model) == "boat.length is known (has value)"


class TestActivitySummary:
    def test_count_with_timeframe_and_filters(self) -> None:
        condition = ActivityCondition(
            event_type="page_view",
            occurrence="count",
            operator="greater_than_or_equal",
            value=10,
            timeframe=30,
            filters=(
                PropertyCondition(
                    object_name="contact", field="lifecyclestage", operator="equals", value="customer"
                ),
            ),
        )
        assert summarize_condition(condition) == (
            "Page View has occurred at least 10 times in the last 30 days "
            "where contact.lifecyclestage equals customer"
        )

    def test_not_occurred_single_day(self) -> None:
        condition = ActivityCondition(event_type="email_open", occurrence="has_not_occurred", timeframe=1)
        assert summarize_condition(condition) == "Email Open has not occurred in the last 1 day"

    def test_custom_event_name(self) -> None:
        condition = ActivityCondition(event_type="pe1234567_account_login", occurrence="has_occurred")
        assert summarize_condition(condition) == "Account Login has occurred"


class TestAssociationSummary:
    def test_has_any(self) -> None:
        condition = AssociationCondition(
            association_type="contact_to_loan", related_object="loan", condition_type="has_any"
        )
        assert summarize_condition(condition) == "has any loan via contact_to_loan"

    def test_labels_related_object_and_filters(self, data_model: DataModel) -> None:
        condition = AssociationCondition(
            association_type="contact_to_loan",
            related_object="loan",
            condition_type="has_any",
            nested_filters=(
                PropertyCondition(object_name="loan", field="status", operator="equals", value="active"),
            ),
        )
        assert summarize_condition(condition, data_model=data_model) == (
            "has any Loan via contact_to_loan where Loan.status equals active"
        )

    def test_count(self) -> None:
        condition = AssociationCondition(
            association_type="contact_to_card",
            related_object="card",
            condition_type="count",
            operator="greater_than",
            value=2.0,
        )
        assert summarize_condition(condition) == "has more than 2 card via contact_to_card"


class TestScoreSummary:
    def test_hysteresis(self) -> None:
        condition = ScoreCondition(
            score_field="engagement_score",
            operator="greater_than_or_equal",
            threshold=75,
            hysteresis=Hysteresis(add_threshold=75, remove_threshold=60),
        )
        assert summarize_condition(condition) == (
            "engagement_score is greater than or equal to 75 (add at 75, remove below 60)"
        )

    def test_between(self) -> None:
        condition = ScoreCondition(score_field="risk_score", operator="between", value=(10, 20))
        assert summarize_condition(condition) == "risk_score is between 10 and 20"


class TestRulesSummary:
    def test_joined_by_logic(self) -> None:
        rules = QualificationRules(
            rule_type="property",
            logic="OR",
            conditions=(
                PropertyCondition(object_name="contact", field="age", operator="less_than", value=25),
                PropertyCondition(object_name="contact", field="city", operator="equals", value="Riga"),
            ),
        )
        assert summarize_rules(rules) == "contact.age is less than 25 OR contact.city equals Riga"

    def test_empty(self) -> None:
        assert summarize_rules(QualificationRules(rule_type="score")) == "No conditions"


def test_format_value() -> None:
    assert format_value(True) == "true"
    assert format_value(3.0) == "3"
    assert format_value(2.5) == "2.5"
