"""Tests for the trigger/guard condition evaluator."""

import pytest

from workflow.conditions import Equals, GreaterThan, evaluate, parse_conditions, resolve_field


@pytest.mark.unit
class TestEvaluate:
    """Equality and greater-than checks against a subject record."""

    def test_empty_conditions_are_vacuously_true(self):
        assert evaluate({}, {"status": "active"}) is True
        assert evaluate(None, {}) is True

    def test_equality_match(self):
        assert evaluate({"status": "at_risk"}, {"status": "at_risk", "x": 1}) is True

    def test_equality_mismatch(self):
        assert evaluate({"status": "at_risk"}, {"status": "active"}) is False

    def test_all_conditions_must_hold(self):
        subject = {"status": "at_risk", "country": "BG"}
        assert evaluate({"status": "at_risk", "country": "BG"}, subject) is True
        assert evaluate({"status": "at_risk", "country": "UK"}, subject) is False

    def test_missing_field_fails_without_raising(self):
        assert evaluate({"status": "at_risk"}, {}) is False
        assert evaluate({"inquiry_score_gt": 70}, {}) is False

    def test_greater_than(self):
        assert evaluate({"inquiry_score_gt": 70}, {"inquiry_score": 71}) is True
        assert evaluate({"inquiry_score_gt": 70}, {"inquiry_score": 70}) is False

    def test_greater_than_with_non_numeric_value_fails(self):
        assert evaluate({"inquiry_score_gt": 70}, {"inquiry_score": "high"}) is False
        assert evaluate({"inquiry_score_gt": 70}, {"inquiry_score": None}) is False
        assert evaluate({"inquiry_score_gt": 0}, {"inquiry_score": True}) is False

    def test_dotted_path_into_nested_record(self):
        subject = {"application": {"status": "submitted", "documents": 4}}
        assert evaluate({"application.status": "submitted"}, subject) is True
        assert evaluate({"application.documents_gt": 3}, subject) is True
        assert evaluate({"application.missing": 1}, subject) is False

    def test_non_mapping_inputs_never_raise(self):
        assert evaluate({"status": "x"}, None) is False
        assert evaluate(["status"], {"status": "x"}) is False

    def test_is_pure(self):
        conditions = {"status": "at_risk"}
        subject = {"status": "at_risk"}
        assert evaluate(conditions, subject) == evaluate(conditions, subject)
        assert conditions == {"status": "at_risk"}
        assert subject == {"status": "at_risk"}


@pytest.mark.unit
class TestParseConditions:

    def test_parses_closed_set_of_kinds(self):
        parsed = parse_conditions({"status": "paid", "amount_gt": 100})
        assert Equals(field="status", expected="paid") in parsed
        assert GreaterThan(field="amount", threshold=100) in parsed

    def test_bare_suffix_is_an_equality_on_that_key(self):
        assert parse_conditions({"_gt": 1}) == [Equals(field="_gt", expected=1)]

    def test_resolve_field_distinguishes_missing_from_none(self):
        assert resolve_field({"a": None}, "a") is None
        assert resolve_field({}, "a") is not None
