"""Condition evaluator tests."""

import pytest

from convoflow.conditions import OPERATORS, evaluate


@pytest.mark.parametrize(
    "value, operator, compare, expected",
    [
        ("Yes", "equals", "yes", True),
        ("yes", "equals", "YES", True),
        ("yes", "not_equals", "no", True),
        ("Hello World", "contains", "WORLD", True),
        ("Hello", "not_contains", "bye", True),
        ("Hello", "starts_with", "he", True),
        ("Hello", "ends_with", "LO", True),
        ("18", "greater_than", "17", True),
        ("abc", "greater_than", "1", False),
        ("17 years", "greater_than", "10", True),
        (" 2.5kg", "less_than", "3", True),
        ("-4", "less_than", "0", True),
        ("about 20", "greater_than", "10", False),
        ("3", "less_than", "10", True),
        ("   ", "is_empty", "", True),
        ("x", "is_not_empty", "", True),
    ],
)
def test_operators(value, operator, compare, expected):
    assert evaluate(value, operator, compare) is expected


def test_unbound_value_is_false_for_every_operator():
    for operator in OPERATORS:
        assert evaluate(None, operator, "x") is False


def test_unknown_operator_is_false():
    assert evaluate("a", "matches_regex", "a") is False


def test_evaluate_is_pure():
    results = {evaluate("Blue", "equals", "blue") for _ in range(5)}
    assert results == {True}
