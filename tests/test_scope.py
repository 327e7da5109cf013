import pytest

from needle.scope import Scope


@pytest.mark.parametrize(
    ("scope", "text"),
    [
        (Scope.SINGLETON, "singleton"),
        (Scope.TRANSIENT, "transient"),
        (Scope.REQUEST, "request"),
        (Scope.POOLED, "pooled"),
    ],
)
def test_str(scope, text):
    assert str(scope) == text


def test_singleton_is_the_zero_value():
    assert Scope(0) is Scope.SINGLETON


@pytest.mark.parametrize(
    ("value", "text"),
    [(0, "singleton"), (1, "transient"), (2, "request"), (3, "pooled")],
)
def test_values_follow_declaration_order(value, text):
    assert str(Scope(value)) == text


def test_unknown_value_rejected():
    with pytest.raises(ValueError):
        Scope(99)