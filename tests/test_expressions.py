"""
Tests for expression evaluation
"""

import pytest

from proxyhop.engine.errors import ExpressionError
from proxyhop.engine.expressions import ExpressionResolver, evaluate_expression, is_expression

RESPONSE = {"response": {"statusCode": 200, "body": {"items": [1, 2], "next": "https://x/2"}}, "pageCount": 3}


def test_whole_expression_keeps_native_type():
    """A single {{ }} block returns the native value"""
    assert evaluate_expression("{{ $pageCount + 1 }}", RESPONSE) == 4
    assert evaluate_expression("{{ $response.body.items }}", RESPONSE) == [1, 2]


def test_mapping_keys_win_over_methods():
    """`items` on a dict means the key, not dict.items"""
    assert evaluate_expression("{{ $response.body.items | length }}", RESPONSE) == 2


def test_mixed_template_renders_string():
    """Text around an expression renders to a string"""
    assert evaluate_expression("page-{{ $pageCount }}", RESPONSE) == "page-3"


def test_equals_prefix_forms():
    """`=` prefixed values are expressions with or without braces"""
    assert evaluate_expression("={{ $pageCount * 2 }}", RESPONSE) == 6
    assert evaluate_expression("=$response.statusCode == 200", RESPONSE) is True


def test_literals_pass_through():
    """Plain values are not evaluated"""
    assert evaluate_expression("https://api.example.com", RESPONSE) == "https://api.example.com"
    assert evaluate_expression(42, RESPONSE) == 42


def test_missing_values_are_none():
    """Missing keys chain to None instead of failing"""
    assert evaluate_expression("{{ $response.body.cursor }}", {"response": {}}) is None
    assert evaluate_expression("{{ $response.body.meta.next }}", RESPONSE) is None


def test_syntax_error_raises():
    """Broken expressions raise ExpressionError"""
    with pytest.raises(ExpressionError):
        evaluate_expression("{{ (1 + }}", RESPONSE)


def test_sandbox_blocks_private_attributes():
    """The sandbox refuses access to internals"""
    with pytest.raises(ExpressionError):
        evaluate_expression("{{ ''.__class__.__mro__[1].__subclasses__() }}", {})


@pytest.mark.parametrize(
    "value, expected",
    [("{{ x }}", True), ("=x", True), ("plain", False), ("{{ unclosed", False), (5, False)],
)
def test_is_expression(value, expected):
    assert is_expression(value) is expected


def test_resolver_resolves_nested_values():
    """The resolver walks dicts and lists"""
    resolver = ExpressionResolver({"json": {"id": 7}})
    assert resolver.resolve({"url": "https://api.example.com/{{ $json.id }}", "ids": ["{{ $json.id }}"]}) == {
        "url": "https://api.example.com/7",
        "ids": [7],
    }


def test_resolver_keeps_raw_value_on_failure():
    """Parameter resolution is lenient and keeps the original text"""
    resolver = ExpressionResolver({})
    assert resolver.resolve("{{ (1 + }}") == "{{ (1 + }}"


def test_resolver_evaluate_is_strict():
    """evaluate raises on failure"""
    with pytest.raises(ExpressionError):
        ExpressionResolver({}).evaluate("{{ (1 + }}")


def test_custom_evaluator_is_used():
    """The evaluation callable can be replaced"""
    resolver = ExpressionResolver({"a": 1}, evaluator=lambda expression, variables: ("seen", variables["a"]))
    assert resolver.evaluate("anything") == ("seen", 1)
