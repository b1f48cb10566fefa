import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, Dict

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from proxyhop.engine.errors import ExpressionError

logger = logging.getLogger(__name__)

# (expression, variables) -> value
Evaluator = Callable[[Any, Dict[str, Any]], Any]

# `$response` style variables are exposed to Jinja without the `$`
DOLLAR_VARIABLE = re.compile(r"\$(?=[A-Za-z_])")
WHOLE_EXPRESSION = re.compile(r"^\s*\{\{(?P<expr>.*?)\}\}\s*$", re.S)

EVALUATION_ERRORS = (
    TemplateError,
    TypeError,
    ValueError,
    ArithmeticError,
    LookupError,
    AttributeError,
)


class MappingFirstEnvironment(SandboxedEnvironment):
    """
    Sandbox where `a.b` on a mapping reads the key before the attribute.

    Response bodies are plain dicts, so `response.body.items` must mean the
    `items` key and not `dict.items`.
    """

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping) and attribute in obj:
            return obj[attribute]
        return super().getattr(obj, attribute)


# Missing keys chain to None instead of raising, so `$response.body.next`
# works before the first page and on the last one
_env = MappingFirstEnvironment(undefined=ChainableUndefined)


def is_expression(value: Any) -> bool:
    """True for `={{ ... }}`, `{{ ... }}` and `=expr` strings."""
    if not isinstance(value, str):
        return False
    return value.startswith("=") or ("{{" in value and "}}" in value)


def _normalize(expression: str) -> str:
    if expression.startswith("="):
        expression = expression[1:]
    return DOLLAR_VARIABLE.sub("", expression)


def evaluate_expression(expression: Any, variables: Dict[str, Any]) -> Any:
    """
    Evaluate one expression against `variables`.

    A string that is exactly one `{{ ... }}` block keeps the native type of
    its result; mixed templates render to a string; `=expr` without braces is
    evaluated as a bare expression. Anything else is returned unchanged.

    Raises:
        ExpressionError: If the expression fails to compile or evaluate
    """
    if not is_expression(expression):
        return expression

    source = _normalize(expression)
    try:
        match = WHOLE_EXPRESSION.match(source)
        if match and "{{" not in match.group("expr"):
            return _env.compile_expression(match.group("expr").strip())(**variables)
        if "{{" in source:
            return _env.from_string(source).render(**variables)
        return _env.compile_expression(source.strip())(**variables)
    except EVALUATION_ERRORS as e:
        raise ExpressionError(str(expression), str(e)) from e


class ExpressionResolver:
    """
    Resolves expressions in node parameters.
    Uses Jinja2 syntax (e.g. {{ $json.id }}) with a restricted sandbox.
    """

    def __init__(self, context: Dict[str, Any], evaluator: Evaluator = evaluate_expression):
        self.context = context
        self.evaluator = evaluator

    def evaluate(self, expression: Any, extra: Dict[str, Any] = None) -> Any:
        """Strict evaluation, raises ExpressionError."""
        variables = {**self.context, **(extra or {})}
        return self.evaluator(expression, variables)

    def resolve(self, value: Any) -> Any:
        """
        Recursively resolve expressions in the given value.

        Args:
            value: The value to resolve (string, dict, list, or primitive)

        Returns:
            Resolved value
        """
        if isinstance(value, str):
            return self._resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(v) for v in value]
        else:
            return value

    def _resolve_string(self, value: str) -> Any:
        if not is_expression(value):
            return value
        try:
            return self.evaluate(value)
        except ExpressionError as e:
            # Parameters keep their raw text so the caller can report a
            # clearer error (e.g. invalid JSON) than the template failure
            logger.warning(f"Expression resolution failed for '{value}': {e}")
            return value
