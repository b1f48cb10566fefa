from proxyhop.engine.expressions.resolver import (
    ExpressionResolver,
    evaluate_expression,
    is_expression,
)

__all__ = ["ExpressionResolver", "evaluate_expression", "is_expression"]
