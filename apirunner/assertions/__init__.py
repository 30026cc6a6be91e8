"""Assertion evaluation and sandboxed expressions."""

from .evaluator import AssertionEvaluator
from .sandbox import ExpressionSandbox, ScriptResult, ScriptSandbox

__all__ = [
    "AssertionEvaluator",
    "ExpressionSandbox",
    "ScriptResult",
    "ScriptSandbox",
]
