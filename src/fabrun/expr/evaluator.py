# evaluator.py
from __future__ import annotations

import logging
from typing import Mapping, Optional, Union

from ..errors import EvaluationError
from .functions import call_function, to_str
from .nodes import And, Call, Compare, Literal, Node, Not, Or, Value, Variable
from .parser import parse_expression

logger = logging.getLogger(__name__)

Number = Union[int, float]


def truthy(value: Value) -> bool:
    """Empty string and "false" are falsy; zero is falsy; everything else is truthy."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return value not in ("", "false")


def _as_number(value: Value) -> Optional[Number]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return None


def _is_number(value: Value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare(op: str, left: Value, right: Value) -> bool:
    """
    Numeric when both sides are numbers (or one is a number and the other a
    numeric string); byte-wise string comparison otherwise.
    """
    lhs: Union[Number, str, None] = None
    rhs: Union[Number, str, None] = None
    if _is_number(left) or _is_number(right):
        lhs, rhs = _as_number(left), _as_number(right)
    if lhs is None or rhs is None:
        lhs, rhs = to_str(left), to_str(right)

    if op == "==":
        return lhs == rhs
    if op == "!=":
        return lhs != rhs
    if op == "<":
        return lhs < rhs  # type: ignore[operator]
    if op == "<=":
        return lhs <= rhs  # type: ignore[operator]
    if op == ">":
        return lhs > rhs  # type: ignore[operator]
    if op == ">=":
        return lhs >= rhs  # type: ignore[operator]
    raise EvaluationError(f"unknown comparison operator: {op}")


class Evaluator:
    """Evaluates a parsed expression against a read-only variable mapping."""

    def __init__(self, context: Mapping[str, Value], *, strict: bool = False, working_dir: Optional[str] = None):
        self.context = context
        self.strict = strict
        self.working_dir = working_dir

    def eval(self, node: Node) -> Value:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Variable):
            return self._resolve(node.name)
        if isinstance(node, Not):
            return not truthy(self.eval(node.operand))
        if isinstance(node, And):
            return truthy(self.eval(node.left)) and truthy(self.eval(node.right))
        if isinstance(node, Or):
            return truthy(self.eval(node.left)) or truthy(self.eval(node.right))
        if isinstance(node, Compare):
            return compare(node.op, self.eval(node.left), self.eval(node.right))
        if isinstance(node, Call):
            args = [self.eval(a) for a in node.args]
            return call_function(node.name, args, working_dir=self.working_dir)
        raise EvaluationError(f"unsupported expression node: {type(node).__name__}")

    def _resolve(self, name: str) -> Value:
        if name in self.context:
            return self.context[name]
        if self.strict:
            raise EvaluationError(f"undefined variable: {name}")
        logger.debug("unresolved variable %r evaluates to empty string", name)
        return ""


def evaluate(
    text: str,
    context: Mapping[str, Value],
    *,
    strict: bool = False,
    working_dir: Optional[str] = None,
) -> Value:
    """
    Parse and evaluate `text`. Raises EvaluationError (ExpressionSyntaxError
    for malformed text) rather than returning a false-y value.
    """
    node = parse_expression(text)
    try:
        return Evaluator(context, strict=strict, working_dir=working_dir).eval(node)
    except EvaluationError as e:
        if e.expression is None:
            e.expression = text
        raise


def evaluate_condition(
    text: str,
    context: Mapping[str, Value],
    *,
    strict: bool = False,
    working_dir: Optional[str] = None,
) -> bool:
    return truthy(evaluate(text, context, strict=strict, working_dir=working_dir))
