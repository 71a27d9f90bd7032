"""
Conditional expression language used by variant guards and step `if:`.

    os == 'linux' && (arch == 'amd64' || arch == 'arm64')
    !contains(branch, 'wip') && semverCompare(version.version, '1.2.0') >= 0

Parsing produces an AST (`nodes`); evaluation is a separate pass over it
against a read-only variable mapping.
"""

from .evaluator import Evaluator, compare, evaluate, evaluate_condition, truthy
from .functions import FUNCTIONS, call_function, parse_version, to_str
from .parser import Parser, parse_expression, strip_wrapper

__all__ = [
    "Evaluator",
    "FUNCTIONS",
    "Parser",
    "call_function",
    "compare",
    "evaluate",
    "evaluate_condition",
    "parse_expression",
    "parse_version",
    "strip_wrapper",
    "to_str",
    "truthy",
]
