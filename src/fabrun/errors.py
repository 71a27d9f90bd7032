# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class FabrunError(Exception):
    """Base class for every error raised by fabrun."""


class ConfigError(FabrunError):
    """
    Invalid configuration: unknown action/dependency, cycles, schema problems.

    Raised before any step runs; nothing is partially executed.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        cycle: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.line = line
        self.column = column
        self.cycle = list(cycle) if cycle else []

    def __str__(self) -> str:
        if self.path and self.line is not None:
            return (
                f"configuration error in {self.path} at line {self.line}, "
                f"column {self.column or 0}: {self.message}"
            )
        if self.path:
            return f"configuration error in {self.path}: {self.message}"
        return f"configuration error: {self.message}"


class EvaluationError(FabrunError):
    """Malformed expression or misuse of a helper function."""

    def __init__(self, message: str, expression: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.expression = expression

    def __str__(self) -> str:
        if self.expression is not None:
            return f"{self.message} (in expression {self.expression!r})"
        return self.message


class ExpressionSyntaxError(EvaluationError):
    """The expression text could not be parsed."""

    def __init__(self, message: str, expression: Optional[str] = None, position: Optional[int] = None):
        super().__init__(message, expression)
        self.position = position


@dataclass
class ExecutionError(FabrunError):
    """
    An external runnable failed.

    Kept on StepResult.error so presentation can show the failing command.
    """
    step: str
    action: str
    message: str
    output: List[str] = field(default_factory=list)
    exit_code: Optional[int] = None

    def __str__(self) -> str:
        text = f"execution error in step {self.step!r} (action {self.action!r}): {self.message}"
        if self.exit_code is not None:
            text += f" (exit={self.exit_code})"
        return text


class Terminated(FabrunError):
    """The run was cancelled before the step could finish."""
