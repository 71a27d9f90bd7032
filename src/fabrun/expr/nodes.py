# nodes.py
# AST produced by the parser; evaluated separately against a context.
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

Value = Union[str, bool, int, float]


@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class And:
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Or:
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]


Node = Union[Literal, Variable, Not, And, Or, Compare, Call]
