# functions.py
# Fixed-arity helper functions callable from expressions.
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import semver

from ..errors import EvaluationError
from .nodes import Value


def to_str(value: Value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_version(text: str) -> semver.Version:
    """SemVer 2.0 parse; a leading v is accepted."""
    raw = text.strip()
    if raw[:1] in ("v", "V"):
        raw = raw[1:]
    try:
        return semver.Version.parse(raw)
    except ValueError:
        raise EvaluationError(f"invalid version: {text!r}") from None


def _contains(haystack: Value, needle: Value) -> bool:
    return to_str(needle) in to_str(haystack)


def _starts_with(value: Value, prefix: Value) -> bool:
    return to_str(value).startswith(to_str(prefix))


def _ends_with(value: Value, suffix: Value) -> bool:
    return to_str(value).endswith(to_str(suffix))


def _matches(value: Value, pattern: Value) -> bool:
    try:
        compiled = re.compile(to_str(pattern))
    except re.error as e:
        raise EvaluationError(f"invalid regex in matches(): {e}") from None
    return compiled.search(to_str(value)) is not None


def _semver_compare(a: Value, b: Value) -> int:
    # build metadata does not take part in precedence
    return parse_version(to_str(a)).compare(parse_version(to_str(b)))


def _file_exists(path: Value, *, working_dir: Optional[str] = None) -> bool:
    p = Path(to_str(path)).expanduser()
    if not p.is_absolute() and working_dir:
        p = Path(working_dir) / p
    return os.path.exists(p)


# name -> (arity, implementation)
FUNCTIONS: Dict[str, Tuple[int, Callable[..., Value]]] = {
    "contains": (2, _contains),
    "startsWith": (2, _starts_with),
    "endsWith": (2, _ends_with),
    "matches": (2, _matches),
    "semverCompare": (2, _semver_compare),
    "fileExists": (1, _file_exists),
}


def call_function(name: str, args: List[Value], *, working_dir: Optional[str] = None) -> Value:
    if name not in FUNCTIONS:
        raise EvaluationError(f"unknown function: {name}")
    arity, fn = FUNCTIONS[name]
    if len(args) != arity:
        plural = "argument" if arity == 1 else "arguments"
        raise EvaluationError(f"{name}() expects {arity} {plural}, got {len(args)}")
    if fn is _file_exists:
        return fn(*args, working_dir=working_dir)
    return fn(*args)
