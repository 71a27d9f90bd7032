# variables.py
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Mapping, Optional

from .expr.functions import to_str
from .expr.nodes import Value

_PLACEHOLDER = re.compile(r"\$\{\{\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*\}\}")


def build_context(
    *,
    platform: Optional[Mapping[str, Value]] = None,
    facts: Optional[Mapping[str, Value]] = None,
    env: Optional[Mapping[str, str]] = None,
    inputs: Optional[Mapping[str, Value]] = None,
    matrix: Optional[Mapping[str, Value]] = None,
    overrides: Optional[Mapping[str, Value]] = None,
) -> Mapping[str, Value]:
    """
    Assemble the flat, read-only expression context.

    Later sources override earlier ones:
      platform facts < run facts < env.* < inputs.* / matrix.* < overrides
    """
    ctx: dict[str, Value] = {}
    ctx.update(platform or {})
    ctx.update(facts or {})
    for k, v in (env or {}).items():
        ctx[f"env.{k}"] = v
    for k, v in (inputs or {}).items():
        ctx[f"inputs.{k}"] = v
    for k, v in (matrix or {}).items():
        ctx[f"matrix.{k}"] = v
    ctx.update(overrides or {})
    return MappingProxyType(ctx)


def interpolate(text: str, context: Mapping[str, Value]) -> str:
    """Replace ${{ name }} with its context value; unknown names stay as written."""

    def repl(m: re.Match) -> str:
        name = m.group(1)
        if name not in context:
            return m.group(0)
        return to_str(context[name])

    return _PLACEHOLDER.sub(repl, text)


def parse_assignments(pairs, *, what: str = "variable") -> dict[str, str]:
    """Turn ["KEY=VALUE", ...] into a dict. Raises ValueError on a missing '='."""
    out: dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"invalid {what} {pair!r}, expected KEY=VALUE")
        out[key.strip()] = value
    return out
