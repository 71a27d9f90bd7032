# actions.py
# Variant selection and the built-in action registry.
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from .errors import EvaluationError
from .expr import evaluate_condition
from .expr.nodes import Value
from .model import Action, ActionKind, StepStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAction:
    """
    What actually runs for a step: a command or a built-in reference.

    `variant` is the index of the chosen variant, None for plain actions.
    """
    name: str
    kind: ActionKind  # COMMAND or BUILTIN, never VARIANTS
    run: Optional[str] = None
    uses: Optional[str] = None
    shell: Optional[str] = None
    variant: Optional[int] = None

    @property
    def target(self) -> str:
        return self.run if self.kind is ActionKind.COMMAND else f"uses {self.uses}"


def resolve_action(
    action: Action,
    context: Mapping[str, Value],
    *,
    strict: bool = False,
    working_dir: Optional[str] = None,
) -> Optional[ResolvedAction]:
    """
    Pick what to run for `action`.

    Variants are tried in declaration order and the first truthy `when`
    wins. Returns None when no variant applies. A malformed guard raises
    EvaluationError rather than being treated as false.
    """
    if action.kind is ActionKind.COMMAND:
        return ResolvedAction(action.name, ActionKind.COMMAND, run=action.run, shell=action.shell)
    if action.kind is ActionKind.BUILTIN:
        return ResolvedAction(action.name, ActionKind.BUILTIN, uses=action.uses)
    if action.kind is ActionKind.VARIANTS:
        for i, variant in enumerate(action.variants):
            try:
                matched = evaluate_condition(variant.when, context, strict=strict, working_dir=working_dir)
            except EvaluationError as e:
                e.message = f"action {action.name} variant {i}: {e.message}"
                raise
            if matched:
                logger.debug("action %s: variant %d selected (when: %s)", action.name, i, variant.when)
                return ResolvedAction(
                    action.name,
                    variant.kind,
                    run=variant.run,
                    uses=variant.uses,
                    shell=variant.shell,
                    variant=i,
                )
        logger.debug("action %s: no variant matched", action.name)
        return None
    raise ValueError(f"unhandled action kind: {action.kind}")


# ----------------------------------------------------------------------
# Built-in actions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class BuiltinResult:
    status: StepStatus  # OK, WARN or ERROR
    message: str = ""


@dataclass(frozen=True)
class BuiltinAction:
    name: str
    description: str
    fn: Callable[[str], BuiltinResult]  # working_dir -> result

    def run(self, working_dir: str) -> BuiltinResult:
        return self.fn(working_dir)


class ActionRegistry:
    """Name -> BuiltinAction lookup used for `uses:` references."""

    def __init__(self, actions: Optional[List[BuiltinAction]] = None):
        self._actions: Dict[str, BuiltinAction] = {}
        for a in actions or []:
            self.register(a)

    def register(self, action: BuiltinAction) -> None:
        self._actions[action.name] = action

    def get(self, name: str) -> Optional[BuiltinAction]:
        return self._actions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def list_actions(self) -> Dict[str, str]:
        return {name: a.description for name, a in sorted(self._actions.items())}

    @classmethod
    def default(cls) -> "ActionRegistry":
        from .builtins import BUILTINS
        return cls(list(BUILTINS))
