# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import ConfigError


class ActionKind(str, Enum):
    COMMAND = "command"
    BUILTIN = "builtin"
    VARIANTS = "variants"


class OnError(str, Enum):
    STOP = "stop"
    WARN = "warn"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OnError":
        if value is None or value == "":
            return cls.STOP
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"invalid onerror value: {value} (must be 'stop' or 'warn')") from None


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    OK = "ok"
    WARN = "warn"
    ERROR = "error"
    SKIPPED = "skipped"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


VALID_ONLY_LABELS = ("release", "prerelease", "patch", "minor", "major")


@dataclass(frozen=True)
class Variant:
    """One guarded alternative of an action. Exactly one of run/uses."""
    when: str
    run: Optional[str] = None
    uses: Optional[str] = None
    shell: Optional[str] = None

    @property
    def kind(self) -> ActionKind:
        return ActionKind.BUILTIN if self.uses else ActionKind.COMMAND


@dataclass(frozen=True)
class Action:
    """
    A named unit of work.

    The shape is a tagged union selected by `kind`:
      - COMMAND:  `run` (+ optional `shell`)
      - BUILTIN:  `uses` (reference into the built-in registry)
      - VARIANTS: ordered `variants`, first truthy `when` wins
    """
    name: str
    kind: ActionKind
    run: Optional[str] = None
    uses: Optional[str] = None
    shell: Optional[str] = None
    variants: Tuple[Variant, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("action name is required")
        if self.kind is ActionKind.VARIANTS:
            if self.run or self.uses:
                raise ConfigError(f"action {self.name} has variants and cannot also have 'run' or 'uses'")
            if not self.variants:
                raise ConfigError(f"action {self.name} declares variants but none are defined")
            for i, v in enumerate(self.variants):
                if not v.when:
                    raise ConfigError(f"action {self.name} variant {i} must have 'when' condition")
                if bool(v.run) == bool(v.uses):
                    raise ConfigError(f"action {self.name} variant {i} must have exactly one of 'run' or 'uses'")
        elif self.kind is ActionKind.COMMAND:
            if not self.run or self.uses or self.variants:
                raise ConfigError(f"action {self.name} must have only 'run'")
        elif self.kind is ActionKind.BUILTIN:
            if not self.uses or self.run or self.variants:
                raise ConfigError(f"action {self.name} must have only 'uses'")

    @classmethod
    def command(cls, name: str, run: str, *, shell: Optional[str] = None) -> "Action":
        return cls(name=name, kind=ActionKind.COMMAND, run=run, shell=shell)

    @classmethod
    def builtin(cls, name: str, uses: str) -> "Action":
        return cls(name=name, kind=ActionKind.BUILTIN, uses=uses)

    @classmethod
    def with_variants(cls, name: str, variants: List[Variant]) -> "Action":
        return cls(name=name, kind=ActionKind.VARIANTS, variants=tuple(variants))


@dataclass(frozen=True)
class Step:
    """One placement of an action inside a stage. Identity is (stage, name)."""
    action: str
    name: str = ""
    requires: Tuple[str, ...] = ()
    on_error: OnError = OnError.STOP
    condition: Optional[str] = None  # `if:` expression
    only: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.action:
            raise ConfigError("step must have an action")
        if not self.name:
            object.__setattr__(self, "name", self.action)

    @property
    def has_eligibility(self) -> bool:
        return bool(self.condition) or bool(self.only)


@dataclass(frozen=True)
class Stage:
    name: str
    steps: Tuple[Step, ...]

    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]

    def get_step(self, name: str) -> Optional[Step]:
        for s in self.steps:
            if s.name == name:
                return s
        return None


@dataclass
class Config:
    project: str
    actions: Dict[str, Action] = field(default_factory=dict)
    stages: Dict[str, Stage] = field(default_factory=dict)
    modules: List[str] = field(default_factory=list)
    bin_dir: Optional[str] = None
    source: Optional[str] = None  # file the config was loaded from

    def get_action(self, name: str) -> Optional[Action]:
        return self.actions.get(name)

    def get_stage(self, name: str) -> Optional[Stage]:
        return self.stages.get(name)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    """
    Outcome of one step for one run.

    Built by the worker that owns the step and never mutated afterwards.
    `reason` names what blocked a skipped step: the failing dependency,
    "condition not met" or "no matching variant".
    """
    step: str
    action: str
    status: StepStatus
    message: str = ""
    duration: float = 0.0
    output: Tuple[str, ...] = ()
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    exit_code: Optional[int] = None
    repro: Optional[str] = None

    def describe(self) -> str:
        """User-facing one-line summary; safe when `error` is None."""
        if self.message:
            return self.message
        if self.error is not None:
            return str(self.error) or type(self.error).__name__
        if self.status is StepStatus.SKIPPED and self.reason:
            return f"skipped ({self.reason})"
        return self.status.value


@dataclass(frozen=True)
class StageResult:
    stage: str
    results: Tuple[StepResult, ...]
    duration: float = 0.0
    terminated: bool = False

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in (StepStatus.OK, StepStatus.WARN, StepStatus.ERROR,
                                    StepStatus.SKIPPED, StepStatus.TERMINATED)}
        for r in self.results:
            out[r.status.value] = out.get(r.status.value, 0) + 1
        return out

    @property
    def success(self) -> bool:
        return not any(r.status is StepStatus.ERROR for r in self.results)

    def get(self, step: str) -> Optional[StepResult]:
        for r in self.results:
            if r.step == step:
                return r
        return None

    @property
    def status(self) -> str:
        if not self.success:
            return "error"
        if self.terminated:
            return "terminated"
        return "ok"
