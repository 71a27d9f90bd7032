# src/fabrun/dsl.py
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from .model import Action, Config, OnError, Stage, Step, Variant


# ---------------------------------------------------------------------
# Action helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, shell: str | None = None) -> Action:
    """Create a shell-command action."""
    return Action.command(name, cmd, shell=shell)


def uses(name: str, ref: str) -> Action:
    """Create an action that runs a built-in, e.g. uses("check", "git@untracked")."""
    return Action.builtin(name, ref)


def when(expr: str, *, run: str | None = None, uses: str | None = None, shell: str | None = None) -> Variant:
    return Variant(when=expr, run=run, uses=uses, shell=shell)


def variants(name: str, *options: Variant) -> Action:
    """
    Action with guarded alternatives; the first matching `when` runs.

        variants("build",
            when("os == 'windows'", run="build.bat"),
            when("true", run="make"),
        )
    """
    return Action.with_variants(name, list(options))


# ---------------------------------------------------------------------
# Steps and stages
# ---------------------------------------------------------------------

def step(
    action: Union[str, Action],
    *,
    name: str = "",
    requires: Optional[Sequence[str]] = None,
    onerror: Union[str, OnError] = OnError.STOP,
    if_: str | None = None,
    only: Optional[Sequence[str]] = None,
) -> Step:
    action_name = action.name if isinstance(action, Action) else action
    return Step(
        action=action_name,
        name=name,
        requires=tuple(requires or ()),
        on_error=onerror if isinstance(onerror, OnError) else OnError.parse(onerror),
        condition=if_,
        only=tuple(only or ()),
    )


def stage(name: str, *steps: Union[Step, str, Action]) -> Stage:
    """stage("pre-push", "lint", step("test", requires=["lint"]))"""
    if not steps:
        raise ValueError(f"stage({name!r}) must have at least one step")
    out: List[Step] = []
    for s in steps:
        out.append(s if isinstance(s, Step) else step(s))
    return Stage(name=name, steps=tuple(out))


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("py", ["3.11", "3.12"]).actions(
            lambda v: sh(f"test-py{v}", f"python{v} -m pytest")
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def actions(self, builder: Callable[[Any], Action]) -> List[Action]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Config helper (single-file story)
# ---------------------------------------------------------------------

def project(
    name: str,
    *,
    actions: Iterable[Union[Action, Iterable[Action]]] = (),
    stages: Iterable[Stage] = (),
    modules: Optional[List[str]] = None,
    bin_dir: str | None = None,
) -> Config:
    """
    Build a Config in python. Users can write, in fabrun.py:

        from fabrun.dsl import project, sh, stage, step

        def config():
            return project(
                "demo",
                actions=[sh("lint", "ruff check ."), sh("test", "pytest -q")],
                stages=[stage("pre-push", "lint", step("test", requires=["lint"]))],
            )
    """
    flat: List[Action] = []
    for a in actions:
        if isinstance(a, Action):
            flat.append(a)
        else:
            flat.extend(a)  # e.g. a Matrix expansion

    by_name = {}
    for a in flat:
        if a.name in by_name:
            raise ValueError(f"duplicate action name: {a.name}")
        by_name[a.name] = a

    return Config(
        project=name,
        actions=by_name,
        stages={s.name: s for s in stages},
        modules=list(modules or []),
        bin_dir=bin_dir,
    )
