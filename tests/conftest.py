"""Test configuration and fixtures."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pytest

from fabrun.dag import ExecutionGraph, build_graph
from fabrun.errors import Terminated
from fabrun.executor import Outcome
from fabrun.model import Action, OnError, Stage, Step, StepResult, StepStatus
from fabrun.output import OrderedOutputCoordinator
from fabrun.scheduler import Scheduler


class RecordingSink:
    """ProgressSink that records what would have been shown."""

    def __init__(self):
        self.events: List[Tuple] = []

    def show_start(self, step: str, *, ran: bool) -> None:
        self.events.append(("start", step, ran))

    def show_output(self, step: str, line: str) -> None:
        self.events.append(("output", step, line))

    def show_terminal(self, result: StepResult) -> None:
        self.events.append(("terminal", result.step, result.status))

    def starts(self) -> List[str]:
        return [e[1] for e in self.events if e[0] == "start"]

    def terminals(self) -> List[str]:
        return [e[1] for e in self.events if e[0] == "terminal"]

    def steps_in_order(self) -> List[str]:
        """Step names in the order they first appeared."""
        seen: List[str] = []
        for e in self.events:
            if e[1] not in seen:
                seen.append(e[1])
        return seen


@dataclass
class Script:
    """One scripted reply for FakeExecutor."""
    status: StepStatus = StepStatus.OK
    lines: Tuple[str, ...] = ()
    delay: float = 0.0
    message: str = ""
    block: bool = False  # run until cancelled


class FakeExecutor:
    """
    In-memory RunnableExecutor driven by per-step scripts.

    Records start/finish order and peak concurrency.
    """

    def __init__(self, scripts: Optional[Dict[str, Script]] = None):
        self.scripts = dict(scripts or {})
        self.started: List[str] = []
        self.finished: List[str] = []
        self.running: set = set()
        self.max_running = 0
        self.log: List[Tuple[str, str]] = []
        self.resolved: Dict[str, object] = {}
        self.all_blocked = threading.Event()
        self._lock = threading.Lock()

    def execute(self, step, action, *, on_output, cancel) -> Outcome:
        script = self.scripts.get(step, Script())
        with self._lock:
            self.started.append(step)
            self.log.append(("start", step))
            self.resolved[step] = action
            self.running.add(step)
            self.max_running = max(self.max_running, len(self.running))
            blocking = [n for n, s in self.scripts.items() if s.block]
            if blocking and all(n in self.running for n in blocking):
                self.all_blocked.set()
        try:
            for line in script.lines:
                on_output(line)
            if script.block:
                cancel.wait()
                raise Terminated(f"step {step} terminated")
            if cancel.wait(script.delay):
                raise Terminated(f"step {step} terminated")
            code = 0 if script.status is StepStatus.OK else 1
            return Outcome(script.status, script.message, exit_code=code)
        finally:
            with self._lock:
                self.running.discard(step)
                self.finished.append(step)
                self.log.append(("end", step))


def make_stage(name: str, *steps: Tuple) -> Tuple[Stage, Dict[str, Action]]:
    """
    make_stage("s", ("A",), ("B", ["A"]), ("C", ["A"], "warn"))

    Each step runs an action of the same name that echoes it.
    """
    built = []
    actions: Dict[str, Action] = {}
    for entry in steps:
        step_name = entry[0]
        requires = tuple(entry[1]) if len(entry) > 1 else ()
        on_error = OnError(entry[2]) if len(entry) > 2 else OnError.STOP
        built.append(Step(action=step_name, requires=requires, on_error=on_error))
        actions[step_name] = Action.command(step_name, f"echo {step_name}")
    return Stage(name, tuple(built)), actions


def run_scheduler(
    graph: ExecutionGraph,
    executor,
    *,
    context=None,
    max_parallel: int = 4,
    labels=None,
    cancel: Optional[threading.Event] = None,
):
    sink = RecordingSink()
    coordinator = OrderedOutputCoordinator(graph.order, sink)
    with coordinator:
        result = Scheduler(
            graph,
            executor,
            context=context or {},
            emit=coordinator.emit,
            max_parallel=max_parallel,
            labels=labels,
            cancel=cancel,
        ).run()
    return result, sink


@pytest.fixture
def diamond() -> ExecutionGraph:
    """A -> (B, C) -> D"""
    stage, actions = make_stage("build", ("A",), ("B", ["A"]), ("C", ["A"]), ("D", ["B", "C"]))
    return build_graph(stage, actions)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
