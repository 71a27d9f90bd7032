# scheduler.py
from __future__ import annotations

import bisect
import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Mapping, Optional, Set

from .actions import ResolvedAction, resolve_action
from .dag import ExecutionGraph
from .errors import EvaluationError, ExecutionError, Terminated
from .executor import Outcome, RunnableExecutor
from .expr import evaluate_condition
from .expr.nodes import Value
from .model import OnError, StageResult, Step, StepResult, StepStatus
from .output import Event, StepFinished, StepOutput, StepStarted

logger = logging.getLogger(__name__)

CONDITION_NOT_MET = "condition not met"
NO_MATCHING_VARIANT = "no matching variant"
CANCELLED_BEFORE_START = "cancelled before start"

# how often the dispatch loop wakes up to look at the cancel flag
_WAKEUP = 0.1


def default_parallelism() -> int:
    return os.cpu_count() or 1


class Scheduler:
    """
    Continuous DAG scheduler for one stage.

    A step is dispatched as soon as every step it requires is terminal;
    there are no waves. Eligibility (`only` / `if`) and variant selection
    happen in the dispatch loop, so a skipped step never enters running.
    At most `max_parallel` steps are in flight.

    Every lifecycle transition goes out through `emit`; the scheduler has
    no display logic of its own.
    """

    def __init__(
        self,
        graph: ExecutionGraph,
        executor: RunnableExecutor,
        *,
        context: Mapping[str, Value],
        emit: Callable[[Event], None],
        max_parallel: Optional[int] = None,
        labels: Optional[Set[str]] = None,
        strict: bool = False,
        working_dir: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.graph = graph
        self.executor = executor
        self.context = context
        self.emit = emit
        self.max_parallel = max(1, max_parallel or default_parallelism())
        self.labels = labels  # None: no labels known, steps with `only` are skipped
        self.strict = strict
        self.working_dir = working_dir
        self.cancel = cancel or threading.Event()

        self._position = {name: i for i, name in enumerate(graph.order)}
        self._results: Dict[str, StepResult] = {}
        self._waiting: Dict[str, Set[str]] = {n: set(graph.dependencies[n]) for n in graph.order}
        self._blocked_by: Dict[str, str] = {}
        self._ready: List[int] = []  # positions, kept sorted

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def run(self) -> StageResult:
        t0 = time.monotonic()
        for name in self.graph.order:
            if not self._waiting[name]:
                self._push_ready(name)

        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="fabrun-step") as pool:
            while not self.cancel.is_set():
                # launch everything that is ready, up to the limit
                while self._ready and len(in_flight) < self.max_parallel and not self.cancel.is_set():
                    name = self.graph.order[self._ready.pop(0)]
                    self._dispatch(name, pool, in_flight)

                if not in_flight:
                    if self._ready:
                        continue
                    break

                done, _ = wait(list(in_flight), timeout=_WAKEUP, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: self._position[in_flight[f]]):
                    name = in_flight.pop(fut)
                    self._finish(self._collect(name, fut))

            if self.cancel.is_set():
                logger.debug("stage %s cancelled with %d step(s) in flight", self.graph.stage, len(in_flight))
                if in_flight:
                    wait(list(in_flight))
                    for fut in sorted(in_flight, key=lambda f: self._position[in_flight[f]]):
                        self._finish(self._collect(in_flight[fut], fut))
                    in_flight.clear()

        for name in self.graph.order:
            if name not in self._results:
                step = self.graph.steps[name]
                self._finish(StepResult(
                    step=name,
                    action=step.action,
                    status=StepStatus.TERMINATED,
                    message=CANCELLED_BEFORE_START,
                ))

        return StageResult(
            stage=self.graph.stage,
            results=tuple(self._results[n] for n in self.graph.order),
            duration=time.monotonic() - t0,
            terminated=self.cancel.is_set(),
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _push_ready(self, name: str) -> None:
        bisect.insort(self._ready, self._position[name])

    def _dispatch(self, name: str, pool: ThreadPoolExecutor, in_flight: Dict[Future, str]) -> None:
        step = self.graph.steps[name]

        blocker = self._blocking_failure(name)
        if blocker is not None:
            self._blocked_by[name] = blocker
            logger.debug("skip %s: required step %s failed", name, blocker)
            self._finish(self._skipped(step, blocker, f"required step {blocker} failed"))
            return

        try:
            eligible = self._eligible(step)
        except EvaluationError as e:
            logger.debug("step %s: condition error: %s", name, e)
            self._finish(self._failed(step, str(e), e))
            return
        if not eligible:
            logger.debug("skip %s: %s", name, CONDITION_NOT_MET)
            self._finish(self._skipped(step, CONDITION_NOT_MET))
            return

        try:
            resolved = resolve_action(
                self.graph.action_for(name),
                self.context,
                strict=self.strict,
                working_dir=self.working_dir,
            )
        except EvaluationError as e:
            logger.debug("step %s: variant guard error: %s", name, e)
            self._finish(self._failed(step, str(e), e))
            return
        if resolved is None:
            logger.debug("skip %s: %s", name, NO_MATCHING_VARIANT)
            self._finish(self._skipped(step, NO_MATCHING_VARIANT))
            return

        logger.debug("launch %s (%s)", name, resolved.target)
        self.emit(StepStarted(name))
        fut = pool.submit(self._run_step, step, resolved)
        in_flight[fut] = name

    def _blocking_failure(self, name: str) -> Optional[str]:
        """Root failing step behind any required step, in `requires` order."""
        for dep in self.graph.dependencies[name]:
            result = self._results[dep]
            if result.status is StepStatus.ERROR:
                return dep
            if dep in self._blocked_by:
                return self._blocked_by[dep]
        return None

    def _eligible(self, step: Step) -> bool:
        if step.only:
            if not self.labels or not self.labels.intersection(step.only):
                return False
        if step.condition:
            return evaluate_condition(
                step.condition,
                self.context,
                strict=self.strict,
                working_dir=self.working_dir,
            )
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run_step(self, step: Step, action: ResolvedAction) -> StepResult:
        t0 = time.monotonic()
        lines: List[str] = []

        def on_output(line: str) -> None:
            lines.append(line)
            self.emit(StepOutput(step.name, line))

        try:
            outcome = self.executor.execute(step.name, action, on_output=on_output, cancel=self.cancel)
        except Terminated as e:
            return StepResult(
                step=step.name,
                action=step.action,
                status=StepStatus.TERMINATED,
                message="terminated",
                duration=time.monotonic() - t0,
                output=tuple(lines),
                error=e,
            )
        except Exception as e:
            logger.debug("executor raised for step %s", step.name, exc_info=True)
            outcome = Outcome(StepStatus.ERROR, f"{type(e).__name__}: {e}")

        return self._from_outcome(step, outcome, tuple(lines), time.monotonic() - t0)

    def _from_outcome(self, step: Step, outcome: Outcome, lines, duration: float) -> StepResult:
        status = outcome.status
        error = None
        if status is StepStatus.ERROR:
            error = ExecutionError(
                step=step.name,
                action=step.action,
                message=outcome.message,
                output=list(lines),
                exit_code=outcome.exit_code,
            )
            if step.on_error is OnError.WARN:
                status = StepStatus.WARN
        return StepResult(
            step=step.name,
            action=step.action,
            status=status,
            message=outcome.message,
            duration=duration,
            output=lines,
            error=error,
            exit_code=outcome.exit_code,
            repro=outcome.repro,
        )

    def _collect(self, name: str, fut: Future) -> StepResult:
        try:
            return fut.result()
        except Exception as e:
            # _run_step maps executor errors itself; this is a bug in fabrun
            logger.debug("worker for %s crashed", name, exc_info=True)
            return self._failed(self.graph.steps[name], f"internal error: {e}", e)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _skipped(self, step: Step, reason: str, message: str = "") -> StepResult:
        return StepResult(
            step=step.name,
            action=step.action,
            status=StepStatus.SKIPPED,
            message=message,
            reason=reason,
        )

    def _failed(self, step: Step, message: str, error: BaseException) -> StepResult:
        status = StepStatus.WARN if step.on_error is OnError.WARN else StepStatus.ERROR
        return StepResult(
            step=step.name,
            action=step.action,
            status=status,
            message=message,
            error=error,
        )

    def _finish(self, result: StepResult) -> None:
        name = result.step
        self._results[name] = result
        logger.debug("step %s -> %s", name, result.status.value)
        self.emit(StepFinished(result))

        for child in self.graph.dependents[name]:
            waiting = self._waiting[child]
            waiting.discard(name)
            if not waiting and child not in self._results:
                self._push_ready(child)
