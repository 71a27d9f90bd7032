# runner.py
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set, Tuple

from . import platform as platform_facts
from . import version as project_version
from .actions import ActionRegistry
from .dag import ExecutionGraph, build_graph
from .errors import ConfigError
from .executor import RunnableExecutor, ShellExecutor
from .expr.nodes import Value
from .git_facts.git import GitError, current_branch
from .model import Config, StageResult, Stage, Step
from .output import OrderedOutputCoordinator, ProgressSink
from .scheduler import Scheduler, default_parallelism
from .variables import build_context

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    config_path: Optional[str] = None
    max_parallel: int = field(default_factory=default_parallelism)
    verbose: bool = True
    debug: bool = False
    variables: Dict[str, str] = field(default_factory=dict)   # --var, highest priority
    env: Dict[str, str] = field(default_factory=dict)         # exported to commands
    inputs: Dict[str, Value] = field(default_factory=dict)
    matrix: Dict[str, Value] = field(default_factory=dict)
    working_dir: str = "."
    only: List[str] = field(default_factory=list)
    with_requires: bool = False
    strict: bool = False


class Runner:
    """
    Runs stages, single steps and single actions from a loaded Config.

    Every run builds its graph and expression context fresh.
    """

    def __init__(
        self,
        config: Config,
        options: Optional[RunOptions] = None,
        registry: Optional[ActionRegistry] = None,
        *,
        sink: Optional[ProgressSink] = None,
        executor: Optional[RunnableExecutor] = None,
    ):
        self.config = config
        self.options = options or RunOptions()
        self.registry = registry or ActionRegistry.default()
        self.sink = sink
        self.executor = executor

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def stage_graph(self, name: str) -> ExecutionGraph:
        stage = self.config.get_stage(name)
        if stage is None:
            raise ConfigError(f"stage not found: {name}. Available: {sorted(self.config.stages)}")
        return build_graph(stage, self.config.actions)

    def run_stage(self, name: str, cancel: Optional[threading.Event] = None) -> StageResult:
        return self._execute(self.stage_graph(name), cancel)

    def run_stage_step(self, stage_name: str, step_name: str, cancel: Optional[threading.Event] = None) -> StageResult:
        """
        Run one step of a stage.

        With `with_requires` the step's transitive requirements run too;
        otherwise the step runs alone and its requirements are ignored.
        """
        graph = self.stage_graph(stage_name)
        if step_name not in graph.steps:
            raise ConfigError(f"step {step_name} not found in stage {stage_name}. Available: {list(graph.order)}")

        if self.options.with_requires:
            wanted = graph.transitive_requires(step_name) | {step_name}
            steps = tuple(graph.steps[n] for n in graph.order if n in wanted)
        else:
            steps = (replace(graph.steps[step_name], requires=()),)

        sub = Stage(name=stage_name, steps=steps)
        return self._execute(build_graph(sub, self.config.actions), cancel)

    def run_action(self, name: str, cancel: Optional[threading.Event] = None) -> StageResult:
        if self.config.get_action(name) is None:
            raise ConfigError(f"action not found: {name}")
        stage = Stage(name=f"action:{name}", steps=(Step(action=name),))
        return self._execute(build_graph(stage, self.config.actions), cancel)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def collect_facts(self) -> Tuple[Dict[str, Value], Optional[project_version.ProjectVersion]]:
        wd = self.options.working_dir
        facts: Dict[str, Value] = {"ci": bool(os.environ.get("CI"))}
        try:
            facts["branch"] = current_branch(wd)
        except GitError as e:
            logger.debug("branch unknown: %s", e)
            facts["branch"] = ""

        found = project_version.detect(wd)
        if found is not None:
            facts.update(found.variables())
        return facts, found

    def build_context(self, facts: Mapping[str, Value]) -> Mapping[str, Value]:
        env = dict(os.environ)
        env.update(self.options.env)
        return build_context(
            platform=platform_facts.detect().as_dict(),
            facts=facts,
            env=env,
            inputs=self.options.inputs,
            matrix=self.options.matrix,
            overrides=self.options.variables,
        )

    def active_labels(self, found: Optional[project_version.ProjectVersion]) -> Optional[Set[str]]:
        if self.options.only:
            return set(self.options.only)
        if found is None:
            return None
        return set(found.labels)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, graph: ExecutionGraph, cancel: Optional[threading.Event]) -> StageResult:
        cancel = cancel or threading.Event()
        facts, found = self.collect_facts()
        context = self.build_context(facts)
        working_dir = str(Path(self.options.working_dir).resolve())

        executor = self.executor or ShellExecutor(
            self.registry,
            working_dir=working_dir,
            env=self.options.env,
            context=context,
        )
        sink = self.sink
        if sink is None:
            from .ui.console import get_console
            sink = get_console()

        logger.debug("running %s: %d steps, max_parallel=%d", graph.stage, len(graph), self.options.max_parallel)
        with OrderedOutputCoordinator(graph.order, sink) as coordinator:
            scheduler = Scheduler(
                graph,
                executor,
                context=context,
                emit=coordinator.emit,
                max_parallel=self.options.max_parallel,
                labels=self.active_labels(found),
                strict=self.options.strict,
                working_dir=working_dir,
                cancel=cancel,
            )
            return scheduler.run()
