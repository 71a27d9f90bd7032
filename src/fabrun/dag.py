# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Set, Tuple

from .errors import ConfigError
from .model import Action, Stage, Step

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass(frozen=True)
class ExecutionGraph:
    """
    Validated dependency graph for one stage.

    Built fresh per run and read-only afterwards.
      dependencies: step -> steps it requires (declared order)
      dependents:   step -> steps that require it (declaration order)
    """
    stage: str
    order: Tuple[str, ...]
    steps: Dict[str, Step]
    actions: Dict[str, Action]
    dependencies: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    dependents: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.order)

    def action_for(self, step: str) -> Action:
        return self.actions[self.steps[step].action]

    def transitive_requires(self, step: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self.dependencies[step])
        while stack:
            name = stack.pop()
            if name not in seen:
                seen.add(name)
                stack.extend(self.dependencies[name])
        return seen

    def transitive_dependents(self, step: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self.dependents[step])
        while stack:
            name = stack.pop()
            if name not in seen:
                seen.add(name)
                stack.extend(self.dependents[name])
        return seen


def build_graph(stage: Stage, actions: Mapping[str, Action]) -> ExecutionGraph:
    """
    Build and validate the DAG for a stage.

    Raises ConfigError for duplicate step names, unknown actions, unknown
    dependencies and cycles. Deterministic for a given input.
    """
    names = stage.step_names()
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(f"duplicate step names in stage {stage.name}: {dupes}")

    steps: Dict[str, Step] = {s.name: s for s in stage.steps}
    used_actions: Dict[str, Action] = {}

    for step in stage.steps:
        action = actions.get(step.action)
        if action is None:
            raise ConfigError(f"unknown action: step {step.name!r} in stage {stage.name} references {step.action!r}")
        used_actions[step.action] = action

    dependencies: Dict[str, Tuple[str, ...]] = {}
    dependents: Dict[str, List[str]] = {n: [] for n in names}
    for step in stage.steps:
        for dep in step.requires:
            if dep not in steps:
                raise ConfigError(
                    f"unknown dependency: step {step.name!r} in stage {stage.name} requires {dep!r}. "
                    f"Known steps: {names}"
                )
        # Edge dep -> step (dep must finish before step)
        deduped = tuple(dict.fromkeys(step.requires))
        dependencies[step.name] = deduped
        for dep in deduped:
            dependents[dep].append(step.name)

    cycle = find_cycle(names, dependencies)
    if cycle:
        raise ConfigError(
            f"cycle in stage {stage.name}: {' -> '.join(cycle + [cycle[0]])}",
            cycle=cycle,
        )

    return ExecutionGraph(
        stage=stage.name,
        order=tuple(names),
        steps=steps,
        actions=used_actions,
        dependencies=dependencies,
        dependents={k: tuple(v) for k, v in dependents.items()},
    )


def find_cycle(order: List[str], dependencies: Mapping[str, Tuple[str, ...]]) -> List[str]:
    """
    Depth-first white/gray/black colouring.

    Returns the members of the first cycle found, in traversal order,
    or an empty list.
    """
    color: Dict[str, int] = {n: _WHITE for n in order}
    path: List[str] = []

    def visit(node: str) -> List[str]:
        color[node] = _GRAY
        path.append(node)
        for dep in dependencies.get(node, ()):
            if color[dep] == _GRAY:
                return path[path.index(dep):]
            if color[dep] == _WHITE:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        color[node] = _BLACK
        return []

    for name in order:
        if color[name] == _WHITE:
            found = visit(name)
            if found:
                return list(found)
    return []


def topo_levels(graph: ExecutionGraph) -> List[List[str]]:
    """
    Group steps into levels: every step in a level only requires steps
    from earlier levels. Levels keep declaration order.
    """
    indeg = {n: len(graph.dependencies[n]) for n in graph.order}
    position = {n: i for i, n in enumerate(graph.order)}
    q = deque(n for n in graph.order if indeg[n] == 0)

    levels: List[List[str]] = []
    while q:
        level = sorted(q, key=position.__getitem__)
        q.clear()
        levels.append(level)
        for node in level:
            for child in graph.dependents[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
    return levels
