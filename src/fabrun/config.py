# config.py
from __future__ import annotations

import glob
import logging
import runpy
from contextlib import contextmanager
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .dag import build_graph
from .errors import ConfigError
from .model import VALID_ONLY_LABELS, Action, Config, OnError, Stage, Step, Variant

logger = logging.getLogger(__name__)

CONFIG_NAMES = (".fabrun.yml", "fabrun.yml", ".project.yml", "project.yml")


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def find_config(start: str | Path = ".") -> Path:
    base = Path(start)
    for name in CONFIG_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"no configuration file found in {base.resolve()} (looked for {', '.join(CONFIG_NAMES)})"
    )


def load_config(path: str | Path | None = None, *, start: str | Path = ".") -> Config:
    """
    Load, merge includes and validate a configuration.

    `path` may be a YAML file or a Python workflow file; when omitted the
    first known config name under `start` is used.
    """
    cfg_path = Path(path) if path else find_config(start)
    cfg_path = cfg_path.expanduser()
    if not cfg_path.is_file():
        raise ConfigError("configuration file not found", path=str(cfg_path))

    if cfg_path.suffix == ".py":
        config = load_python_config(cfg_path)
    else:
        config = load_yaml_config(cfg_path)

    validate(config)
    return config


# ----------------------------------------------------------------------
# YAML
# ----------------------------------------------------------------------

def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"cannot read file: {exc}", path=str(path)) from exc
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        problem = getattr(exc, "problem", None) or str(exc)
        if mark is not None:
            raise ConfigError(
                f"invalid YAML: {problem}", path=str(path), line=mark.line + 1, column=mark.column + 1
            ) from exc
        raise ConfigError(f"invalid YAML: {problem}", path=str(path)) from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ConfigError("config file must contain a YAML mapping", path=str(path))
    return dict(payload)


def _include_paths(patterns: Any, base: Path, source: Path) -> List[Path]:
    if isinstance(patterns, str):
        patterns = [patterns]
    if not isinstance(patterns, list):
        raise ConfigError("'include' must be a list of paths or glob patterns", path=str(source))

    out: List[Path] = []
    seen = set()
    for pattern in patterns:
        full = Path(pattern) if Path(pattern).is_absolute() else base / pattern
        if glob.has_magic(str(pattern)):
            if not full.parent.is_dir():
                raise ConfigError(f"directory for include pattern does not exist: {full.parent}", path=str(source))
            matches = [
                Path(m) for m in sorted(glob.glob(str(full)))
                if m.lower().endswith((".yml", ".yaml"))
            ]
        else:
            if not full.is_file():
                raise ConfigError(f"included file does not exist: {full}", path=str(source))
            matches = [full]
        for m in matches:
            key = m.resolve()
            if key not in seen:
                seen.add(key)
                out.append(m)
    return out


def _collect(path: Path, chain: Tuple[Path, ...]) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
    """
    Load `path` and everything it includes.

    Returns (project, actions-by-name, stages-by-name). Included files are
    merged first and the including file last, so later definitions win.
    """
    resolved = path.resolve()
    if resolved in chain:
        cycle = " -> ".join(str(p) for p in (*chain, resolved))
        raise ConfigError(f"circular include detected: {cycle}", path=str(path))

    data = _load_yaml_mapping(path)
    project: Dict[str, Any] = {}
    actions: Dict[str, Any] = {}
    stages: Dict[str, Any] = {}

    for inc in _include_paths(data.get("include") or [], path.parent, path):
        logger.debug("including %s from %s", inc, path)
        inc_project, inc_actions, inc_stages = _collect(inc, chain + (resolved,))
        project.update(inc_project)
        actions.update(inc_actions)
        stages.update(inc_stages)

    if "project" in data:
        if not isinstance(data["project"], Mapping):
            raise ConfigError("'project' must be a mapping", path=str(path))
        project.update(data["project"])

    raw_actions = data.get("actions") or []
    if not isinstance(raw_actions, list):
        raise ConfigError("'actions' must be a list", path=str(path))
    own_names = set()
    for i, raw in enumerate(raw_actions):
        if not isinstance(raw, Mapping):
            raise ConfigError(f"action #{i} must be a mapping", path=str(path))
        name = raw.get("name")
        if not name:
            raise ConfigError(f"action #{i} is missing 'name'", path=str(path))
        if name in own_names:
            raise ConfigError(f"duplicate action name: {name}", path=str(path))
        own_names.add(name)
        actions.pop(name, None)  # replacement moves to the end
        actions[name] = (raw, path)

    raw_stages = data.get("stages") or {}
    if not isinstance(raw_stages, Mapping):
        raise ConfigError("'stages' must be a mapping of stage name to definition", path=str(path))
    for name, raw in raw_stages.items():
        stages[str(name)] = (raw, path)

    return project, actions, stages


def load_yaml_config(path: Path) -> Config:
    project, raw_actions, raw_stages = _collect(path, ())

    name = project.get("name")
    if not name:
        raise ConfigError("project name is required", path=str(path))

    modules = project.get("modules") or []
    if isinstance(modules, str):
        modules = [modules]

    actions: Dict[str, Action] = {}
    for action_name, (raw, source) in raw_actions.items():
        with _blame(source):
            actions[action_name] = parse_action(raw)

    stages: Dict[str, Stage] = {}
    for stage_name, (raw, source) in raw_stages.items():
        with _blame(source):
            stages[stage_name] = parse_stage(stage_name, raw)

    return Config(
        project=str(name),
        actions=actions,
        stages=stages,
        modules=[str(m) for m in modules],
        bin_dir=project.get("bin"),
        source=str(path),
    )


@contextmanager
def _blame(source: Optional[str | Path]):
    """Attach the file a ConfigError came from, if it has none."""
    try:
        yield
    except ConfigError as e:
        if e.path is None and source is not None:
            e.path = str(source)
        raise


def _opt_str(raw: Mapping, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None or value == "":
        return None
    return str(value)


def parse_action(raw: Mapping[str, Any]) -> Action:
    name = str(raw.get("name") or "")
    if not name:
        raise ConfigError("action name is required")

    variants = raw.get("variants")
    if variants:
        if not isinstance(variants, list):
            raise ConfigError(f"action {name}: 'variants' must be a list")
        if raw.get("run") or raw.get("uses"):
            raise ConfigError(f"action {name} has variants and cannot also have 'run' or 'uses'")
        parsed = []
        for i, v in enumerate(variants):
            if not isinstance(v, Mapping):
                raise ConfigError(f"action {name} variant {i} must be a mapping")
            when = v.get("when")
            if isinstance(when, bool):
                when = "true" if when else "false"
            parsed.append(Variant(
                when=str(when or ""),
                run=_opt_str(v, "run"),
                uses=_opt_str(v, "uses"),
                shell=_opt_str(v, "shell"),
            ))
        return Action.with_variants(name, parsed)

    run, uses = _opt_str(raw, "run"), _opt_str(raw, "uses")
    if run and uses:
        raise ConfigError(f"action {name} cannot have both 'run' and 'uses'")
    if uses:
        return Action.builtin(name, uses)
    if run:
        return Action.command(name, run, shell=_opt_str(raw, "shell"))
    raise ConfigError(f"action {name} must have either 'run', 'uses' or 'variants'")


def _as_list(value: Any, what: str) -> Tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    raise ConfigError(f"{what} must be a string or a list")


def parse_step(raw: Mapping[str, Any], stage: str = "") -> Step:
    action = raw.get("action")
    if not action:
        raise ConfigError(f"stage {stage}: every step must have an 'action'")

    requires = raw.get("require", raw.get("requires"))
    only = _as_list(raw.get("only"), f"step {action}: 'only'")
    for label in only:
        if label not in VALID_ONLY_LABELS:
            raise ConfigError(
                f"step {action} in stage {stage}: invalid 'only' label {label!r} "
                f"(valid: {', '.join(VALID_ONLY_LABELS)})"
            )

    condition = raw.get("if")
    if isinstance(condition, bool):
        condition = "true" if condition else "false"

    return Step(
        action=str(action),
        name=str(raw.get("name") or ""),
        requires=_as_list(requires, f"step {action}: 'require'"),
        on_error=OnError.parse(raw.get("onerror", raw.get("on_error"))),
        condition=str(condition) if condition not in (None, "") else None,
        only=only,
    )


def parse_stage(name: str, raw: Any) -> Stage:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"stage {name} must be a mapping with 'steps'")
    steps = raw.get("steps") or []
    if not isinstance(steps, list):
        raise ConfigError(f"stage {name}: 'steps' must be a list")
    parsed = []
    for i, s in enumerate(steps):
        if not isinstance(s, Mapping):
            raise ConfigError(f"stage {name}: step #{i} must be a mapping")
        parsed.append(parse_step(s, name))
    return Stage(name=name, steps=tuple(parsed))


# ----------------------------------------------------------------------
# Python workflows
# ----------------------------------------------------------------------

def load_python_config(path: Path) -> Config:
    """
    Load a config from a python file.

    The file must define either:
      - config() -> Config
      - CONFIG = Config(...)
    """
    wf_path = path.expanduser().resolve()
    module_name = f"fabrun_config_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    config = None
    if "config" in globals_dict and callable(globals_dict["config"]):
        config = globals_dict["config"]()
    elif "CONFIG" in globals_dict:
        config = globals_dict["CONFIG"]

    if not isinstance(config, Config):
        raise ConfigError(
            "python config must define config() -> Config or CONFIG = Config(...)",
            path=str(path),
        )
    if config.source is None:
        config.source = str(path)
    return config


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate(config: Config) -> None:
    """Raise ConfigError on the first problem found; every stage must build a graph."""
    where = config.source
    if not config.project:
        raise ConfigError("project name is required", path=where)
    if not config.actions:
        raise ConfigError("at least one action must be defined", path=where)

    for key, action in config.actions.items():
        if key != action.name:
            raise ConfigError(f"action registered as {key!r} is named {action.name!r}", path=where)

    for stage in config.stages.values():
        if not stage.steps:
            raise ConfigError(f"stage {stage.name} must have at least one step", path=where)
        for step in stage.steps:
            for label in step.only:
                if label not in VALID_ONLY_LABELS:
                    raise ConfigError(
                        f"step {step.name} in stage {stage.name}: invalid 'only' label {label!r}",
                        path=where,
                    )
        try:
            build_graph(stage, config.actions)
        except ConfigError as e:
            if e.path is None:
                e.path = where
            raise
