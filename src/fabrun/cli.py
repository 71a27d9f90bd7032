# cli.py
from __future__ import annotations

import signal
import sys
import threading
from contextlib import contextmanager
from typing import Callable, Optional

import click

from . import __version__
from .actions import ActionRegistry
from .config import load_config
from .dag import build_graph, topo_levels
from .errors import ConfigError, FabrunError
from .log import configure_logging
from .model import ActionKind, Config, StageResult
from .runner import Runner, RunOptions
from .scheduler import default_parallelism
from .ui.console import Console, get_console, set_console
from .variables import parse_assignments

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_TERMINATED = 130


@contextmanager
def cancel_on_signals(cancel: threading.Event):
    """
    SIGINT/SIGTERM set `cancel` so running steps get terminated and
    reported. A second SIGINT aborts immediately.
    """
    console = get_console()

    def handler(signum, frame):
        if cancel.is_set() and signum == signal.SIGINT:
            raise KeyboardInterrupt
        console.print_info(f"\nReceived signal {signum}, terminating running steps...")
        cancel.set()

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    for sig in previous:
        signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _load(ctx) -> Config:
    return load_config(ctx.obj["config_path"], start=ctx.obj["options"].working_dir)


def _exit_code(result: StageResult) -> int:
    if not result.success:
        return EXIT_FAILED
    if result.terminated:
        return EXIT_TERMINATED
    return EXIT_OK


def _run(ctx, title: str, count_steps: Callable[[Runner], int], fn: Callable[[Runner, threading.Event], StageResult]) -> None:
    console = get_console()
    options: RunOptions = ctx.obj["options"]
    try:
        config = _load(ctx)
        runner = Runner(config, options)
        console.print_stage_started(config.project, title, count_steps(runner), options.max_parallel)

        cancel = threading.Event()
        with cancel_on_signals(cancel):
            result = fn(runner, cancel)
        console.print_summary(result)
        sys.exit(_exit_code(result))

    except ConfigError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_TERMINATED)
    except FabrunError as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)


# ----------------------------------------------------------------------
# Group
# ----------------------------------------------------------------------

@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Config file (defaults to .fabrun.yml, fabrun.yml, .project.yml, project.yml)")
@click.option("--verbose/--quiet", "-v/-q", default=True, help="Stream step output (default) or only show status lines")
@click.option("-d", "--debug", is_flag=True, default=False, help="Enable debug logging and tracebacks")
@click.option("--max-parallel", type=click.IntRange(min=1), default=None, help="Maximum concurrently running steps (default: CPU count)")
@click.option("-w", "--working-dir", default=".", show_default=True, help="Directory commands run in")
@click.option("--only", multiple=True, help="Active 'only' labels (release, prerelease, major, minor, patch)")
@click.option("--with-requires", is_flag=True, default=False, help="When running one step, also run what it requires")
@click.option("--env", "env_pairs", multiple=True, metavar="KEY=VALUE", help="Export an environment variable to commands")
@click.option("--var", "var_pairs", multiple=True, metavar="KEY=VALUE", help="Override an expression variable")
@click.option("--strict", is_flag=True, default=False, help="Unknown variables in expressions are errors")
@click.version_option(__version__, prog_name="fabrun")
@click.pass_context
def cli(ctx, config_path, verbose, debug, max_parallel, working_dir, only, with_requires, env_pairs, var_pairs, strict):
    """fabrun: dependency-aware task runner with ordered output."""
    console = Console(verbose=verbose, debug=debug)
    set_console(console)
    configure_logging(debug)

    try:
        env = parse_assignments(env_pairs, what="--env value")
        variables = parse_assignments(var_pairs, what="--var value")
    except ValueError as e:
        raise click.BadParameter(str(e)) from None

    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path
    ctx.obj["options"] = RunOptions(
        config_path=config_path,
        max_parallel=max_parallel or default_parallelism(),
        verbose=verbose,
        debug=debug,
        variables=variables,
        env=env,
        working_dir=working_dir,
        only=list(only),
        with_requires=with_requires,
        strict=strict,
    )


# ----------------------------------------------------------------------
# Running
# ----------------------------------------------------------------------

@cli.command()
@click.argument("stage")
@click.argument("step", required=False)
@click.pass_context
def run(ctx, stage, step):
    """Run STAGE, or only STEP of it."""
    if step:
        def count(r: Runner) -> int:
            graph = r.stage_graph(stage)
            if not r.options.with_requires or step not in graph.steps:
                return 1
            return len(graph.transitive_requires(step)) + 1

        _run(ctx, f"{stage}/{step}", count, lambda r, cancel: r.run_stage_step(stage, step, cancel))
    else:
        _run(
            ctx,
            stage,
            lambda r: len(r.stage_graph(stage)),
            lambda r, cancel: r.run_stage(stage, cancel),
        )


@cli.command()
@click.argument("name")
@click.pass_context
def action(ctx, name):
    """Run a single action NAME."""
    _run(ctx, f"action:{name}", lambda r: 1, lambda r, cancel: r.run_action(name, cancel))


# ----------------------------------------------------------------------
# Inspection
# ----------------------------------------------------------------------

def _inspect(ctx, fn: Callable[[Config], None]) -> None:
    console = get_console()
    try:
        fn(_load(ctx))
    except ConfigError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_FAILED)


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the configuration."""
    def show(config: Config) -> None:
        console = get_console()
        console.print_info(f"Configuration is valid: {config.source}")
        console.print_info(f"Project: {config.project}")
        console.print_info(f"Actions: {len(config.actions)}")
        console.print_info(f"Stages: {len(config.stages)}")

    _inspect(ctx, show)


@cli.command("list-actions")
@click.pass_context
def list_actions(ctx):
    """List defined actions and available built-ins."""
    def show(config: Config) -> None:
        console = get_console()
        console.print_header("Defined actions")
        if not config.actions:
            console.print_info("  No actions defined")
        for a in config.actions.values():
            if a.kind is ActionKind.COMMAND:
                detail = a.run.splitlines()[0] if a.run else ""
            elif a.kind is ActionKind.BUILTIN:
                detail = f"uses {a.uses}"
            else:
                detail = f"{len(a.variants)} variant(s)"
            console.print_info(f"  {a.name:<24} {detail}")

        console.print_header("Built-in actions")
        for name, description in ActionRegistry.default().list_actions().items():
            console.print_info(f"  {name:<24} {description}")

    _inspect(ctx, show)


@cli.command("list-stages")
@click.pass_context
def list_stages(ctx):
    """List defined stages."""
    def show(config: Config) -> None:
        console = get_console()
        console.print_header("Defined stages")
        if not config.stages:
            console.print_info("  No stages defined")
        for s in config.stages.values():
            console.print_info(f"  {s.name:<24} {len(s.steps)} step(s)")

    _inspect(ctx, show)


@cli.command("list-steps")
@click.argument("stage")
@click.option("-g", "--graph", "as_graph", is_flag=True, default=False, help="Show steps as a dependency tree")
@click.pass_context
def list_steps(ctx, stage, as_graph):
    """List the steps of STAGE."""
    def show(config: Config) -> None:
        console = get_console()
        st = config.get_stage(stage)
        if st is None:
            raise ConfigError(f"stage not found: {stage}. Available: {sorted(config.stages)}")
        graph = build_graph(st, config.actions)

        if not as_graph:
            console.print_header(f"Steps in stage '{stage}'")
            for s in st.steps:
                extra = []
                if s.requires:
                    extra.append(f"requires: {', '.join(s.requires)}")
                if s.on_error.value != "stop":
                    extra.append(f"onerror: {s.on_error.value}")
                if s.condition:
                    extra.append(f"if: {s.condition}")
                if s.only:
                    extra.append(f"only: {', '.join(s.only)}")
                suffix = f" ({'; '.join(extra)})" if extra else ""
                console.print_info(f"  {s.name}{suffix}")
            return

        console.print_header(f"Dependency graph for stage '{stage}'")
        for i, name in enumerate(graph.order, start=1):
            deps = graph.dependencies[name]
            console.print_info(f"  {i:2d}. {name}")
            for j, dep in enumerate(deps):
                branch = "└──" if j == len(deps) - 1 else "├──"
                console.print_info(f"      {branch} {dep}")
        levels = topo_levels(graph)
        console.print_info("")
        console.print_info("Execution levels:")
        for n, level in enumerate(levels, start=1):
            console.print_info(f"  {n}: {', '.join(level)}")

    _inspect(ctx, show)


def main(argv: Optional[list[str]] = None) -> None:
    cli.main(args=argv, prog_name="fabrun")


if __name__ == "__main__":
    main()
