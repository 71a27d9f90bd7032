# executor.py
# Runs resolved actions: shell commands through subprocess, built-ins
# through the registry. Cancellation-aware.
from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Protocol

from .actions import ActionRegistry, ResolvedAction
from .errors import Terminated
from .expr.nodes import Value
from .model import ActionKind, StepStatus
from .variables import interpolate

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

OutputCallback = Callable[[str], None]


@dataclass(frozen=True)
class Outcome:
    """What a runnable reports back: OK, WARN or ERROR plus context."""
    status: StepStatus
    message: str = ""
    exit_code: Optional[int] = None
    repro: Optional[str] = None  # command to re-run by hand


class RunnableExecutor(Protocol):
    def execute(
        self,
        step: str,
        action: ResolvedAction,
        *,
        on_output: OutputCallback,
        cancel: threading.Event,
    ) -> Outcome:
        """Run `action`; raise Terminated if `cancel` fires first."""
        ...


class ShellError(Exception):
    pass


# ----------------------------------------------------------------------
# Shell selection
# ----------------------------------------------------------------------

def shell_command(shell: Optional[str], script: str) -> List[str]:
    """
    argv for running `script`.

    Default is `sh -euc` (Windows: bash.exe if present, else cmd.exe /C).
    Raises ShellError when a requested shell is not on PATH.
    """
    if shell:
        exe = shell
        if IS_WINDOWS and not exe.lower().endswith(".exe"):
            exe += ".exe"
        if shutil.which(exe) is None:
            raise ShellError(f"shell '{shell}' not found in PATH")
        name = Path(exe).name.lower()
        if "powershell" in name or "pwsh" in name:
            return [exe, "-NoProfile", "-Command", script]
        if name.startswith("cmd"):
            return [exe, "/C", script]
        return [exe, "-euc", script]

    if IS_WINDOWS:
        if shutil.which("bash.exe"):
            return ["bash.exe", "-euc", script]
        return ["cmd.exe", "/C", script]
    return ["sh", "-euc", script]


def failure_message(command: str) -> str:
    return f"failed, to check run:\n  {command}"


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------

class ShellExecutor:
    """
    Default RunnableExecutor.

    stdout and stderr are merged and forwarded line by line. On cancel the
    process (group) gets SIGTERM, then SIGKILL after `grace_period`.
    """

    def __init__(
        self,
        registry: Optional[ActionRegistry] = None,
        *,
        working_dir: str = ".",
        env: Optional[Mapping[str, str]] = None,
        context: Optional[Mapping[str, Value]] = None,
        grace_period: float = 5.0,
        poll_interval: float = 0.05,
    ):
        self.registry = registry if registry is not None else ActionRegistry.default()
        self.working_dir = str(working_dir)
        self.env = dict(env or {})
        self.context = context or {}
        self.grace_period = grace_period
        self.poll_interval = poll_interval

    def execute(
        self,
        step: str,
        action: ResolvedAction,
        *,
        on_output: OutputCallback,
        cancel: threading.Event,
    ) -> Outcome:
        if cancel.is_set():
            raise Terminated(f"step {step} cancelled")
        if action.kind is ActionKind.BUILTIN:
            return self._run_builtin(action)
        if action.kind is ActionKind.COMMAND:
            return self._run_command(step, action, on_output, cancel)
        raise ValueError(f"cannot execute action kind {action.kind}")

    # ---- built-ins ----

    def _run_builtin(self, action: ResolvedAction) -> Outcome:
        builtin = self.registry.get(action.uses or "")
        if builtin is None:
            return Outcome(StepStatus.ERROR, f"unknown built-in action: {action.uses}")

        logger.debug("running built-in %s for action %s", action.uses, action.name)
        result = builtin.run(self.working_dir)
        # the message is the terminal line; it is not repeated as output
        return Outcome(result.status, result.message)

    # ---- shell commands ----

    def _run_command(
        self,
        step: str,
        action: ResolvedAction,
        on_output: OutputCallback,
        cancel: threading.Event,
    ) -> Outcome:
        command = interpolate(action.run or "", self.context)
        try:
            argv = shell_command(action.shell, command)
        except ShellError as e:
            return Outcome(StepStatus.ERROR, f"shell configuration error: {e}", repro=command)

        cwd = Path(self.working_dir)
        if not cwd.is_dir():
            return Outcome(StepStatus.ERROR, f"working directory not found: {cwd}", repro=command)

        env = os.environ.copy()
        env.update(self.env)

        logger.debug("step %s: %s", step, argv)
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=not IS_WINDOWS,
            )
        except OSError as e:
            return Outcome(StepStatus.ERROR, f"failed to start {argv[0]}: {e}", repro=command)

        reader = threading.Thread(
            target=_pump_lines, args=(proc, on_output), name=f"fabrun-read-{step}", daemon=True
        )
        reader.start()

        # a background child can hold stdout open after the shell itself exits
        while proc.poll() is None or reader.is_alive():
            if cancel.wait(self.poll_interval):
                self._stop(proc, reader)
                raise Terminated(f"step {step} terminated")

        if proc.returncode == 0:
            return Outcome(StepStatus.OK, exit_code=0)
        return Outcome(
            StepStatus.ERROR,
            failure_message(command),
            exit_code=proc.returncode,
            repro=command,
        )

    def _stop(self, proc: subprocess.Popen, reader: threading.Thread) -> None:
        """
        Terminate the whole process group, then kill it after the grace period.

        The group is gone once the output pipe closes, so the reader is the
        signal to wait on, not the shell alone.
        """
        logger.debug("terminating process group of pid %s", proc.pid)
        _signal(proc, signal.SIGTERM)
        reader.join(timeout=self.grace_period)
        if reader.is_alive() or proc.poll() is None:
            logger.debug("pid %s ignored SIGTERM, killing", proc.pid)
            _signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            reader.join(timeout=self.grace_period)
        proc.wait()


def _signal(proc: subprocess.Popen, sig: int) -> None:
    if IS_WINDOWS:
        if sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
        return
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass  # already gone


def _pump_lines(proc: subprocess.Popen, on_output: OutputCallback) -> None:
    assert proc.stdout is not None
    with proc.stdout:
        for line in proc.stdout:
            on_output(line.rstrip("\r\n"))

