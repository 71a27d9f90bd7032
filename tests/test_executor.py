"""Tests for the shell executor. Uses sh, so POSIX only."""

import sys
import threading
import time

import pytest

from fabrun.actions import ActionRegistry, BuiltinAction, BuiltinResult, ResolvedAction
from fabrun.errors import Terminated
from fabrun.executor import ShellExecutor, shell_command
from fabrun.model import ActionKind, StepStatus

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses sh")


def command(run, shell=None):
    return ResolvedAction("act", ActionKind.COMMAND, run=run, shell=shell)


def run(executor, action, cancel=None):
    lines = []
    outcome = executor.execute("step", action, on_output=lines.append, cancel=cancel or threading.Event())
    return outcome, lines


def test_success_streams_merged_output(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, lines = run(ex, command("echo out; echo err 1>&2; echo done"))
    assert outcome.status is StepStatus.OK
    assert outcome.exit_code == 0
    assert lines == ["out", "err", "done"]


def test_failure_carries_reproduction(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, _ = run(ex, command("exit 3"))
    assert outcome.status is StepStatus.ERROR
    assert outcome.exit_code == 3
    assert outcome.message == "failed, to check run:\n  exit 3"
    assert outcome.repro == "exit 3"


def test_shell_is_strict(tmp_path):
    # -e: the first failing command stops the script
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, lines = run(ex, command("false; echo unreachable"))
    assert outcome.status is StepStatus.ERROR
    assert "unreachable" not in lines


def test_interpolation_and_env(tmp_path):
    ex = ShellExecutor(
        ActionRegistry(),
        working_dir=str(tmp_path),
        env={"GREETING": "hi"},
        context={"platform": "linux", "cpu": 4},
    )
    # unknown placeholders are left as written, so keep sh from expanding them
    outcome, lines = run(ex, command("echo \"${{ platform }} ${{cpu}} $GREETING\" '${{ unknown }}'"))
    assert outcome.status is StepStatus.OK
    assert lines == ["linux 4 hi ${{ unknown }}"]


def test_runs_in_working_dir(tmp_path):
    (tmp_path / "marker.txt").write_text("x")
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    _, lines = run(ex, command("ls"))
    assert "marker.txt" in lines


def test_missing_shell_is_an_error_result(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, _ = run(ex, command("echo hi", shell="definitely-not-a-shell"))
    assert outcome.status is StepStatus.ERROR
    assert "not found" in outcome.message


def test_cancel_terminates_process(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path), grace_period=2.0)
    cancel = threading.Event()
    threading.Timer(0.2, cancel.set).start()

    t0 = time.monotonic()
    with pytest.raises(Terminated):
        run(ex, command("echo started; sleep 30"), cancel)
    assert time.monotonic() - t0 < 10


def test_cancel_reaches_background_children(tmp_path):
    # the shell exits at once; sleep keeps stdout open
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path), grace_period=1.0)
    cancel = threading.Event()
    threading.Timer(0.3, cancel.set).start()

    t0 = time.monotonic()
    with pytest.raises(Terminated):
        run(ex, command("sleep 5 & echo started"), cancel)
    assert time.monotonic() - t0 < 3


def test_waits_for_output_of_background_children(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, lines = run(ex, command("(sleep 0.2; echo late) & echo early"))
    assert outcome.status is StepStatus.OK
    assert lines == ["early", "late"]


def test_builtin_message_is_reported_once(tmp_path):
    registry = ActionRegistry([
        BuiltinAction("demo@warn", "demo", lambda wd: BuiltinResult(StepStatus.WARN, "line one\nline two")),
    ])
    ex = ShellExecutor(registry, working_dir=str(tmp_path))
    outcome, lines = run(ex, ResolvedAction("act", ActionKind.BUILTIN, uses="demo@warn"))
    assert outcome.status is StepStatus.WARN
    assert outcome.message == "line one\nline two"
    assert lines == []


def test_unknown_builtin(tmp_path):
    ex = ShellExecutor(ActionRegistry(), working_dir=str(tmp_path))
    outcome, _ = run(ex, ResolvedAction("act", ActionKind.BUILTIN, uses="nope@nope"))
    assert outcome.status is StepStatus.ERROR
    assert "nope@nope" in outcome.message


def test_default_shell_command():
    assert shell_command(None, "make") == ["sh", "-euc", "make"]
    assert shell_command("sh", "make")[1:] == ["-euc", "make"]
