"""Console output formatting for fabrun."""

from __future__ import annotations

import sys
import traceback
from typing import Dict, List, Optional, TextIO

from ..model import StageResult, StepResult, StepStatus

ICONS: Dict[StepStatus, str] = {
    StepStatus.OK: "✓",
    StepStatus.WARN: "!",
    StepStatus.ERROR: "✗",
    StepStatus.SKIPPED: "→",
    StepStatus.TERMINATED: "■",
}

SUMMARY_ORDER = (StepStatus.ERROR, StepStatus.WARN, StepStatus.OK, StepStatus.SKIPPED, StepStatus.TERMINATED)

# lines of captured output shown under a failed step in quiet mode
QUIET_TAIL = 20


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


class Console:
    """
    Centralized console output.

    Also the default ProgressSink: the output coordinator calls show_start,
    show_output and show_terminal from a single thread, in declaration order.
    """

    def __init__(self, verbose: bool = True, debug: bool = False, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        """
        Args:
            verbose: stream step output as it is produced
            debug: show tracebacks for errors
            out: progress stream (defaults to stdout)
            err: error stream (defaults to stderr)
        """
        self.verbose = verbose
        self.debug = debug
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err or sys.stderr

    def _print(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    # ---- stage framing ----

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}")
        self._print("-" * len(title))

    def print_stage_started(self, project: str, stage: str, step_count: int, max_parallel: int) -> None:
        self._print(f"\n▶ {project}: running stage '{stage}' ({step_count} steps, max parallel {max_parallel})")
        self._print()

    def print_summary(self, result: StageResult) -> None:
        self.print_header("SUMMARY")
        counts = result.counts()
        for status in SUMMARY_ORDER:
            n = counts.get(status.value, 0)
            if n or status is not StepStatus.TERMINATED:
                self._print(f"  {ICONS[status]} {status.value:<11}{n}")

        if not result.success:
            verdict = "FAILED"
        elif result.terminated:
            verdict = "TERMINATED"
        else:
            verdict = "SUCCESS"
        self._print(f"\n{verdict} stage '{result.stage}' in {format_duration(result.duration)}")

    # ---- ProgressSink ----

    def show_start(self, step: str, *, ran: bool) -> None:
        if not ran:
            return  # the terminal line says it all
        if self.verbose:
            self._print(f"> {step}")
        else:
            self._print(f"○ {step}")

    def show_output(self, step: str, line: str) -> None:
        if self.verbose:
            self._print(f"    {line}")

    def show_terminal(self, result: StepResult) -> None:
        icon = ICONS.get(result.status, "?")
        lines = self._describe(result)

        head = f"{icon} {result.step}"
        if lines:
            head += f"  {lines[0]}"
        if result.status is not StepStatus.SKIPPED and result.duration:
            head += f"  ({format_duration(result.duration)})"
        self._print(head)
        for extra in lines[1:]:
            self._print(f"    {extra}")

        if result.status is StepStatus.ERROR and not self.verbose and result.output:
            for line in result.output[-QUIET_TAIL:]:
                self._print(f"    | {line}")

    def _describe(self, result: StepResult) -> List[str]:
        if result.status is StepStatus.SKIPPED:
            text = result.message or result.reason or ""
            return [f"skipped ({text})" if text else "skipped"]
        if result.status is StepStatus.OK and not result.message:
            return []
        text = result.describe()
        lines = text.splitlines() or [text]
        if result.repro and result.repro not in text:
            lines.append(f"to check run: {result.repro}")
        return lines

    # ---- errors / misc ----

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=self.err)
        print(f"{message}", file=self.err)
        if details:
            for detail in details:
                print(f"  {detail}", file=self.err)
        if suggestion:
            print(f"\n{suggestion}", file=self.err)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=self.err)
        else:
            print(f"Error: {exc}", file=self.err)

    def print_info(self, message: str) -> None:
        self._print(message)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
