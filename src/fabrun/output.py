# output.py
"""
Ordered output coordinator.

Steps run concurrently, but what the user sees follows declaration order:
only the active step streams live, everybody else is buffered until their
turn. Workers never talk to the presentation layer directly; they post
events, and a single presentation thread drains them in order.

    coordinator = OrderedOutputCoordinator(["lint", "test"], console)
    coordinator.start()
    coordinator.emit(StepStarted("test"))     # buffered, lint is active
    ...
    coordinator.close()
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Union

from .model import StepResult, StepStatus

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Lifecycle events (scheduler -> coordinator)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepStarted:
    step: str


@dataclass(frozen=True)
class StepOutput:
    step: str
    line: str


@dataclass(frozen=True)
class StepFinished:
    result: StepResult

    @property
    def step(self) -> str:
        return self.result.step


Event = Union[StepStarted, StepOutput, StepFinished]


class ProgressSink(Protocol):
    """
    Presentation layer fed by the coordinator.

    For every step, in declaration order: one show_start, zero or more
    show_output, one show_terminal. `ran` is False for steps that never
    entered running (skipped, or terminated before start).
    """

    def show_start(self, step: str, *, ran: bool) -> None: ...

    def show_output(self, step: str, line: str) -> None: ...

    def show_terminal(self, result: StepResult) -> None: ...


@dataclass
class _StepSlot:
    started: bool = False
    start_shown: bool = False
    buffer: List[str] = field(default_factory=list)
    result: Optional[StepResult] = None


_STOP = object()


class OrderedOutputCoordinator:
    def __init__(self, steps: Sequence[str], sink: ProgressSink):
        self.order: List[str] = list(steps)
        self.sink = sink
        self.active = 0
        self._slots: Dict[str, _StepSlot] = {name: _StepSlot() for name in self.order}

        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._failure: Optional[BaseException] = None

    # ---- threaded use ----

    def start(self) -> "OrderedOutputCoordinator":
        if self._thread is not None:
            raise RuntimeError("coordinator already started")
        self._thread = threading.Thread(target=self._drain, name="fabrun-output", daemon=True)
        self._thread.start()
        return self

    def emit(self, event: Event) -> None:
        """Thread-safe; callable from any worker."""
        self._queue.put(event)

    def close(self) -> None:
        """
        Drain pending events, then finalize.

        Steps that never reported a terminal status are shown as terminated
        so that every step ends up with a final line. Re-raises anything the
        sink raised on the presentation thread.
        """
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join()
            self._thread = None
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure
        self.finalize()

    def __enter__(self) -> "OrderedOutputCoordinator":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if self._failure is not None:
                continue  # sink is broken; keep draining so workers never block
            try:
                self.process(item)  # type: ignore[arg-type]
            except Exception as e:
                logger.debug("progress sink failed", exc_info=True)
                self._failure = e

    # ---- core state machine (single-threaded) ----

    def process(self, event: Event) -> None:
        slot = self._slots.get(event.step)
        if slot is None:
            logger.warning("ignoring event for unknown step %r", event.step)
            return
        if slot.result is not None:
            logger.debug("ignoring %s for already finished step %s", type(event).__name__, event.step)
            return

        if isinstance(event, StepStarted):
            slot.started = True
        elif isinstance(event, StepOutput):
            slot.buffer.append(event.line)
        elif isinstance(event, StepFinished):
            slot.result = event.result
        else:
            raise TypeError(f"unknown event: {event!r}")

        self._pump()

    def finalize(self) -> None:
        for name in self.order[self.active:]:
            slot = self._slots[name]
            if slot.result is not None:
                continue
            slot.result = StepResult(
                step=name,
                action="",
                status=StepStatus.TERMINATED,
                message="terminated" if slot.started else "cancelled before start",
            )
        self._pump()

    @property
    def done(self) -> bool:
        return self.active >= len(self.order)

    def _pump(self) -> None:
        # Show everything the active step has; advance past finished steps.
        while self.active < len(self.order):
            name = self.order[self.active]
            slot = self._slots[name]

            if not slot.start_shown:
                if not (slot.started or slot.result is not None):
                    return
                self.sink.show_start(name, ran=slot.started)
                slot.start_shown = True

            if slot.buffer:
                pending, slot.buffer = slot.buffer, []
                for line in pending:
                    self.sink.show_output(name, line)

            if slot.result is None:
                return

            self.sink.show_terminal(slot.result)
            self.active += 1
