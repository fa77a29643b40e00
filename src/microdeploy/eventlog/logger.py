"""Stage and step progress reporting.

A :class:`Stage` owns an ordered sequence of :class:`Step` objects. Every
state transition is turned into an :class:`Event` and handed to an
:class:`EventSink`, which decides how to present it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, TypeVar, runtime_checkable

from microdeploy.lib.errors import leaf_message
from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EventState(str, Enum):
    """Lifecycle state of a stage or step."""

    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Event:
    """A single progress transition.

    Attributes:
        time: When the transition happened
        stage: Stage name
        step: Step name, or None for stage-level events
        state: New state
        message: Failure or skip message
        duration: Seconds since the stage/step started (terminal states only)
    """

    time: datetime
    stage: str
    step: str | None
    state: EventState
    message: str | None = None
    duration: float | None = None


@runtime_checkable
class EventSink(Protocol):
    """Destination for progress events."""

    def handle(self, event: Event) -> None:
        """Present or record an event."""
        ...


class StepSkipped(Exception):
    """Raised inside :meth:`Stage.perform` to mark a step as already converged."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventLogger:
    """Factory for stages that report to a single sink."""

    def __init__(
        self,
        sink: EventSink,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sink = sink
        self._clock = clock

    def new_stage(self, name: str) -> Stage:
        return Stage(name, self)

    def _emit(
        self,
        stage: str,
        step: str | None,
        state: EventState,
        message: str | None = None,
        started_at: datetime | None = None,
    ) -> None:
        now = self._clock()
        duration = (now - started_at).total_seconds() if started_at else None
        event = Event(
            time=now,
            stage=stage,
            step=step,
            state=state,
            message=message,
            duration=duration,
        )
        logger.debug(f"Event: {stage} > {step or '-'} {state.value} {message or ''}")
        self._sink.handle(event)


class Stage:
    """A named group of steps, e.g. "compiling packages"."""

    def __init__(self, name: str, event_logger: EventLogger) -> None:
        self.name = name
        self.steps: list[Step] = []
        self._logger = event_logger
        self._started_at: datetime | None = None

    def start(self) -> None:
        self._started_at = self._logger._clock()
        self._logger._emit(self.name, None, EventState.STARTED)

    def finish(self) -> None:
        self._logger._emit(self.name, None, EventState.FINISHED, started_at=self._started_at)

    def fail(self, message: str) -> None:
        self._logger._emit(
            self.name, None, EventState.FAILED, message, started_at=self._started_at
        )

    def new_step(self, name: str) -> Step:
        step = Step(name, self)
        self.steps.append(step)
        return step

    def skip_step(self, name: str, message: str) -> Step:
        """Record a step that needed no work, without starting it."""
        step = self.new_step(name)
        step.skip(message)
        return step

    def perform(self, name: str, fn: Callable[[], T]) -> T | None:
        """Run ``fn`` as a step.

        The step is Finished when ``fn`` returns, Skipped when it raises
        :class:`StepSkipped`, and Failed (with the error re-raised) otherwise.

        Returns:
            ``fn``'s result, or None when the step was skipped.
        """
        step = self.new_step(name)
        step.start()
        try:
            result = fn()
        except StepSkipped as skipped:
            step.skip(skipped.message)
            return None
        except Exception as exc:
            step.fail(leaf_message(exc))
            raise
        step.finish()
        return result


class Step:
    """A unit of work inside a stage."""

    def __init__(self, name: str, stage: Stage) -> None:
        self.name = name
        self.stage = stage
        self.states: list[EventState] = []
        self.message: str | None = None
        self._started_at: datetime | None = None

    def start(self) -> None:
        self._started_at = self.stage._logger._clock()
        self._transition(EventState.STARTED)

    def finish(self) -> None:
        self._transition(EventState.FINISHED)

    def fail(self, message: str) -> None:
        self.message = message
        self._transition(EventState.FAILED, message)

    def skip(self, message: str) -> None:
        self.message = message
        self._transition(EventState.SKIPPED, message)

    def _transition(self, state: EventState, message: str | None = None) -> None:
        self.states.append(state)
        started_at = self._started_at if state != EventState.STARTED else None
        self.stage._logger._emit(self.stage.name, self.name, state, message, started_at)
