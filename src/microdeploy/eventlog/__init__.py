"""Progress reporting for compile, install and deploy stages."""

from microdeploy.eventlog.logger import (
    Event,
    EventLogger,
    EventSink,
    EventState,
    Stage,
    Step,
    StepSkipped,
)
from microdeploy.eventlog.sinks import ConsoleEventSink, RecordingEventSink

__all__ = [
    "ConsoleEventSink",
    "Event",
    "EventLogger",
    "EventSink",
    "EventState",
    "RecordingEventSink",
    "Stage",
    "Step",
    "StepSkipped",
]
