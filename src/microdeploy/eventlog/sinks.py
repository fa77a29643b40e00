"""Event sinks: console output and in-memory recording."""

from __future__ import annotations

import click

from microdeploy.eventlog.logger import Event, EventState


def format_duration(seconds: float | None) -> str:
    """Format seconds as ``HH:MM:SS``."""
    total = int(seconds or 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class ConsoleEventSink:
    """Print progress lines to the terminal.

    Output looks like::

        Started compiling packages
        Started compiling packages > ruby/4f1e... Done (00:01:12)
        Started compiling packages > nginx/9a8b... Skipped [Package already compiled] (00:00:00)
        Done compiling packages (00:01:12)
    """

    def __init__(self, quiet: bool = False) -> None:
        self.quiet = quiet
        self._line_open = False

    def handle(self, event: Event) -> None:
        if self.quiet:
            return

        duration = format_duration(event.duration)

        if event.step is None:
            self._close_line()
            if event.state == EventState.STARTED:
                click.echo(f"Started {event.stage}")
            elif event.state == EventState.FINISHED:
                click.secho(f"Done {event.stage} ({duration})", fg="green")
            elif event.state == EventState.FAILED:
                click.secho(f"Failed {event.stage} ({duration})", fg="red", err=True)
            return

        if event.state == EventState.STARTED:
            self._close_line()
            click.echo(f"Started {event.stage} > {event.step}.", nl=False)
            self._line_open = True
            return

        if not self._line_open:
            click.echo(f"Started {event.stage} > {event.step}.", nl=False)

        if event.state == EventState.FINISHED:
            click.echo(f" Done ({duration})")
        elif event.state == EventState.SKIPPED:
            click.secho(f" Skipped [{event.message}] ({duration})", fg="yellow")
        elif event.state == EventState.FAILED:
            click.secho(f" Failed '{event.message}' ({duration})", fg="red")
        self._line_open = False

    def _close_line(self) -> None:
        if self._line_open:
            click.echo()
            self._line_open = False


class RecordingEventSink:
    """Keep every event in memory, in order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def handle(self, event: Event) -> None:
        self.events.append(event)

    def step_states(self, step: str) -> list[EventState]:
        """States recorded for every step with the given name, in order."""
        return [e.state for e in self.events if e.step == step]
