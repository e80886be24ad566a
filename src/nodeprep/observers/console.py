# src/nodeprep/observers/console.py
from __future__ import annotations

import typer

from .events import (
    BaseEvent,
    DisconnectTolerated,
    ModeDetected,
    ModeSwitched,
    RunStarted,
    RunSummary,
    StepApplied,
    StepFailed,
    StepSkipped,
    StepStarted,
)


class ConsoleObserver:
    """Human progress output, one block per step."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, RunStarted):
            typer.echo("=========================================")
            typer.echo(f"{event.title} ({event.host})")
            typer.echo("=========================================")
        elif isinstance(event, ModeDetected):
            typer.echo(f"  → Credential mode: {event.mode}")
        elif isinstance(event, StepStarted):
            typer.echo("")
            typer.echo(f"[{event.index}/{event.total}] {event.description}...")
        elif isinstance(event, StepSkipped):
            typer.echo(f"  ✓ {event.detail or 'already done, skipping'}")
        elif isinstance(event, StepApplied):
            suffix = f" ({event.detail})" if event.detail else ""
            typer.echo(f"  ✓ done in {event.duration_ms} ms{suffix}")
        elif isinstance(event, DisconnectTolerated):
            typer.echo(f"  → connection dropped as expected: {event.reason}")
        elif isinstance(event, ModeSwitched):
            typer.echo(f"  → switched credential mode {event.previous} -> {event.mode}")
        elif isinstance(event, StepFailed):
            typer.secho(f"  ✗ ERROR: {event.error}", fg=typer.colors.RED, err=True)
        elif isinstance(event, RunSummary):
            typer.echo("")
            typer.echo(
                f"skipped={event.skipped} applied={event.applied} "
                f"failed={event.failed} mode={event.mode}"
            )
