# src/nodeprep/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    host: str         # target address

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(host: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "host": host,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    title: str
    steps: int

@dataclass(frozen=True)
class ModeDetected(BaseEvent):
    mode: str

@dataclass(frozen=True)
class ModeSwitched(BaseEvent):
    previous: str
    mode: str

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    skipped: int
    applied: int
    failed: int
    mode: str


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    name: str
    index: int
    total: int
    description: str
    mode: str

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    name: str
    detail: Optional[str] = None

@dataclass(frozen=True)
class StepApplied(BaseEvent):
    name: str
    duration_ms: int
    detail: Optional[str] = None

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    name: str
    error: str

@dataclass(frozen=True)
class DisconnectTolerated(BaseEvent):
    name: str
    reason: str
