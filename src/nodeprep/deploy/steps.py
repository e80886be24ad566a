# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/deploy/steps.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from nodeprep.bootstrap.node.models import CredentialMode

if TYPE_CHECKING:
    from nodeprep.utils.remote import RemoteExecutor

# A probe is either a remote command (exit 0 == goal state holds) or a
# callable that decides using the executor directly.
ProbeFn = Callable[["RemoteExecutor", CredentialMode], bool]
Probe = Union[str, ProbeFn]


@dataclass(frozen=True)
class Step:
    """
    One probe-then-apply unit.

    requires_mode: step only makes sense in this mode; Skipped otherwise
    run_as:        force a transport for this step regardless of run mode
    upload:        (content, remote path) written over SFTP before the apply
    verify_as:     after apply, reconnect with this mode and adopt it
    reject_as:     after verify, a fresh login in this mode must be refused
    report:        command whose stdout is attached to the outcome
    """
    name: str
    description: str
    probe: Optional[Probe] = None
    apply: Optional[str] = None
    upload: Optional[Tuple[str, str]] = None
    tolerate_disconnect: bool = False
    requires_mode: Optional[CredentialMode] = None
    run_as: Optional[CredentialMode] = None
    verify_as: Optional[CredentialMode] = None
    reject_as: Optional[CredentialMode] = None
    report: Optional[str] = None

    def __post_init__(self):
        if self.probe is None and self.apply is None:
            raise ValueError(f"step {self.name!r} needs a probe, an apply, or both")
        if self.upload is not None and self.apply is None:
            raise ValueError(f"step {self.name!r} uploads a file but has no apply")

    @property
    def probe_only(self) -> bool:
        return self.apply is None


class StepStatus(str, Enum):
    SKIPPED = "SKIPPED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    detail: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RunReport:
    outcomes: List[StepOutcome] = field(default_factory=list)
    mode: Optional[CredentialMode] = None

    def add(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def ok(self) -> bool:
        return self.count(StepStatus.FAILED) == 0

    def by_name(self) -> dict:
        return {o.name: o for o in self.outcomes}

    def summary(self) -> str:
        return (
            f"SKIPPED={self.count(StepStatus.SKIPPED)} "
            f"APPLIED={self.count(StepStatus.APPLIED)} "
            f"FAILED={self.count(StepStatus.FAILED)}"
        )


class RunState:
    """
    Current credential mode, threaded through the runner.

    The only legal transition is ROOT_PASSWORD -> KEY_BASED_USER, once.
    """

    def __init__(self, mode: CredentialMode):
        self._mode = mode
        self.switched = False

    @property
    def mode(self) -> CredentialMode:
        return self._mode

    def switch_to(self, mode: CredentialMode) -> CredentialMode:
        if mode is self._mode:
            return self._mode
        if self._mode is not CredentialMode.ROOT_PASSWORD or mode is not CredentialMode.KEY_BASED_USER:
            raise ValueError(f"illegal credential transition {self._mode.value} -> {mode.value}")
        previous, self._mode = self._mode, mode
        self.switched = True
        return previous
