# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.errors import (
    CommandFailure,
    ConnectivityError,
    ExpectedDisconnect,
    ProvisionError,
)
from nodeprep.utils.remote import RemoteExecutor
from nodeprep.utils.retry import RetryError, retry

from .steps import RunReport, RunState, Step, StepOutcome, StepStatus

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    stamp,
    ModeDetected,
    ModeSwitched,
    RunStarted,
    RunSummary,
    StepStarted,
    StepSkipped,
    StepApplied,
    StepFailed,
    DisconnectTolerated,
)

log = logging.getLogger("nodeprep")


@dataclass
class RunnerOptions:
    detect_timeout: float = 5.0
    # wait/poll after a session-ending apply (sshd restart)
    settle_seconds: float = 2.0
    reconnect_attempts: int = 6
    reconnect_delay: float = 2.0
    reconnect_backoff: float = 1.5
    reconnect_max_delay: float = 15.0


def detect_mode(
    executor: RemoteExecutor,
    *,
    timeout: float = 5.0,
) -> CredentialMode:
    """
    Root password login still works -> ROOT_PASSWORD, anything else -> KEY_BASED_USER.
    """
    if executor.check_login(CredentialMode.ROOT_PASSWORD, connect_timeout=timeout):
        log.info("Root login detected as enabled")
        return CredentialMode.ROOT_PASSWORD
    log.info("Root login detected as disabled, using key-based sudo user")
    return CredentialMode.KEY_BASED_USER


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _describe_failure(what: str, result) -> str:
    err = _first_line(result.stderr) or _first_line(result.stdout)
    msg = f"{what} exited with code {result.exit_code}"
    return f"{msg}: {err}" if err else msg


def _probe(step: Step, executor: RemoteExecutor, mode: CredentialMode) -> bool:
    if callable(step.probe):
        return bool(step.probe(executor, mode))
    return executor.execute(step.probe, mode=mode).ok


def _apply(step: Step, executor: RemoteExecutor, mode: CredentialMode) -> None:
    """
    Run the apply command. Failures of a session-ending command surface as
    ExpectedDisconnect so the caller can move on to verification.
    """
    try:
        if step.upload is not None:
            content, path = step.upload
            executor.put_text(content, path, mode=mode)
        result = executor.execute(step.apply, mode=mode)
    except ConnectivityError as e:
        if step.tolerate_disconnect:
            raise ExpectedDisconnect(str(e), step=step.name) from e
        raise

    if result.ok:
        return
    if step.tolerate_disconnect:
        raise ExpectedDisconnect(_describe_failure("apply", result), step=step.name)
    raise CommandFailure(
        _describe_failure(f"'{step.description}'", result),
        command=step.apply,
        exit_code=result.exit_code,
        stderr=result.stderr,
        step=step.name,
    )


def _await_login(
    step: Step,
    executor: RemoteExecutor,
    mode: CredentialMode,
    options: RunnerOptions,
) -> None:
    """Poll with bounded backoff until a fresh *mode* login succeeds."""
    if options.settle_seconds > 0:
        time.sleep(options.settle_seconds)

    def _log_retry(attempt: int, exc: Exception) -> None:
        log.info(
            "[%s] login as %s not ready (attempt %d/%d): %s",
            step.name, mode.value, attempt, options.reconnect_attempts, exc,
        )

    @retry(
        retries=options.reconnect_attempts,
        delay=options.reconnect_delay,
        backoff=options.reconnect_backoff,
        max_delay=options.reconnect_max_delay,
        retry_on=(ConnectivityError,),
        on_retry=_log_retry,
    )
    def _login() -> None:
        if not executor.check_login(mode):
            raise ConnectivityError(f"{mode.value} login rejected", step=step.name)

    try:
        _login()
    except RetryError as e:
        raise ConnectivityError(
            f"Cannot connect with {mode.value} credentials after '{step.description}'. "
            "The host may be half-hardened; fix SSH access manually, then re-run.",
            step=step.name,
        ) from e


def _confirm_rejected(step: Step, executor: RemoteExecutor, mode: CredentialMode) -> None:
    """A fresh *mode* login must now be refused."""
    if executor.check_login(mode):
        raise ConnectivityError(
            f"{mode.value} login is still accepted after '{step.description}'. "
            "A drop-in under /etc/ssh/sshd_config.d may override the change; "
            "fix sshd manually, then re-run.",
            step=step.name,
        )
    log.info("[%s] %s login now refused", step.name, mode.value)


def _report(step: Step, executor: RemoteExecutor, mode: CredentialMode) -> Optional[str]:
    if not step.report:
        return None
    result = executor.execute(step.report, mode=mode)
    return _first_line(result.stdout) if result.ok else None


def _run_step(
    step: Step,
    executor: RemoteExecutor,
    state: RunState,
    options: RunnerOptions,
    bus: EventBus,
    ctx: Dict[str, Any],
) -> StepOutcome:
    if step.requires_mode is not None and state.mode is not step.requires_mode:
        return StepOutcome(
            step.name,
            StepStatus.SKIPPED,
            detail=f"not applicable in {state.mode.value} mode",
        )

    mode = step.run_as or state.mode

    if step.probe is not None and _probe(step, executor, mode):
        return StepOutcome(step.name, StepStatus.SKIPPED, detail=_report(step, executor, mode))

    if step.probe_only:
        raise CommandFailure(
            f"check '{step.description}' did not pass",
            command=step.probe if isinstance(step.probe, str) else repr(step.probe),
            exit_code=1,
            step=step.name,
        )

    t0 = time.time()
    try:
        _apply(step, executor, mode)
    except ExpectedDisconnect as e:
        log.info("[%s] connection dropped as expected: %s", step.name, e)
        bus.emit(DisconnectTolerated(name=step.name, reason=str(e), **stamp(ctx)))

    if step.tolerate_disconnect:
        executor.reset()

    if step.verify_as is not None:
        _await_login(step, executor, step.verify_as, options)

    if step.reject_as is not None:
        _confirm_rejected(step, executor, step.reject_as)

    if step.verify_as is not None:
        previous = state.switch_to(step.verify_as)
        if previous is not state.mode:
            log.info("[%s] credential mode %s -> %s", step.name, previous.value, state.mode.value)
            bus.emit(ModeSwitched(previous=previous.value, mode=state.mode.value, **stamp(ctx)))

    duration_ms = int((time.time() - t0) * 1000)
    return StepOutcome(
        step.name,
        StepStatus.APPLIED,
        detail=_report(step, executor, step.run_as or state.mode),
        duration_ms=duration_ms,
    )


def run_steps(
    steps: Sequence[Step],
    executor: RemoteExecutor,
    *,
    host: str,
    mode: Optional[CredentialMode] = None,
    title: str = "Provisioning",
    options: Optional[RunnerOptions] = None,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
) -> RunReport:
    """
    Execute *steps* in order against one host.

    mode=None detects the credential mode first. The first failing step
    stops the run: its error is re-raised with the partial report attached.
    """
    options = options or RunnerOptions()
    bus = EventBus(observers or [])
    ctx = new_ctx(host=host, run_id=run_id)

    bus.emit(RunStarted(title=title, steps=len(steps), **stamp(ctx)))

    if mode is None:
        mode = detect_mode(executor, timeout=options.detect_timeout)
    bus.emit(ModeDetected(mode=mode.value, **stamp(ctx)))

    state = RunState(mode)
    report = RunReport(mode=mode)

    def _summary() -> None:
        report.mode = state.mode
        bus.emit(
            RunSummary(
                skipped=report.count(StepStatus.SKIPPED),
                applied=report.count(StepStatus.APPLIED),
                failed=report.count(StepStatus.FAILED),
                mode=state.mode.value,
                **stamp(ctx),
            )
        )

    total = len(steps)
    for index, step in enumerate(steps, 1):
        log.info("[%d/%d] %s...", index, total, step.description)
        bus.emit(
            StepStarted(
                name=step.name,
                index=index,
                total=total,
                description=step.description,
                mode=(step.run_as or state.mode).value,
                **stamp(ctx),
            )
        )
        try:
            outcome = _run_step(step, executor, state, options, bus, ctx)
        except ProvisionError as e:
            if e.step is None:
                e.step = step.name
            report.add(StepOutcome(step.name, StepStatus.FAILED, error=str(e)))
            log.error("%s", e)
            bus.emit(StepFailed(name=step.name, error=str(e), **stamp(ctx)))
            _summary()
            e.report = report
            raise

        report.add(outcome)
        if outcome.status is StepStatus.SKIPPED:
            log.info("  skipped: %s", outcome.detail or "already done")
            bus.emit(StepSkipped(name=step.name, detail=outcome.detail, **stamp(ctx)))
        else:
            log.info("  applied (%d ms)", outcome.duration_ms)
            bus.emit(
                StepApplied(
                    name=step.name,
                    duration_ms=outcome.duration_ms,
                    detail=outcome.detail,
                    **stamp(ctx),
                )
            )

    _summary()
    log.info("run complete: %s", report.summary())
    return report
