# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/errors.py
from __future__ import annotations

from typing import Optional


class ProvisionError(RuntimeError):
    """Base class for provisioning failures."""

    def __init__(self, message: str, *, step: Optional[str] = None):
        super().__init__(message)
        self.step = step
        # partial RunReport, attached by the runner when a step fails
        self.report = None

    def __str__(self) -> str:
        msg = super().__str__()
        if self.step:
            return f"[{self.step}] {msg}"
        return msg


class ConfigurationError(ProvisionError):
    """Missing or invalid input, raised before any remote connection."""


class ConnectivityError(ProvisionError):
    """Host unreachable, timed out, or authentication rejected."""


class CommandFailure(ProvisionError):
    """Remote command exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        command: str,
        exit_code: int,
        stderr: str = "",
        step: Optional[str] = None,
    ):
        super().__init__(message, step=step)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class ExpectedDisconnect(ProvisionError):
    """Connection loss after a command known to end the session. Never fatal."""
