# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/utils/remote.py

from __future__ import annotations

import logging
import os
import shlex
from typing import Callable, Dict, Optional, Protocol

import paramiko

from nodeprep.bootstrap.node.models import Credentials, CredentialMode, Host
from nodeprep.errors import CommandFailure, ConnectivityError
from nodeprep.utils.ssh import open_ssh
from nodeprep.utils.ssh_runner import CommandResult, SSHRunner

log = logging.getLogger("nodeprep")


class RemoteExecutor(Protocol):
    """
    Runs one command at a time on the target host.

    The credential mode picks the transport; the caller owns the mode.
    """

    def execute(self, command: str, *, mode: CredentialMode) -> CommandResult: ...

    def put_text(self, content: str, path: str, *, mode: CredentialMode) -> None: ...

    def check_login(self, mode: CredentialMode, *, connect_timeout: Optional[float] = None) -> bool: ...

    def reset(self) -> None: ...

    def close(self) -> None: ...


class SshExecutor:
    """
    paramiko-backed executor. Keeps at most one session per credential mode,
    opened lazily and dropped on any transport error.
    """

    def __init__(
        self,
        host: Host,
        creds: Credentials,
        *,
        opener: Callable[..., SSHRunner] = open_ssh,
    ):
        self.host = host
        self.creds = creds
        self._opener = opener
        self._sessions: Dict[CredentialMode, SSHRunner] = {}

    def _session(self, mode: CredentialMode, connect_timeout: Optional[float] = None) -> SSHRunner:
        runner = self._sessions.get(mode)
        if runner is None:
            runner = self._opener(self.host, self.creds, mode, connect_timeout=connect_timeout)
            self._sessions[mode] = runner
        return runner

    def _drop(self, mode: CredentialMode) -> None:
        runner = self._sessions.pop(mode, None)
        if runner is not None:
            try:
                runner.close()
            except (paramiko.SSHException, OSError) as e:
                log.debug("closing %s session: %s", mode.value, e)

    def execute(self, command: str, *, mode: CredentialMode) -> CommandResult:
        runner = self._session(mode)
        log.debug("[%s] $ %s", mode.value, command)
        try:
            result = runner.run(
                command,
                sudo=mode is CredentialMode.KEY_BASED_USER,
                timeout=self.host.command_timeout,
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            self._drop(mode)
            raise ConnectivityError(
                f"Connection to {self.host.address} lost while running command "
                f"({type(e).__name__}: {e})"
            ) from e

        log.debug("[%s] rc=%d", mode.value, result.exit_code)
        return result

    def put_text(self, content: str, path: str, *, mode: CredentialMode) -> None:
        """
        Write *content* to *path* over SFTP. The key-based user cannot write
        root-owned paths, so it uploads to /tmp and moves the file with sudo.
        """
        target = path
        if mode is CredentialMode.KEY_BASED_USER:
            target = f"/tmp/.nodeprep.upload.{os.getpid()}"

        runner = self._session(mode)
        log.debug("[%s] upload %d bytes -> %s", mode.value, len(content), target)
        try:
            runner.put_text(content, target)
        except (paramiko.SSHException, OSError, EOFError) as e:
            self._drop(mode)
            raise ConnectivityError(
                f"Upload of {path} to {self.host.address} failed ({type(e).__name__}: {e})"
            ) from e

        if target != path:
            mv = f"mv {shlex.quote(target)} {shlex.quote(path)}"
            result = self.execute(mv, mode=mode)
            if not result.ok:
                raise CommandFailure(
                    f"moving upload into {path} failed: {result.stderr.strip()}",
                    command=mv,
                    exit_code=result.exit_code,
                    stderr=result.stderr,
                )

    def check_login(self, mode: CredentialMode, *, connect_timeout: Optional[float] = None) -> bool:
        """
        Open a fresh session for *mode* and run a trivial command.
        Never raises on transport failure; returns False instead.
        """
        self._drop(mode)
        try:
            result = self._session(mode, connect_timeout=connect_timeout).run(
                "echo ok", timeout=connect_timeout or self.host.connect_timeout
            )
        except ConnectivityError as e:
            log.debug("login check (%s) failed: %s", mode.value, e)
            return False
        except (paramiko.SSHException, OSError, EOFError) as e:
            log.debug("login check (%s) failed: %s", mode.value, e)
            self._drop(mode)
            return False
        return result.ok

    def reset(self) -> None:
        for mode in list(self._sessions):
            self._drop(mode)

    def close(self) -> None:
        self.reset()
