# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/utils/ssh_runner.py

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Optional

import paramiko


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SSHRunner:
    def __init__(self, client: paramiko.SSHClient):
        self.client = client

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        # -n: never prompt, a missing NOPASSWD rule must fail instead of hanging
        if sudo:
            cmd = f"sudo -n bash -c {shlex.quote(cmd)}"

        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        return CommandResult(exit_code=rc, stdout=out, stderr=err)

    def put_text(self, content: str, remote_path: str) -> None:
        sftp = self.client.open_sftp()
        try:
            with sftp.open(remote_path, "w") as f:
                f.write(content)
        finally:
            sftp.close()

    def close(self) -> None:
        self.client.close()
