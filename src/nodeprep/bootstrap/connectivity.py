# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.errors import CommandFailure
from nodeprep.utils.remote import RemoteExecutor

log = logging.getLogger("nodeprep")


def check_root_login(executor: RemoteExecutor) -> str:
    """
    Log in as root with the password and return `uname -a`.
    Raises ConnectivityError when the host refuses us.
    """
    result = executor.execute("uname -a", mode=CredentialMode.ROOT_PASSWORD)
    if not result.ok:
        raise CommandFailure(
            f"uname exited with code {result.exit_code}",
            command="uname -a",
            exit_code=result.exit_code,
            stderr=result.stderr,
            step="check",
        )
    system = result.stdout.strip()
    log.info("SSH connection successful: %s", system)
    return system
