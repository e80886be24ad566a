# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import paramiko

from nodeprep.bootstrap.node.models import Credentials, CredentialMode, Host
from nodeprep.errors import ConfigurationError, ConnectivityError
from nodeprep.utils.ssh_runner import SSHRunner

log = logging.getLogger("nodeprep")


def load_private_key(path: str | Path) -> paramiko.PKey:
    key_path = str(path)
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(key_path)
        except paramiko.SSHException:
            continue
    raise ConfigurationError(f"Unsupported or encrypted private key format: {key_path}")


def open_ssh(
    host: Host,
    creds: Credentials,
    mode: CredentialMode,
    *,
    connect_timeout: Optional[float] = None,
) -> SSHRunner:
    """
    Open an authenticated session for *mode*.

    Root sessions use password auth only; user sessions use the private key
    only. Agent and ~/.ssh key lookup stay off so the mode is unambiguous.
    """
    timeout = connect_timeout if connect_timeout is not None else host.connect_timeout
    username = creds.username_for(mode)

    if mode is CredentialMode.ROOT_PASSWORD:
        if not creds.root_password:
            raise ConfigurationError("Root password is required for root-password mode")
        auth = {"password": creds.root_password, "pkey": None}
    else:
        if not creds.pkey_path:
            raise ConfigurationError("Private key is required for key-based mode")
        auth = {"password": None, "pkey": load_private_key(creds.pkey_path)}

    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    log.debug("ssh connect %s@%s:%d (%s)", username, host.address, host.port, mode.value)
    try:
        client.connect(
            hostname=host.address,
            port=host.port,
            username=username,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
            **auth,
        )
    except (paramiko.SSHException, OSError, EOFError) as e:
        client.close()
        raise ConnectivityError(
            f"Failed to SSH into {host.address}:{host.port} as '{username}' "
            f"({type(e).__name__}: {e})"
        ) from e

    return SSHRunner(client)
