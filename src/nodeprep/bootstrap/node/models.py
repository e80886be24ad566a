# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/bootstrap/node/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class CredentialMode(str, Enum):
    """
    How we authenticate against the host.

    ROOT_PASSWORD  -> root@host with the provider-issued password
    KEY_BASED_USER -> user@host with a private key, commands run via sudo
    """
    ROOT_PASSWORD = "root-password"
    KEY_BASED_USER = "key-based-user"


@dataclass(frozen=True)
class Host:
    """
    Represents the server you will SSH into. Immutable for the run.
    """
    address: str                  # IP or DNS to connect
    port: int = 22
    connect_timeout: float = 10.0
    command_timeout: float = 900.0


@dataclass(frozen=True)
class Credentials:
    username: str                           # non-root admin user
    root_password: Optional[str] = None
    pkey_path: Optional[Path] = None        # private key for username

    def username_for(self, mode: CredentialMode) -> str:
        if mode is CredentialMode.ROOT_PASSWORD:
            return "root"
        return self.username
