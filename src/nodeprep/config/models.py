# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/config/models.py

import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from nodeprep.bootstrap.node.models import Credentials, Host

_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")


def _existing_file(value: Optional[Path], what: str) -> Optional[Path]:
    if value is None:
        return None
    path = Path(value).expanduser()
    if not path.is_file():
        raise ValueError(f"{what} not found at {path}")
    return path


class ConnectionSettings(BaseModel):
    """Where the server is and how long we wait for it."""

    address: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    connect_timeout: float = Field(default=10.0, gt=0)
    command_timeout: float = Field(default=900.0, gt=0)

    def host(self) -> Host:
        return Host(
            address=self.address,
            port=self.port,
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
        )


class CheckSettings(ConnectionSettings):
    root_password: str = Field(min_length=1)

    def credentials(self) -> Credentials:
        return Credentials(username="root", root_password=self.root_password)


class _UserSettings(ConnectionSettings):
    user: str

    @field_validator("user")
    @classmethod
    def _valid_user(cls, v: str) -> str:
        if not _USERNAME_RE.match(v):
            raise ValueError(f"'{v}' is not a valid login name")
        if v == "root":
            raise ValueError("must be a non-root user")
        return v


class HardenSettings(_UserSettings):
    root_password: str = Field(min_length=1)
    public_key_path: Path
    # defaults to public_key_path without the .pub suffix
    private_key_path: Optional[Path] = None
    admin_group: str = "sudo"
    firewall_rules: List[str] = Field(default_factory=lambda: ["OpenSSH", "80/tcp", "443/tcp"])
    detect_timeout: float = Field(default=5.0, gt=0)
    reconnect_attempts: int = Field(default=6, ge=1)
    reconnect_delay: float = Field(default=2.0, ge=0)

    @field_validator("public_key_path")
    @classmethod
    def _public_key_exists(cls, v: Path) -> Path:
        path = _existing_file(v, "SSH public key file")
        lines = [ln for ln in path.read_text(encoding="utf-8").splitlines() if ln.strip()]
        if len(lines) != 1:
            raise ValueError(f"{path} must contain exactly one public key line")
        return path

    @model_validator(mode="after")
    def _derive_private_key(self) -> "HardenSettings":
        if self.private_key_path is None:
            pub = str(self.public_key_path)
            self.private_key_path = Path(pub[:-4] if pub.endswith(".pub") else pub)
        self.private_key_path = _existing_file(self.private_key_path, "SSH private key file")
        if self.private_key_path == self.public_key_path:
            raise ValueError("private key path must differ from the public key path")
        return self

    @property
    def public_key(self) -> str:
        return self.public_key_path.read_text(encoding="utf-8").strip()

    def credentials(self) -> Credentials:
        return Credentials(
            username=self.user,
            root_password=self.root_password,
            pkey_path=self.private_key_path,
        )


class DevToolsSettings(_UserSettings):
    private_key_path: Path
    node_major: int = Field(default=20, ge=1)
    npm_packages: List[str] = Field(default_factory=lambda: ["yarn", "pnpm"])

    @field_validator("private_key_path")
    @classmethod
    def _private_key_exists(cls, v: Path) -> Path:
        return _existing_file(v, "SSH private key")

    def credentials(self) -> Credentials:
        return Credentials(username=self.user, pkey_path=self.private_key_path)
