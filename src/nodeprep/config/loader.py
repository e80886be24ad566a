# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/config/loader.py

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from nodeprep.errors import ConfigurationError

log = logging.getLogger("nodeprep")

S = TypeVar("S", bound=BaseModel)

# environment variable -> settings field
ENV_FIELDS: Dict[str, str] = {
    "LINODE_IP": "address",
    "LINODE_ROOT_PASSWORD": "root_password",
    "LINODE_USER": "user",
    "SSH_PUBLIC_KEY_PATH": "public_key_path",
    "SSH_PRIVATE_KEY_PATH": "private_key_path",
    "NODE_MAJOR": "node_major",
    "SSH_PORT": "port",
    "SSH_CONNECT_TIMEOUT": "connect_timeout",
}
FIELD_ENVS: Dict[str, str] = {v: k for k, v in ENV_FIELDS.items()}

SETTINGS_FILE_ENV = "NODEPREP_SETTINGS_FILE"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(os.path.expandvars(raw)) or {}
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Settings file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return data


def _from_env(environ: Mapping[str, str], model: Type[BaseModel]) -> dict:
    data = {}
    for env, field in ENV_FIELDS.items():
        value = environ.get(env)
        if value in (None, ""):
            continue
        if field in model.model_fields:
            data[field] = value
    return data


def _describe(exc: ValidationError) -> str:
    """Turn pydantic errors into the messages the operator acts on."""
    lines = []
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else ""
        env = FIELD_ENVS.get(field)
        if err["type"] == "missing":
            if env:
                lines.append(f"{env} environment variable not set")
            else:
                lines.append(f"{field} is required")
            continue
        msg = err["msg"].removeprefix("Value error, ")
        lines.append(f"{env or field or 'settings'}: {msg}")
    return "; ".join(lines)


def load_settings(
    model: Type[S],
    *,
    environ: Optional[Mapping[str, str]] = None,
    settings_file: Optional[str | Path] = None,
) -> S:
    """
    Build and validate *model* from the process environment.

    An optional YAML settings file (``--settings`` or NODEPREP_SETTINGS_FILE)
    supplies defaults; environment variables always win.
    Raises ConfigurationError; never touches the network.
    """
    environ = os.environ if environ is None else environ
    data: dict = {}

    settings_file = settings_file or environ.get(SETTINGS_FILE_ENV)
    if settings_file:
        path = Path(settings_file).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Settings file {path} does not exist")
        log.debug("Loading settings from %s", path)
        data.update(_load_yaml(path))

    data.update(_from_env(environ, model))

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(_describe(e)) from e
