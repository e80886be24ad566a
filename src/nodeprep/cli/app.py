# src/nodeprep/cli/app.py
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from nodeprep.bootstrap.connectivity import check_root_login
from nodeprep.bootstrap.devtools import install_devtools
from nodeprep.bootstrap.harden import harden_host
from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.config.loader import load_settings
from nodeprep.config.models import CheckSettings, DevToolsSettings, HardenSettings
from nodeprep.errors import ConfigurationError, ProvisionError
from nodeprep.logging.log import default_log_dir, init_logging
from nodeprep.observers.console import ConsoleObserver
from nodeprep.observers.jsonfile import JsonFileObserver
from nodeprep.observers.logger import LoggerObserver
from nodeprep.utils.remote import SshExecutor


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(
    help="Harden and provision a fresh cloud VM over SSH. Safe to re-run.",
    add_completion=False,
    no_args_is_help=True,
)


class ModeChoice(str, Enum):
    detect = "detect"
    root = "root"
    user = "user"

    def to_mode(self) -> Optional[CredentialMode]:
        return {
            ModeChoice.detect: None,
            ModeChoice.root: CredentialMode.ROOT_PASSWORD,
            ModeChoice.user: CredentialMode.KEY_BASED_USER,
        }[self]


SettingsOpt = typer.Option(
    None,
    "--settings",
    help="YAML file with default settings (environment variables win)",
)
DebugOpt = typer.Option(False, "--debug", help="Verbose console logging")
JsonLogOpt = typer.Option(True, "--json-log/--no-json-log", help="Write JSONL event log")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _fail(exc: Exception) -> NoReturn:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _load(model, settings_file: Optional[Path]):
    try:
        return load_settings(model, settings_file=settings_file)
    except ConfigurationError as exc:
        _fail(exc)


def _start(debug: bool, json_log: bool) -> tuple[str, List]:
    logger, run_id, log_path = init_logging(verbose=debug)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")

    observers: List = [ConsoleObserver(), LoggerObserver(logger)]
    if json_log:
        observers.append(JsonFileObserver.for_run(default_log_dir(), run_id))
    return run_id, observers


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def check(
    settings: Optional[Path] = SettingsOpt,
    debug: bool = DebugOpt,
):
    """Test SSH connection to a new server as root (LINODE_IP, LINODE_ROOT_PASSWORD)."""
    cfg: CheckSettings = _load(CheckSettings, settings)
    init_logging(verbose=debug)

    typer.echo(f"Testing SSH connection to {cfg.address} as root...")
    executor = SshExecutor(cfg.host(), cfg.credentials())
    try:
        system = check_root_login(executor)
    except ProvisionError as exc:
        _fail(exc)
    finally:
        executor.close()

    typer.echo(system)
    typer.echo("SSH connection successful!")


@app.command()
def harden(
    settings: Optional[Path] = SettingsOpt,
    mode: ModeChoice = typer.Option(
        ModeChoice.detect,
        "--mode",
        help="Credential mode: detect (probe root login), root, or user",
        case_sensitive=False,
    ),
    debug: bool = DebugOpt,
    json_log: bool = JsonLogOpt,
):
    """
    Harden a new Debian server: admin user with passwordless sudo, key-only
    SSH, root login off, UFW and fail2ban.

    Requires LINODE_IP, LINODE_ROOT_PASSWORD, LINODE_USER, SSH_PUBLIC_KEY_PATH
    (SSH_PRIVATE_KEY_PATH defaults to the public key path without .pub).
    """
    cfg: HardenSettings = _load(HardenSettings, settings)
    run_id, observers = _start(debug, json_log)

    executor = SshExecutor(cfg.host(), cfg.credentials())
    try:
        report = harden_host(
            cfg,
            executor,
            mode=mode.to_mode(),
            observers=observers,
            run_id=run_id,
        )
    except ProvisionError as exc:
        _fail(exc)
    finally:
        executor.close()

    typer.echo("")
    typer.secho("✓ Hardening complete!", bold=True)
    typer.echo(f"  {report.summary()}")
    typer.echo(f"  Test login: ssh -i {cfg.private_key_path} {cfg.user}@{cfg.address}")
    typer.echo("  Root password login is now DISABLED. Keep your SSH private key safe!")


@app.command()
def devtools(
    settings: Optional[Path] = SettingsOpt,
    debug: bool = DebugOpt,
    json_log: bool = JsonLogOpt,
):
    """
    Install git, Python (venv, pip), build tools, Node.js and global npm
    packages. Requires LINODE_IP, LINODE_USER, SSH_PRIVATE_KEY_PATH; NODE_MAJOR
    defaults to 20.
    """
    cfg: DevToolsSettings = _load(DevToolsSettings, settings)
    run_id, observers = _start(debug, json_log)

    executor = SshExecutor(cfg.host(), cfg.credentials())
    try:
        report, versions = install_devtools(
            cfg,
            executor,
            observers=observers,
            run_id=run_id,
        )
    except ProvisionError as exc:
        _fail(exc)
    finally:
        executor.close()

    typer.echo("")
    typer.secho("✓ Development tools installation complete!", bold=True)
    typer.echo(f"  {report.summary()}")
    typer.echo("Installed versions:")
    for name, version in versions.items():
        typer.echo(f"  • {name}: {version}")


if __name__ == "__main__":
    app()
