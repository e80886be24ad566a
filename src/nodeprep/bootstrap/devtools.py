# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/bootstrap/devtools.py

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.config.models import DevToolsSettings
from nodeprep.deploy.executor import RunnerOptions, run_steps
from nodeprep.deploy.steps import ProbeFn, RunReport, Step
from nodeprep.utils.remote import RemoteExecutor
from nodeprep.utils.version import parse_version

log = logging.getLogger("nodeprep")

NODESOURCE_SETUP_URL = "https://deb.nodesource.com/setup_{major}.x"
APT_INSTALL = "DEBIAN_FRONTEND=noninteractive apt-get install -y"


@dataclass(frozen=True)
class AptPackage:
    name: str
    binary: Optional[str] = None        # probe with `command -v` when set
    version_cmd: Optional[str] = None

    def probe(self) -> str:
        if self.binary:
            return f"command -v {self.binary}"
        return f"dpkg-query -W -f='${{Status}}' {self.name} 2>/dev/null | grep -q 'install ok installed'"


APT_PACKAGES: Tuple[AptPackage, ...] = (
    AptPackage("git", "git", "git --version"),
    AptPackage("python3", "python3", "python3 --version"),
    AptPackage("python3-venv"),
    AptPackage("python3-pip", "pip3", "pip3 --version"),
    AptPackage("build-essential"),
    AptPackage("curl", "curl"),
    AptPackage("wget", "wget"),
    AptPackage("ca-certificates"),
    AptPackage("gnupg", "gpg"),
)

# name -> command printing the version; used for the closing report
VERSION_COMMANDS: Tuple[Tuple[str, str], ...] = (
    ("git", "git --version"),
    ("python", "python3 --version"),
    ("pip", "pip3 --version | cut -d' ' -f2"),
    ("node", "node --version"),
    ("npm", "npm --version"),
    ("yarn", "yarn --version"),
    ("pnpm", "pnpm --version"),
)


def node_major_probe(major: int) -> ProbeFn:
    """
    True when the installed Node.js already has *major*. Any other
    answer (absent, other major, unparsable) means install.
    """
    def probe(executor: RemoteExecutor, mode: CredentialMode) -> bool:
        result = executor.execute("node --version", mode=mode)
        if not result.ok:
            log.info("Node.js not found, will install v%d.x", major)
            return False
        try:
            current = parse_version(result.stdout)
        except ValueError:
            log.warning("Unrecognised `node --version` output %r, reinstalling", result.stdout.strip())
            return False
        if current.same_major(major):
            return True
        log.info("Found Node.js %s, will switch to v%d.x", current, major)
        return False

    return probe


def build_devtools_steps(settings: DevToolsSettings) -> List[Step]:
    major = settings.node_major
    steps: List[Step] = [
        Step(
            name="refresh-package-lists",
            description="Updating package lists",
            probe="test -n \"$(find /var/lib/apt/lists -maxdepth 1 -name '*Packages*' -mmin -60 -print -quit)\"",
            apply="apt-get update",
        ),
    ]

    for pkg in APT_PACKAGES:
        steps.append(
            Step(
                name=f"apt-{pkg.name}",
                description=f"Installing {pkg.name}",
                probe=pkg.probe(),
                apply=f"{APT_INSTALL} {pkg.name}",
                report=pkg.version_cmd,
            )
        )

    setup_url = NODESOURCE_SETUP_URL.format(major=major)
    steps += [
        Step(
            name="nodejs",
            description=f"Installing Node.js v{major}.x",
            probe=node_major_probe(major),
            apply=f"curl -fsSL {setup_url} | bash - && {APT_INSTALL} nodejs",
            report="node --version",
        ),
        Step(
            name="npm",
            description="Checking npm",
            probe="command -v npm",
            report="npm --version",
        ),
    ]

    for package in settings.npm_packages:
        q = shlex.quote(package)
        steps.append(
            Step(
                name=f"npm-{package}",
                description=f"Installing global npm package {package}",
                probe=f"npm list -g {q}",
                apply=f"npm install -g {q}",
            )
        )

    steps.append(
        Step(
            name="python-venv",
            description="Testing Python venv",
            probe="cd /tmp && python3 -m venv nodeprep_test_venv && rm -rf nodeprep_test_venv",
        )
    )
    return steps


def collect_versions(
    executor: RemoteExecutor,
    mode: CredentialMode = CredentialMode.KEY_BASED_USER,
) -> Dict[str, str]:
    versions: Dict[str, str] = {}
    for name, cmd in VERSION_COMMANDS:
        result = executor.execute(cmd, mode=mode)
        out = result.stdout.strip()
        versions[name] = out.splitlines()[0] if result.ok and out else "not installed"
    return versions


def install_devtools(
    settings: DevToolsSettings,
    executor: RemoteExecutor,
    *,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
    options: Optional[RunnerOptions] = None,
) -> Tuple[RunReport, Dict[str, str]]:
    """
    Install the development toolchain through the sudo user. Root login is
    expected to be off already, so no mode detection happens here.
    """
    report = run_steps(
        build_devtools_steps(settings),
        executor,
        host=settings.address,
        mode=CredentialMode.KEY_BASED_USER,
        title=f"Installing development tools (Node.js v{settings.node_major}.x)",
        options=options,
        observers=observers,
        run_id=run_id,
    )
    versions = collect_versions(executor)
    for name, version in versions.items():
        log.info("  %s: %s", name, version)
    return report, versions
