# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/bootstrap/harden.py

from __future__ import annotations

import shlex
from typing import List, Optional

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.config.models import HardenSettings
from nodeprep.deploy.executor import RunnerOptions, run_steps
from nodeprep.deploy.steps import RunReport, Step
from nodeprep.utils.remote import RemoteExecutor


SSHD_CONFIG = "/etc/ssh/sshd_config"
SSHD_DROPIN_DIR = "/etc/ssh/sshd_config.d"
# sshd keeps the first value it reads; 00- sorts ahead of cloud-init drop-ins
SSHD_DROPIN = f"{SSHD_DROPIN_DIR}/00-nodeprep.conf"

ROOT = CredentialMode.ROOT_PASSWORD
USER = CredentialMode.KEY_BASED_USER


def _and(*cmds: str) -> str:
    return " && ".join(cmds)


def _effective_sshd(option: str, value: str) -> str:
    return f"sshd -T 2>/dev/null | grep -qx {shlex.quote(option + ' ' + value)}"


def firewall_rules(settings: HardenSettings) -> List[str]:
    """Configured rules, plus the SSH port when it is not the OpenSSH default."""
    rules = list(settings.firewall_rules)
    if settings.port != 22 and not {str(settings.port), f"{settings.port}/tcp"} & set(rules):
        rules.append(f"{settings.port}/tcp")
    return rules


def build_harden_steps(settings: HardenSettings) -> List[Step]:
    """
    The hardening sequence, in the order it must run.

      packages -> user -> sudo -> ~/.ssh -> key -> key login check
      -> sshd lockdown -> sshd restart (mode flip) -> ufw -> fail2ban
    """
    user = settings.user
    q_user = shlex.quote(user)
    group = shlex.quote(settings.admin_group)
    home_ssh = f"/home/{user}/.ssh"
    auth_keys = f"{home_ssh}/authorized_keys"
    sudoers = f"/etc/sudoers.d/{user}"
    key = shlex.quote(settings.public_key)
    sudo_rule = shlex.quote(f"{user} ALL=(ALL) NOPASSWD:ALL")

    ufw_rules = [f"ufw allow {shlex.quote(rule)}" for rule in firewall_rules(settings)]

    return [
        Step(
            name="update-packages",
            description="Updating system packages",
            probe="out=$(apt-get -s upgrade 2>/dev/null) && ! printf '%s\\n' \"$out\" | grep -q '^Inst '",
            apply="apt-get update && DEBIAN_FRONTEND=noninteractive apt-get upgrade -y",
        ),
        Step(
            name="create-user",
            description=f"Creating user {user}",
            probe=f"id -u {q_user}",
            apply=f"useradd -m -s /bin/bash {q_user}",
        ),
        Step(
            name="sudo-group",
            description=f"Adding {user} to the {settings.admin_group} group",
            probe=f"id -nG {q_user} | tr ' ' '\\n' | grep -qx {group}",
            apply=f"usermod -aG {group} {q_user}",
        ),
        Step(
            name="passwordless-sudo",
            description=f"Enabling passwordless sudo for {user}",
            probe=f"test -f {sudoers}",
            apply=_and(
                f"printf '%s\\n' {sudo_rule} > {sudoers}.tmp",
                f"chmod 440 {sudoers}.tmp",
                f"visudo -cf {sudoers}.tmp",
                f"mv {sudoers}.tmp {sudoers}",
            ),
        ),
        Step(
            name="ssh-directory",
            description=f"Setting up SSH directory for {user}",
            probe=f"test -d {home_ssh}",
            apply=_and(
                f"mkdir -p {home_ssh}",
                f"chmod 700 {home_ssh}",
                f"chown {q_user}:{q_user} {home_ssh}",
            ),
        ),
        Step(
            name="authorized-key",
            description="Installing SSH public key",
            probe=_and(
                f"grep -qxF {key} {auth_keys}",
                f"test \"$(stat -c '%a %U' {auth_keys})\" = {shlex.quote('600 ' + user)}",
            ),
            upload=(settings.public_key + "\n", f"{auth_keys}.tmp"),
            apply=_and(
                f"mv {auth_keys}.tmp {auth_keys}",
                f"chmod 600 {auth_keys}",
                f"chown {q_user}:{q_user} {auth_keys}",
            ),
        ),
        Step(
            name="verify-user-login",
            description=f"Testing SSH connection as {user} with private key",
            probe=f"echo {shlex.quote('SSH key authentication working for ' + user)}",
            run_as=USER,
        ),
        Step(
            name="disable-root-login",
            description="Disabling root SSH login and password authentication",
            probe=_and(
                _effective_sshd("permitrootlogin", "no"),
                _effective_sshd("passwordauthentication", "no"),
            ),
            apply=_and(
                f"sed -i 's/^#*PermitRootLogin.*/PermitRootLogin no/' {SSHD_CONFIG}",
                f"sed -i 's/^#*PasswordAuthentication.*/PasswordAuthentication no/' {SSHD_CONFIG}",
                f"{{ [ ! -d {SSHD_DROPIN_DIR} ] || printf '%s\\n' "
                f"'PermitRootLogin no' 'PasswordAuthentication no' > {SSHD_DROPIN}; }}",
                "sshd -t",
            ),
            requires_mode=ROOT,
        ),
        Step(
            name="restart-sshd",
            description="Restarting sshd (connection may drop)",
            apply="systemctl restart ssh || systemctl restart sshd",
            requires_mode=ROOT,
            tolerate_disconnect=True,
            verify_as=USER,
            reject_as=ROOT,
        ),
        Step(
            name="install-ufw",
            description="Installing UFW firewall",
            probe="command -v ufw",
            apply="DEBIAN_FRONTEND=noninteractive apt-get install -y ufw",
        ),
        Step(
            name="enable-ufw",
            description="Configuring and enabling UFW",
            probe="ufw status | grep -q 'Status: active'",
            apply=_and(
                "ufw --force reset",
                "ufw default deny incoming",
                "ufw default allow outgoing",
                *ufw_rules,
                "ufw --force enable",
            ),
        ),
        Step(
            name="install-fail2ban",
            description="Installing fail2ban",
            probe="command -v fail2ban-client",
            apply="DEBIAN_FRONTEND=noninteractive apt-get install -y fail2ban",
        ),
        Step(
            name="enable-fail2ban",
            description="Enabling fail2ban",
            probe="systemctl is-active --quiet fail2ban",
            apply="systemctl enable fail2ban && systemctl start fail2ban",
        ),
    ]


def harden_host(
    settings: HardenSettings,
    executor: RemoteExecutor,
    *,
    mode: Optional[CredentialMode] = None,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
    options: Optional[RunnerOptions] = None,
) -> RunReport:
    """
    Harden a fresh server. Safe to re-run: completed steps are skipped and
    a host whose root login is already off is driven through the sudo user.
    """
    options = options or RunnerOptions(
        detect_timeout=settings.detect_timeout,
        reconnect_attempts=settings.reconnect_attempts,
        reconnect_delay=settings.reconnect_delay,
    )
    return run_steps(
        build_harden_steps(settings),
        executor,
        host=settings.address,
        mode=mode,
        title=f"Hardening server, admin user {settings.user}",
        options=options,
        observers=observers,
        run_id=run_id,
    )
