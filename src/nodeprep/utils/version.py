# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodeprep/utils/version.py

from __future__ import annotations

import re
from dataclasses import dataclass

_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?$")


@dataclass(frozen=True, order=True)
class Version:
    major: int
    minor: int = 0
    patch: int = 0

    def same_major(self, major: int) -> bool:
        return self.major == major

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"


def parse_version(text: str) -> Version:
    """
    Parse tool output such as ``v20.11.1`` (node) or ``10.2.4`` (npm).

    Raises ValueError when *text* is not a version.
    """
    m = _VERSION_RE.match(text.strip())
    if not m:
        raise ValueError(f"Not a version string: {text!r}")
    major, minor, patch = m.groups()
    return Version(int(major), int(minor or 0), int(patch or 0))
