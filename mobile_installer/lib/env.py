from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class Paths:
    destination: str = "/mnt/etc/nixos"
    log_default: str = "/var/log/mobile-installer.log"
    answers_default: str = "/var/lib/mobile-installer/answers.json"


@dataclass(frozen=True)
class Tools:
    mkpasswd_argv: Tuple[str, ...] = field(default=("mkpasswd", "--stdin", "--method=sha-512"))
    mkpasswd_timeout_s: float = 30.0


PATHS = Paths()
TOOLS = Tools()
