"""NixOS configuration files for a Mobile NixOS install.

Renders ``configuration.nix`` and ``hardware-configuration.nix`` from a
:class:`~mobile_installer.configuration.ConfigurationSnapshot`. Rendering is a
pure function of the snapshot except for two reads: the password hash (from
``mkpasswd``) and the host processor count. The hash is computed once per
snapshot; the processor count once per :class:`NixOSConfiguration`.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import weakref
from functools import cached_property
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .configuration import ConfigurationSnapshot, PhoneEnvironment, identifier_prefix, validate_hostname
from .errors import ExternalToolFailure, InvalidInput, IOFailure, UnsupportedEnvironment
from .lib.command import CommandFailed, run_cmd
from .lib.env import TOOLS
from .lib.hwdetect import logical_cpu_count
from .lib.nix import indent, nix_int, nix_string

logger = logging.getLogger(__name__)

CONFIGURATION_NIX = "configuration.nix"
HARDWARE_CONFIGURATION_NIX = "hardware-configuration.nix"

ROOTFS_TYPE = "ext4"
USER_GROUPS = ("dialout", "feedbackd", "networkmanager", "video", "wheel")

_PART_LABEL_RE = re.compile(r"^[A-Za-z0-9-]+$")

PasswordHasher = Callable[[str], str]

_HASHED_PASSWORDS: "weakref.WeakKeyDictionary[ConfigurationSnapshot, str]" = weakref.WeakKeyDictionary()


def luks_container_name(snapshot: ConfigurationSnapshot, part_label: str) -> str:
    if not _PART_LABEL_RE.match(part_label or ""):
        raise InvalidInput("part_label", "may only contain letters, digits and '-'")
    hostname = validate_hostname(snapshot.info.hostname)
    return "-".join(["LUKS", identifier_prefix(hostname, "-"), part_label.upper()])


def cpu_job_count(cpu_count: Optional[int] = None) -> int:
    if cpu_count is None:
        cpu_count = logical_cpu_count()
    # Assume big.LITTLE-ness, or "low vs. high" cores: builds get half.
    return max(1, cpu_count // 2)


def hash_password(
    password: str,
    *,
    argv: Sequence[str] = TOOLS.mkpasswd_argv,
    timeout_s: float = TOOLS.mkpasswd_timeout_s,
) -> str:
    """Hash ``password`` for ``users.users.<name>.hashedPassword``.

    The password is written to the tool's stdin; it never appears on a
    command line.
    """

    argv = list(argv)
    try:
        r = run_cmd(argv, input_text=password, timeout_s=timeout_s)
    except FileNotFoundError as e:
        raise ExternalToolFailure(argv, "command not found") from e
    except subprocess.TimeoutExpired as e:
        raise ExternalToolFailure(argv, f"timed out after {timeout_s}s") from e
    except CommandFailed as e:
        raise ExternalToolFailure(argv, f"exited with status {e.returncode}: {e.stderr.strip()}") from e
    except OSError as e:
        raise ExternalToolFailure(argv, e.strerror or str(e)) from e

    hashed = (r.stdout or "").rstrip("\r\n")
    if not hashed.strip():
        raise ExternalToolFailure(argv, "produced no output")
    return hashed


def hashed_password(snapshot: ConfigurationSnapshot, password_hasher: Optional[PasswordHasher] = None) -> str:
    """Password hash for ``snapshot``, hashed on first use and then reused.

    A failed hash is not remembered, so the next render tries again.
    """

    try:
        return _HASHED_PASSWORDS[snapshot]
    except KeyError:
        pass
    hashed = (password_hasher or hash_password)(snapshot.info.password)
    _HASHED_PASSWORDS[snapshot] = hashed
    return hashed


def _quote(field_name: str, value: object) -> str:
    try:
        return nix_string(value)
    except ValueError as e:
        raise InvalidInput(field_name, str(e)) from e


class NixOSConfiguration:
    """Renderer bound to a single snapshot."""

    def __init__(
        self,
        snapshot: ConfigurationSnapshot,
        *,
        password_hasher: Optional[PasswordHasher] = None,
        job_count: Optional[int] = None,
    ) -> None:
        self.snapshot = snapshot
        self._password_hasher = password_hasher or hash_password
        self._job_count = job_count

    @property
    def username(self) -> str:
        username = self.snapshot.info.username
        if not username or not username.strip():
            raise InvalidInput("info.username", "is required")
        return username

    @property
    def hashed_password(self) -> str:
        return hashed_password(self.snapshot, self._password_hasher)

    @cached_property
    def job_count(self) -> int:
        if self._job_count is not None:
            return max(1, self._job_count)
        return cpu_job_count()

    def imports_fragment(self) -> str:
        lines = ["imports = ["]
        if self.snapshot.device is not None:
            device = _quote("device", self.snapshot.device)
            lines.append(f"  (import <mobile-nixos/lib/configuration.nix> {{ device = {device}; }})")
        lines += ["  ./hardware-configuration.nix", "];"]
        return "\n".join(lines)

    def system_fragment(self) -> str:
        hostname = validate_hostname(self.snapshot.info.hostname)
        return f"networking.hostName = {_quote('info.hostname', hostname)};"

    def defaults_fragment(self) -> str:
        return "\n".join(
            [
                "#",
                "# Opinionated defaults",
                "#",
                "",
                "# Use Network Manager",
                "networking.wireless.enable = false;",
                "networking.networkmanager.enable = true;",
                "",
                "# Use PulseAudio",
                "hardware.pulseaudio.enable = true;",
                "",
                "# Enable Bluetooth",
                "hardware.bluetooth.enable = true;",
                "",
                "# Bluetooth audio",
                "hardware.pulseaudio.package = pkgs.pulseaudioFull;",
                "",
                "# Enable power management options",
                "powerManagement.enable = true;",
            ]
        )

    def _phosh_fragment(self, user: str) -> str:
        return "\n".join(
            [
                "#",
                "# Phosh configuration",
                "#",
                "",
                "services.xserver.desktopManager.phosh = {",
                "  enable = true;",
                f"  user = {user};",
                '  group = "users";',
                "};",
                "",
                "programs.calls.enable = true;",
                "hardware.sensor.iio.enable = true;",
            ]
        )

    def _plasma_mobile_fragment(self, user: str) -> str:
        return "\n".join(
            [
                "#",
                "# Plasma Mobile configuration",
                "#",
                "",
                "services.xserver = {",
                "  enable = true;",
                "  desktopManager.plasma5.mobile.enable = true;",
                '  displayManager.defaultSession = "plasma-mobile";',
                "  displayManager.autoLogin = {",
                "    enable = true;",
                f"    user = {user};",
                "  };",
                "  displayManager.lightdm = {",
                "    enable = true;",
                "    # Workaround for autologin only working at first launch.",
                "    # A logout or session crashing will show the login screen otherwise.",
                "    extraSeatDefaults = ''",
                "      session-cleanup-script=${pkgs.procps}/bin/pkill -P1 -fx ${pkgs.lightdm}/sbin/lightdm",
                "    '';",
                "  };",
                "  libinput.enable = true;",
                "};",
            ]
        )

    def phone_environment_fragment(self) -> str:
        env = PhoneEnvironment.parse(self.snapshot.environment.phone_environment)
        user = _quote("info.username", self.username)
        if env is PhoneEnvironment.PHOSH:
            return self._phosh_fragment(user)
        if env is PhoneEnvironment.PLASMA_MOBILE:
            return self._plasma_mobile_fragment(user)
        raise UnsupportedEnvironment(env)

    def user_fragment(self) -> str:
        groups = [f"    {nix_string(g)}" for g in USER_GROUPS]
        return "\n".join(
            [
                "#",
                "# User configuration",
                "#",
                "",
                f"users.users.{_quote('info.username', self.username)} = {{",
                "  isNormalUser = true;",
                f"  description = {_quote('info.fullname', self.snapshot.info.fullname)};",
                f"  hashedPassword = {_quote('hashedPassword', self.hashed_password)};",
                "  extraGroups = [",
                *groups,
                "  ];",
                "};",
            ]
        )

    def configuration_nix(self) -> str:
        # Environment first so an unsupported value fails before mkpasswd runs.
        environment = self.phone_environment_fragment()
        fragments = [
            self.imports_fragment(),
            self.system_fragment(),
            self.defaults_fragment(),
            environment,
            self.user_fragment(),
        ]
        body = "\n\n".join(indent(f) for f in fragments)
        return "{ config, lib, pkgs, ... }:\n\n{\n" + body + "\n}\n"

    def filesystems_fragment(self) -> str:
        filesystems = self.snapshot.filesystems
        fragments: List[str] = [
            "\n".join(
                [
                    "fileSystems = {",
                    '  "/" = {',
                    f"    device = {_quote('filesystems.rootfs.uuid', '/dev/disk/by-uuid/' + filesystems.rootfs.uuid)};",
                    f"    fsType = {nix_string(ROOTFS_TYPE)};",
                    "  };",
                    "};",
                ]
            )
        ]
        if self.snapshot.fde.enabled:
            name = luks_container_name(self.snapshot, "rootfs")
            fragments.append(
                "\n".join(
                    [
                        "boot.initrd.luks.devices = {",
                        f"  {nix_string(name)} = {{",
                        f"    device = {_quote('filesystems.luks.uuid', '/dev/disk/by-uuid/' + filesystems.luks.uuid)};",
                        "  };",
                        "};",
                    ]
                )
            )
        return "\n\n".join(fragments)

    def hardware_configuration_nix(self) -> str:
        return "\n".join(
            [
                "# NOTE: this file was generated by the Mobile NixOS installer.",
                "{ config, lib, pkgs, ... }:",
                "",
                "{",
                indent(self.filesystems_fragment()),
                "",
                f"  nix.maxJobs = lib.mkDefault {nix_int(self.job_count)};",
                "}",
                "",
            ]
        )


def render_main_config(snapshot: ConfigurationSnapshot, **kwargs) -> str:
    return NixOSConfiguration(snapshot, **kwargs).configuration_nix()


def render_hardware_config(snapshot: ConfigurationSnapshot, **kwargs) -> str:
    return NixOSConfiguration(snapshot, **kwargs).hardware_configuration_nix()


def _write_documents(dest: Path, documents: Dict[str, str]) -> None:
    # Stage every document next to its target, then rename all of them.
    # Staged files are removed on any failure, including interrupts.
    staged: List[tuple[Path, Path]] = []
    committed = False
    try:
        for name, text in documents.items():
            fd, tmp = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=str(dest))
            staged.append((Path(tmp), dest / name))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp, 0o644)
        for tmp_path, final_path in staged:
            os.replace(tmp_path, final_path)
        committed = True
    except OSError as e:
        raise IOFailure(str(dest), e.strerror or str(e)) from e
    except UnicodeError as e:
        raise IOFailure(str(dest), f"cannot encode document as UTF-8: {e.reason}") from e
    finally:
        if not committed:
            for tmp_path, _ in staged:
                tmp_path.unlink(missing_ok=True)


def write_all(
    snapshot: ConfigurationSnapshot,
    destination_dir: str,
    *,
    password_hasher: Optional[PasswordHasher] = None,
    job_count: Optional[int] = None,
) -> Dict[str, str]:
    """Render both documents and write them into ``destination_dir``.

    Both documents are rendered before anything touches the disk, so a
    rendering failure leaves the directory untouched. Returns the written
    paths keyed by file name.
    """

    config = NixOSConfiguration(snapshot, password_hasher=password_hasher, job_count=job_count)
    documents = {
        CONFIGURATION_NIX: config.configuration_nix(),
        HARDWARE_CONFIGURATION_NIX: config.hardware_configuration_nix(),
    }

    dest = Path(destination_dir)
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure(str(dest), e.strerror or str(e)) from e

    _write_documents(dest, documents)

    written = {name: str(dest / name) for name in documents}
    logger.info(
        "Wrote %s and %s into %s (fde=%s max_jobs=%s)",
        CONFIGURATION_NIX,
        HARDWARE_CONFIGURATION_NIX,
        str(dest),
        snapshot.fde.enabled,
        config.job_count,
    )
    return written
