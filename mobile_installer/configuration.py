"""Installer answers, derived identifiers and the immutable snapshot.

The store is the only place that knows the raw answer layout coming out of the
installer GUI (``info``, ``environment``, ``fde``). Everything downstream works
on a :class:`ConfigurationSnapshot`.

Filesystem UUIDs are chosen here rather than read back after ``mkfs.ext4`` or
``cryptsetup luksFormat``: the partitioner is handed the same UUIDs, so the
rendered configuration never has to probe the disk.
"""

from __future__ import annotations

import json
import logging
import re
import uuid as uuidlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidInput, IOFailure, UnsupportedEnvironment

logger = logging.getLogger(__name__)

# ext4 labels are 16 chars; 11 + "_ROOT"
ROOTFS_LABEL_PREFIX_LENGTH = 11
HOSTNAME_MAX_LENGTH = 253

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_SEPARATORS_RE = re.compile(r"[-_.]")


class PhoneEnvironment(str, Enum):
    PHOSH = "phosh"
    PLASMA_MOBILE = "plamo"

    @property
    def display_name(self) -> str:
        return _ENVIRONMENT_NAMES[self]

    @classmethod
    def parse(cls, value: Any) -> "PhoneEnvironment":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedEnvironment(value) from None


_ENVIRONMENT_NAMES = {
    PhoneEnvironment.PHOSH: "Phosh",
    PhoneEnvironment.PLASMA_MOBILE: "Plasma Mobile",
}


class FilesystemKind(str, Enum):
    ROOTFS = "rootfs"
    LUKS = "luks"


@dataclass(frozen=True)
class UserInfo:
    fullname: str
    username: str
    hostname: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Environment:
    phone_environment: PhoneEnvironment


@dataclass(frozen=True)
class FullDiskEncryption:
    enabled: bool


@dataclass(frozen=True)
class RootFilesystem:
    uuid: str
    label: str


@dataclass(frozen=True)
class LuksContainer:
    # no label in LUKS v1
    uuid: str


@dataclass(frozen=True)
class Filesystems:
    rootfs: RootFilesystem
    luks: LuksContainer


@dataclass(frozen=True)
class ConfigurationSnapshot:
    info: UserInfo
    environment: Environment
    fde: FullDiskEncryption
    filesystems: Filesystems
    device: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Answer layout plus derived filesystems. The password is left out."""

        env = self.environment.phone_environment
        data: Dict[str, Any] = {
            "info": {
                "fullname": self.info.fullname,
                "username": self.info.username,
                "hostname": self.info.hostname,
            },
            "environment": {"phone_environment": getattr(env, "value", env)},
            "fde": {"enable": self.fde.enabled},
            "filesystems": {
                "luks": {"uuid": self.filesystems.luks.uuid},
                "rootfs": {
                    "label": self.filesystems.rootfs.label,
                    "uuid": self.filesystems.rootfs.uuid,
                },
            },
        }
        if self.device is not None:
            data["device"] = self.device
        return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidInput(name, "must be a mapping")
    return value


def _check_printable(field_name: str, value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidInput(field_name, "is not valid UTF-8") from e
    for ch in value:
        if ord(ch) < 0x20 and ch not in "\n\r\t":
            raise InvalidInput(field_name, f"contains control character {ch!r}")
    return value


def _required_str(section: Mapping[str, Any], key: str, field_name: str) -> str:
    value = section.get(key)
    if value is None or not str(value).strip():
        raise InvalidInput(field_name, "is required")
    return _check_printable(field_name, str(value).strip())


def validate_hostname(hostname: Any) -> str:
    if hostname is None or not str(hostname).strip():
        raise InvalidInput("info.hostname", "is required")
    hostname = str(hostname).strip()
    if len(hostname) > HOSTNAME_MAX_LENGTH:
        raise InvalidInput("info.hostname", f"longer than {HOSTNAME_MAX_LENGTH} characters")
    if not _HOSTNAME_RE.match(hostname):
        raise InvalidInput("info.hostname", "may only contain letters, digits, '-', '_' and '.'")
    return hostname


def identifier_prefix(hostname: str, separator: str) -> str:
    """Uppercased hostname with each of ``-``, ``_`` and ``.`` replaced by ``separator``."""

    return _SEPARATORS_RE.sub(separator, hostname.upper())


class ConfigurationStore:
    """Raw installer answers plus the values derived from them.

    UUIDs are generated on first use and kept for the lifetime of the store.
    """

    def __init__(self, raw_answers: Mapping[str, Any]) -> None:
        if not isinstance(raw_answers, Mapping):
            raise InvalidInput("answers", "must be a mapping")
        self._raw = raw_answers
        self._uuids: Dict[FilesystemKind, str] = {}

    @property
    def raw(self) -> Mapping[str, Any]:
        return self._raw

    @property
    def hostname(self) -> str:
        return validate_hostname(_section(self._raw, "info").get("hostname"))

    def uuid(self, kind: FilesystemKind | str) -> str:
        kind = FilesystemKind(kind)
        if kind not in self._uuids:
            self._uuids[kind] = str(uuidlib.uuid4())
        return self._uuids[kind]

    def label_for(self, part: str, *, prefix_length: int = 999) -> str:
        prefix = identifier_prefix(self.hostname, "_")[:prefix_length]
        return "_".join([prefix, part.upper()])

    def rootfs_label(self, max_prefix_length: int = ROOTFS_LABEL_PREFIX_LENGTH) -> str:
        return self.label_for("root", prefix_length=max_prefix_length)

    def filesystems_data(self) -> Filesystems:
        return Filesystems(
            rootfs=RootFilesystem(uuid=self.uuid(FilesystemKind.ROOTFS), label=self.rootfs_label()),
            luks=LuksContainer(uuid=self.uuid(FilesystemKind.LUKS)),
        )

    def build_snapshot(self) -> ConfigurationSnapshot:
        info = _section(self._raw, "info")
        environment = _section(self._raw, "environment")
        fde = _section(self._raw, "fde")

        hostname = self.hostname
        username = _required_str(info, "username", "info.username")
        fullname = _check_printable("info.fullname", str(info.get("fullname") or ""))

        password = info.get("password")
        if not isinstance(password, str) or not password:
            raise InvalidInput("info.password", "is required")
        # mkpasswd --stdin reads a single line.
        if "\n" in password or "\r" in password:
            raise InvalidInput("info.password", "must not contain line breaks")
        try:
            password.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidInput("info.password", "is not valid UTF-8") from e

        raw_env = environment.get("phone_environment")
        if raw_env is None or not str(raw_env).strip():
            raise InvalidInput("environment.phone_environment", "is required")
        phone_environment = PhoneEnvironment.parse(raw_env)

        enabled = fde.get("enable", False)
        if not isinstance(enabled, bool):
            raise InvalidInput("fde.enable", "must be a boolean")

        device = self._raw.get("device")
        if device is not None:
            device = _required_str(self._raw, "device", "device")

        snapshot = ConfigurationSnapshot(
            info=UserInfo(fullname=fullname, username=username, hostname=hostname, password=password),
            environment=Environment(phone_environment=phone_environment),
            fde=FullDiskEncryption(enabled=enabled),
            filesystems=self.filesystems_data(),
            device=device,
        )
        logger.info(
            "Configuration snapshot built (hostname=%s username=%s environment=%s fde=%s)",
            hostname,
            username,
            phone_environment.value,
            enabled,
        )
        return snapshot


def build_snapshot(raw_answers: Mapping[str, Any]) -> ConfigurationSnapshot:
    return ConfigurationStore(raw_answers).build_snapshot()


@dataclass(frozen=True)
class Descriptor:
    path: Tuple[str, ...]
    label: str
    mapping: Optional[Callable[[Any], Any]] = None


DESCRIPTION: Tuple[Descriptor, ...] = (
    Descriptor(("fde", "enable"), "FDE enabled"),
    Descriptor(("info", "fullname"), "Full name"),
    Descriptor(("info", "username"), "User name"),
    Descriptor(("info", "hostname"), "Host name"),
    Descriptor(
        ("environment", "phone_environment"),
        "Phone environment",
        lambda v: PhoneEnvironment.parse(v).display_name,
    ),
)


def _dig(data: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    value: Any = data
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def describe(snapshot: ConfigurationSnapshot) -> List[Tuple[str, str]]:
    """Ordered ``(label, display value)`` pairs for the confirmation screen."""

    data = snapshot.to_dict()
    rows: List[Tuple[str, str]] = []
    for d in DESCRIPTION:
        value = _dig(data, d.path)
        if value is True:
            value = "yes"
        elif value is False:
            value = "no"
        if d.mapping is not None:
            value = d.mapping(value)
        rows.append((d.label, "" if value is None else str(value)))
    return rows


def format_description(rows: List[Tuple[str, str]]) -> str:
    return "\n".join(f" - {label}: {json.dumps(value, ensure_ascii=False)}" for label, value in rows)


def persist_json(snapshot: ConfigurationSnapshot, path: str) -> None:
    """Debug dump of the snapshot; see :meth:`ConfigurationSnapshot.to_dict`."""

    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    except OSError as e:
        raise IOFailure(str(p), e.strerror or str(e)) from e
    logger.info("Wrote configuration dump %s", str(p))
