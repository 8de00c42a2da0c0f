from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .lib.env import PATHS, TOOLS


@dataclass(frozen=True)
class RendererSettings:
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def mkpasswd_argv(self) -> List[str]:
        argv = (self.raw.get("mkpasswd") or {}).get("argv")
        if argv is None:
            return list(TOOLS.mkpasswd_argv)
        if isinstance(argv, str) or not argv:
            raise ValueError("mkpasswd.argv must be a non-empty list")
        return [str(a) for a in argv]

    @property
    def mkpasswd_timeout_s(self) -> float:
        return float((self.raw.get("mkpasswd") or {}).get("timeout_s") or TOOLS.mkpasswd_timeout_s)

    @property
    def destination(self) -> str:
        return str(((self.raw.get("paths") or {}).get("destination")) or PATHS.destination)

    @property
    def log_path(self) -> str:
        return str(((self.raw.get("paths") or {}).get("log")) or PATHS.log_default)

    @property
    def json_dump(self) -> Optional[str]:
        value = (self.raw.get("paths") or {}).get("json_dump")
        return str(value) if value else None


def load_settings(path: Optional[str]) -> RendererSettings:
    if not path:
        return RendererSettings()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("renderer settings must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read renderer settings") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("renderer settings must contain a mapping/object")

    return RendererSettings(raw=raw)
