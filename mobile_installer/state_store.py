from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def load_answers(path: str) -> Dict[str, Any]:
    """Load the answers collected by the installer GUI (json|yaml)."""

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    fmt = _detect_format(p)
    data: Any

    if fmt in {"yaml", "yml"}:
        try:
            import yaml  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "YAML answers requested but PyYAML is not available. "
                "Use JSON answers or add PyYAML to the live environment."
            ) from e
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        data = json.loads(p.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        raise ValueError(f"Answers file must be an object/dict, got {type(data)}")

    logger.info("Loaded answers from %s (format=%s)", str(p), fmt)
    return data


def ensure_defaults(answers: Dict[str, Any]) -> Dict[str, Any]:
    """Fill optional keys with defaults (without overriding user values).

    A section left empty in YAML (``info:``) loads as ``None`` and is treated
    as missing. Sections of any other non-mapping type are left alone so that
    validation reports them.
    """

    for name in ("info", "environment", "fde"):
        if answers.get(name) is None:
            answers[name] = {}

    info = answers["info"]
    if isinstance(info, dict):
        info.setdefault("fullname", "")

    fde = answers["fde"]
    if isinstance(fde, dict):
        fde.setdefault("enable", False)

    return answers
