from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CPUINFO_PATH = Path("/proc/cpuinfo")


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def _cpuinfo_processor_count(path: Optional[Path] = None) -> int:
    txt = _read_text(path or CPUINFO_PATH)
    if not txt:
        return 0
    return sum(1 for line in txt.splitlines() if line.startswith("processor"))


def logical_cpu_count() -> int:
    """Number of logical processors this process may run on.

    Signals, in order:
    - scheduler affinity mask (respects cgroups/taskset)
    - ``processor`` entries in /proc/cpuinfo
    - ``os.cpu_count()``

    Returns 0 when nothing is known.
    """

    if hasattr(os, "sched_getaffinity"):
        try:
            count = len(os.sched_getaffinity(0))
            if count:
                return count
        except OSError:
            pass

    count = _cpuinfo_processor_count()
    if count:
        return count

    return os.cpu_count() or 0


def detect_host() -> Dict[str, Any]:
    """Host signals recorded in the log alongside the rendered configuration."""

    host: Dict[str, Any] = {
        "machine": platform.machine(),
        "logical_cpus": logical_cpu_count(),
        "device_tree_model": _read_text(Path("/proc/device-tree/model")),
    }
    logger.info(
        "Host: machine=%s logical_cpus=%s model=%s",
        host["machine"],
        host["logical_cpus"],
        host["device_tree_model"],
    )
    return host
