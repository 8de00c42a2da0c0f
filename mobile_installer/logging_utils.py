from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Tuple

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "mobile-installer.log"

_CONFIGURED_ATTR = "_mobile_installer_log_path"


def _open_log_file(log_path: str) -> Tuple[logging.Handler, str]:
    # The installer image may not allow writes to /var/log.
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Attach the installer's file (and stderr) handlers to the root logger.

    stdout is left to the configuration description. Calling this again is a
    no-op that returns the file path chosen the first time.
    """

    root = logging.getLogger()
    root.setLevel(level)

    configured = getattr(root, _CONFIGURED_ATTR, None)
    if configured:
        return configured

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler, chosen_path = _open_log_file(log_path)
    handlers: list[logging.Handler] = [file_handler]
    if also_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)
    setattr(root, _CONFIGURED_ATTR, chosen_path)

    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
