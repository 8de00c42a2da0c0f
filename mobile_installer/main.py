from __future__ import annotations

import argparse
import functools
import logging
from typing import Any, Dict, Mapping, Optional

from .configuration import ConfigurationStore, describe, format_description, persist_json
from .lib.env import PATHS
from .lib.hwdetect import detect_host
from .logging_utils import configure_logging
from .nixos import hash_password, write_all
from .settings import RendererSettings, load_settings
from .state_store import ensure_defaults, load_answers

logger = logging.getLogger(__name__)


def run(
    answers: Mapping[str, Any],
    *,
    settings: Optional[RendererSettings] = None,
    destination: Optional[str] = None,
    json_dump: Optional[str] = None,
    describe_only: bool = False,
) -> Dict[str, Any]:
    """Build the snapshot from ``answers`` and write the NixOS configuration.

    This is the entry point the installer GUI calls once the user confirmed
    the answers.
    """

    settings = settings or RendererSettings()
    destination = destination or settings.destination
    json_dump = json_dump or settings.json_dump

    snapshot = ConfigurationStore(answers).build_snapshot()
    rows = describe(snapshot)
    result: Dict[str, Any] = {"description": rows, "written": {}, "json_dump": None}

    if json_dump:
        persist_json(snapshot, json_dump)
        result["json_dump"] = json_dump

    if describe_only:
        return result

    detect_host()
    hasher = functools.partial(
        hash_password,
        argv=settings.mkpasswd_argv,
        timeout_s=settings.mkpasswd_timeout_s,
    )
    result["written"] = write_all(snapshot, destination, password_hasher=hasher)
    return result


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="mobile-installer-config")
    p.add_argument("--answers", default=PATHS.answers_default, help="Path to installer answers (json|yaml)")
    p.add_argument("--settings", default=None, help="Path to renderer settings (yaml)")
    p.add_argument("--dest", default=None, help="Directory receiving configuration.nix")
    p.add_argument("--json-dump", default=None, help="Also write the snapshot as JSON to this path")
    p.add_argument("--log", default=None, help="Path to installer log")
    p.add_argument("--describe-only", action="store_true", help="Print the answers summary and stop")

    args = p.parse_args(argv)

    settings = load_settings(args.settings)
    configure_logging(log_path=args.log or settings.log_path)

    try:
        answers = ensure_defaults(load_answers(args.answers))
        result = run(
            answers,
            settings=settings,
            destination=args.dest,
            json_dump=args.json_dump,
            describe_only=args.describe_only,
        )
    except Exception:
        logger.exception("Configuration rendering failed")
        raise

    print(format_description(result["description"]))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
