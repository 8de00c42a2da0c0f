from __future__ import annotations

import json
import textwrap

_ALLOWED_CONTROL = {"\n", "\r", "\t"}


def nix_string(value: object) -> str:
    """Quote ``value`` as a double-quoted Nix string literal.

    The quoting is JSON string quoting, which Nix reads the same way for
    quotes, backslashes, newlines, carriage returns and tabs. ``${`` is
    additionally escaped so that the value is never interpolated.
    """

    text = str(value)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError("value is not valid UTF-8") from e
    for ch in text:
        if ord(ch) < 0x20 and ch not in _ALLOWED_CONTROL:
            raise ValueError(f"control character {ch!r} cannot be written to a Nix string")
    return json.dumps(text, ensure_ascii=False).replace("${", "\\${")


def nix_int(value: int) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected int, got {type(value).__name__}")
    return str(value)


def indent(text: str, prefix: str = "  ") -> str:
    # Blank lines stay empty.
    return textwrap.indent(text, prefix)
