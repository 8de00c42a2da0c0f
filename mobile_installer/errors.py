from __future__ import annotations

from typing import Optional, Sequence


class ConfigurationError(Exception):
    """Base class for every failure raised while producing the configuration."""


class InvalidInput(ConfigurationError, ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class UnsupportedEnvironment(ConfigurationError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"unsupported environment: {value!r}")
        self.value = value


class ExternalToolFailure(ConfigurationError, RuntimeError):
    def __init__(self, argv: Sequence[str], message: str) -> None:
        super().__init__(f"{argv[0] if argv else '<none>'}: {message}")
        self.argv = list(argv)


class IOFailure(ConfigurationError):
    def __init__(self, path: str, message: Optional[str] = None) -> None:
        super().__init__(f"{path}: {message}" if message else path)
        self.path = path
