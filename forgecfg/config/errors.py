"""Error raised when configuration cannot be loaded into a usable snapshot."""

from __future__ import annotations


class ConfigError(Exception):
    """Unrecoverable configuration problem.

    The loader raises this instead of terminating the process; the caller
    (usually the CLI) decides whether to exit.
    """

    def __init__(self, message: str, *, section: str | None = None, key: str | None = None):
        super().__init__(message)
        self.message = message
        self.section = section
        self.key = key

    def __str__(self) -> str:
        return self.message
