"""Failure taxonomy shared by the build pipeline and its CLI."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class FailureKind(str, Enum):
    """Why a build did not succeed."""

    CONFIGURATION = "configuration"
    PARSE = "parse"
    VALIDATION = "validation"
    COMPILATION = "compilation"
    CHECK = "check"
    LOCK = "lock"
    TRANSACTION = "transaction"
    UNEXPECTED = "unexpected"


# Problems with the user's rules or outputs, as opposed to the tool itself.
_CONTENT_FAILURES = {
    FailureKind.PARSE,
    FailureKind.VALIDATION,
    FailureKind.COMPILATION,
    FailureKind.CHECK,
}

EXIT_OK = 0
EXIT_CONTENT_FAILURE = 1
EXIT_TOOL_FAILURE = 2


def exit_code_for(kind: FailureKind | None) -> int:
    """Map a failure kind to the process exit code a CLI should use."""

    if kind is None:
        return EXIT_OK
    if kind in _CONTENT_FAILURES:
        return EXIT_CONTENT_FAILURE
    return EXIT_TOOL_FAILURE


class BuildError(RuntimeError):
    """Base class for build pipeline errors."""

    kind: FailureKind = FailureKind.UNEXPECTED


class ConfigError(BuildError):
    """Raised when .context/config.yaml exists but cannot be used."""

    kind = FailureKind.CONFIGURATION


class LockContentionError(BuildError):
    """Raised when another invocation holds the build lock."""

    kind = FailureKind.LOCK


class TransactionError(BuildError):
    """Raised when an atomic write transaction fails."""

    kind = FailureKind.TRANSACTION


class BuildAborted(BuildError):
    """Unwinds the pipeline to the orchestrator boundary with collected messages."""

    def __init__(self, kind: FailureKind, messages: Iterable[str]) -> None:
        self.kind = kind
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or kind.value)


__all__ = [
    "BuildAborted",
    "BuildError",
    "ConfigError",
    "EXIT_CONTENT_FAILURE",
    "EXIT_OK",
    "EXIT_TOOL_FAILURE",
    "FailureKind",
    "LockContentionError",
    "TransactionError",
    "exit_code_for",
]
