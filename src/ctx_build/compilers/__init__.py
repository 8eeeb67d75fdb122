"""Target compilers."""

from __future__ import annotations

from .agents import AgentsCompiler
from .base import (
    BaseCompiler,
    CompilationIssue,
    CompilationResult,
    CompilationStats,
    CompiledOutput,
    CompilerContext,
)
from .claude import ClaudeCompiler
from .cursor import CursorCompiler

COMPILERS: dict[str, type[BaseCompiler]] = {
    ClaudeCompiler.name: ClaudeCompiler,
    CursorCompiler.name: CursorCompiler,
    AgentsCompiler.name: AgentsCompiler,
}


def get_compiler(name: str) -> BaseCompiler:
    try:
        return COMPILERS[name]()
    except KeyError as exc:
        known = ", ".join(sorted(COMPILERS))
        raise ValueError(f"Unknown build target '{name}' (expected one of: {known})") from exc


__all__ = [
    "AgentsCompiler",
    "BaseCompiler",
    "COMPILERS",
    "ClaudeCompiler",
    "CompilationIssue",
    "CompilationResult",
    "CompilationStats",
    "CompiledOutput",
    "CompilerContext",
    "CursorCompiler",
    "get_compiler",
]
