"""Shared compiler types and helpers."""

from __future__ import annotations

import posixpath
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Sequence

from ..build.manifest import CONTEXT_DIRNAME
from ..build.trailer import append_trailer
from ..rules.models import ParsedRule, ProjectConfig

PROJECT_FILENAME = "project.md"
ARCHITECTURE_FILENAME = "architecture.md"
RULES_PREFIX = f"{CONTEXT_DIRNAME}/rules/"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CompilationIssue:
    type: str
    message: str
    path: str | None = None

    def describe(self) -> str:
        return f"{self.message} ({self.path})" if self.path else self.message


@dataclass(slots=True)
class CompiledOutput:
    """One artifact produced by a compiler, not yet written.

    ``path`` and ``sources`` are project-root-relative POSIX paths.
    """

    path: str
    content: str
    tokens: int
    sources: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CompilationStats:
    rules_processed: int = 0
    rules_included: int = 0
    output_files: int = 0
    total_tokens: int = 0
    token_budget: int | None = None


@dataclass(slots=True)
class CompilationResult:
    target: str
    success: bool
    outputs: list[CompiledOutput] = field(default_factory=list)
    errors: list[CompilationIssue] = field(default_factory=list)
    warnings: list[CompilationIssue] = field(default_factory=list)
    stats: CompilationStats = field(default_factory=CompilationStats)

    @property
    def total_tokens(self) -> int:
        return self.stats.total_tokens


@dataclass(slots=True)
class CompilerContext:
    """Inputs shared by every compiler in one build."""

    project_root: Path
    config: ProjectConfig
    rules: Sequence[ParsedRule]
    clock: Callable[[], datetime] = utc_now


def rule_source(rule: ParsedRule) -> str:
    """Manifest key of a rule file."""

    return RULES_PREFIX + rule.path


def context_source(filename: str) -> str:
    return f"{CONTEXT_DIRNAME}/{filename}"


class BaseCompiler:
    """Base class for target compilers.

    Single-file targets set ``output_path``; directory-style targets set
    ``output_directory`` and ``output_suffix`` instead.
    """

    name: str = ""
    output_path: str | None = None
    output_directory: str | None = None
    output_suffix: str = ""

    def owns(self, output_path: str) -> bool:
        if self.output_directory is None:
            return output_path == self.output_path
        return (
            posixpath.dirname(output_path) == self.output_directory
            and output_path.endswith(self.output_suffix)
        )

    def compile(self, context: CompilerContext) -> CompilationResult:
        raise NotImplementedError

    # Helpers -----------------------------------------------------------

    @staticmethod
    def load_context_file(context: CompilerContext, filename: str) -> str | None:
        """Content of ``.context/<filename>``; None when missing or blank."""

        path = Path(context.project_root) / CONTEXT_DIRNAME / filename
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return content if content.strip() else None

    @staticmethod
    def add_metadata(context: CompilerContext, body: str) -> str:
        return append_trailer(body, context.clock())

    def failure(
        self,
        errors: Iterable[CompilationIssue],
        warnings: Iterable[CompilationIssue] = (),
    ) -> CompilationResult:
        return CompilationResult(
            target=self.name,
            success=False,
            errors=list(errors),
            warnings=list(warnings),
        )

    @staticmethod
    def generate_meta_rule() -> str:
        return "\n".join(
            [
                "## Context Hygiene",
                "",
                "This file is generated by `ctx-build` from the `.context/` directory. "
                "Do not edit it by hand; changes are overwritten on the next build.",
                "",
                "- Add or update rules in `.context/rules/` and project notes in `.context/project.md`.",
                "- Keep each rule focused on one concern and give it a stable `id`.",
                "- Run `ctx-build build` after editing rules to regenerate the outputs.",
                "",
            ]
        )

    @staticmethod
    def generate_directory_index(rules: Sequence[ParsedRule]) -> str:
        lines = ["## Directory Index", ""]
        if not rules:
            lines.extend(["No rules defined yet.", ""])
            return "\n".join(lines)

        by_directory: dict[str, list[str]] = defaultdict(list)
        for rule in rules:
            directory = posixpath.dirname(rule.path) or "(root)"
            by_directory[directory].append(rule.id)

        lines.extend([f"Rules live under `{RULES_PREFIX}`:", ""])
        for directory in sorted(by_directory):
            label = directory if directory == "(root)" else f"{directory}/"
            lines.append(f"- **{label}**: {', '.join(sorted(by_directory[directory]))}")
        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def rule_summary(rule: ParsedRule) -> str:
        """Heading, metadata and first paragraph of ``rule``."""

        frontmatter = rule.frontmatter
        lines = [f"### {rule.id}", ""]
        if frontmatter.description:
            lines.extend([f"**Description:** {frontmatter.description}", ""])
        if frontmatter.tags:
            lines.extend([f"**Tags:** {', '.join(frontmatter.tags)}", ""])
        if frontmatter.domain:
            lines.extend([f"**Domain:** {frontmatter.domain}", ""])
        first_paragraph = rule.content.split("\n\n", 1)[0].strip()
        if first_paragraph:
            lines.append(first_paragraph)
        lines.append("")
        return "\n".join(lines)


__all__ = [
    "ARCHITECTURE_FILENAME",
    "BaseCompiler",
    "CompilationIssue",
    "CompilationResult",
    "CompilationStats",
    "CompiledOutput",
    "CompilerContext",
    "PROJECT_FILENAME",
    "RULES_PREFIX",
    "context_source",
    "rule_source",
    "utc_now",
]
