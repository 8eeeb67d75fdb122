"""AGENTS.md compiler: project context plus rule summaries."""

from __future__ import annotations

from typing import Sequence

from ..rules.models import AgentsTarget, ParsedRule
from .base import (
    ARCHITECTURE_FILENAME,
    PROJECT_FILENAME,
    BaseCompiler,
    CompilationIssue,
    CompilationResult,
    CompilationStats,
    CompiledOutput,
    CompilerContext,
    context_source,
    rule_source,
)
from .selection import filter_by_directory, sort_by_priority
from .tokens import apply_budget_margin, count_tokens


class AgentsCompiler(BaseCompiler):
    name = "agents"
    output_path = "AGENTS.md"

    def compile(self, context: CompilerContext) -> CompilationResult:
        warnings: list[CompilationIssue] = []
        target = context.config.compile.agents or AgentsTarget()

        project = self.load_context_file(context, PROJECT_FILENAME)
        if project is None:
            return self.failure(
                [
                    CompilationIssue(
                        type="missing_file",
                        message="project.md is required for Agents compilation but was not found",
                        path=context_source(PROJECT_FILENAME),
                    )
                ]
            )

        architecture = self.load_context_file(context, ARCHITECTURE_FILENAME)
        if architecture is None:
            warnings.append(
                CompilationIssue(
                    type="missing_optional",
                    message="architecture.md not found, compilation will continue without it",
                    path=context_source(ARCHITECTURE_FILENAME),
                )
            )

        meta_rule = self.generate_meta_rule()
        reserved = count_tokens(project) + count_tokens(meta_rule)
        if architecture is not None:
            reserved += count_tokens(architecture)
        rules_budget = max(0, apply_budget_margin(target.max_tokens) - reserved)

        candidates = list(context.rules)
        if target.strategy == "directory":
            candidates = filter_by_directory(candidates, target.include_dirs)

        selected: list[ParsedRule] = []
        used = 0
        for rule in sort_by_priority(candidates):
            tokens = count_tokens(self.rule_summary(rule))
            if used + tokens <= rules_budget:
                selected.append(rule)
                used += tokens
            else:
                warnings.append(
                    CompilationIssue(
                        type="token_limit",
                        message=f"Rule {rule.id} excluded due to token budget",
                        path=rule_source(rule),
                    )
                )

        if not selected and context.rules:
            warnings.append(
                CompilationIssue(
                    type="empty_rules",
                    message="No rules included in AGENTS.md due to token budget constraints",
                )
            )

        body = self._render(project, architecture, selected, meta_rule)
        tokens = count_tokens(body)

        sources = [context_source(PROJECT_FILENAME)]
        if architecture is not None:
            sources.append(context_source(ARCHITECTURE_FILENAME))
        sources.extend(rule_source(rule) for rule in selected)

        return CompilationResult(
            target=self.name,
            success=True,
            outputs=[
                CompiledOutput(
                    path=self.output_path,
                    content=self.add_metadata(context, body),
                    tokens=tokens,
                    sources=sources,
                )
            ],
            warnings=warnings,
            stats=CompilationStats(
                rules_processed=len(context.rules),
                rules_included=len(selected),
                output_files=1,
                total_tokens=tokens,
                token_budget=target.max_tokens,
            ),
        )

    def _render(
        self,
        project: str,
        architecture: str | None,
        rules: Sequence[ParsedRule],
        meta_rule: str,
    ) -> str:
        sections = [
            "# Agent Context\n",
            "This document provides context for AI agents working with this project.\n",
            "## Project Overview\n",
            project.strip(),
            "",
        ]
        if architecture is not None:
            sections.extend(["## Architecture\n", architecture.strip(), ""])
        if rules:
            sections.append("## Rules and Guidelines\n")
            sections.extend(self.rule_summary(rule) for rule in rules)
        sections.append(self.generate_directory_index(rules))
        sections.append(meta_rule)
        return "\n".join(sections)


__all__ = ["AgentsCompiler"]
