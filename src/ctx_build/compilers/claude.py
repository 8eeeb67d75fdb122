"""CLAUDE.md compiler: project context plus budgeted full rule text."""

from __future__ import annotations

from typing import Sequence

from ..rules.models import ClaudeTarget, ParsedRule
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
from .selection import partition_always_apply, select_rules
from .tokens import apply_budget_margin, count_tokens


class ClaudeCompiler(BaseCompiler):
    name = "claude"
    output_path = "CLAUDE.md"

    def compile(self, context: CompilerContext) -> CompilationResult:
        warnings: list[CompilationIssue] = []
        target = context.config.compile.claude or ClaudeTarget()

        project = self.load_context_file(context, PROJECT_FILENAME)
        if project is None:
            return self.failure(
                [
                    CompilationIssue(
                        type="missing_file",
                        message="project.md is required for Claude compilation but was not found",
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

        always, conditional = partition_always_apply(context.rules)
        always_tokens = sum(count_tokens(rule.content) for rule in always)
        selection = select_rules(
            conditional,
            target.strategy,
            max_tokens=rules_budget - always_tokens,
            always_include=target.always_include,
        )
        selected = [*always, *selection.rules]

        if selection.excluded_by_budget:
            warnings.append(
                CompilationIssue(
                    type="token_limit",
                    message=f"{len(selection.excluded_by_budget)} rules excluded due to token budget",
                )
            )
        if not selected and context.rules:
            warnings.append(
                CompilationIssue(
                    type="empty_rules",
                    message="No rules selected for Claude compilation after budget constraints",
                )
            )

        body = self._render(project, architecture, selected, meta_rule)
        tokens = count_tokens(body)

        sources = [context_source(PROJECT_FILENAME)]
        if architecture is not None:
            sources.append(context_source(ARCHITECTURE_FILENAME))
        sources.extend(rule_source(rule) for rule in selected)

        output = CompiledOutput(
            path=self.output_path,
            content=self.add_metadata(context, body),
            tokens=tokens,
            sources=sources,
        )
        return CompilationResult(
            target=self.name,
            success=True,
            outputs=[output],
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
        sections = ["# Project Context\n", project.strip(), ""]
        if architecture is not None:
            sections.extend(["## Architecture\n", architecture.strip(), ""])
        sections.append(self.generate_directory_index(rules))
        if rules:
            sections.append("## Rules\n")
            for rule in rules:
                sections.append(f"### {rule.id}\n")
                if rule.frontmatter.description:
                    sections.append(f"*{rule.frontmatter.description}*\n")
                sections.extend([rule.content.strip(), ""])
        sections.append(meta_rule)
        return "\n".join(sections)


__all__ = ["ClaudeCompiler"]
