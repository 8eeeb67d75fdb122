"""Cursor compiler: one ``.mdc`` file per rule under ``.cursor/rules/``."""

from __future__ import annotations

import json
import re

from ..rules.models import CursorTarget, ParsedRule
from .base import (
    BaseCompiler,
    CompilationIssue,
    CompilationResult,
    CompilationStats,
    CompiledOutput,
    CompilerContext,
    rule_source,
)
from .selection import select_rules
from .tokens import count_tokens

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def output_name(rule_path: str) -> str:
    """``backend/auth.md`` becomes ``backend-auth.mdc``."""

    stem = re.sub(r"\.md$", "", rule_path)
    flat = re.sub(r"[/\\]", "-", stem)
    return f"{_UNSAFE_CHARS.sub('_', flat)}.mdc"


def render_frontmatter(rule: ParsedRule) -> str:
    lines = [
        "---",
        f"description: {json.dumps(rule.frontmatter.description or rule.id, ensure_ascii=False)}",
        "globs:",
        *(f"  - {json.dumps(glob, ensure_ascii=False)}" for glob in rule.effective_globs),
        f"alwaysApply: {'true' if rule.frontmatter.always_apply else 'false'}",
        "---",
    ]
    return "\n".join(lines)


class CursorCompiler(BaseCompiler):
    name = "cursor"
    output_directory = ".cursor/rules"
    output_suffix = ".mdc"

    def compile(self, context: CompilerContext) -> CompilationResult:
        target = context.config.compile.cursor or CursorTarget()
        selection = select_rules(context.rules, target.strategy)

        warnings: list[CompilationIssue] = []
        if not selection.rules:
            warnings.append(
                CompilationIssue(type="empty_rules", message="No rules selected for Cursor compilation")
            )

        errors: list[CompilationIssue] = []
        outputs: list[CompiledOutput] = []
        owners: dict[str, str] = {}
        for rule in selection.rules:
            path = f"{self.output_directory}/{output_name(rule.path)}"
            if path in owners:
                errors.append(
                    CompilationIssue(
                        type="output_collision",
                        message=f"Rules {owners[path]} and {rule.path} both compile to {path}",
                        path=rule_source(rule),
                    )
                )
                continue
            owners[path] = rule.path

            body = f"{render_frontmatter(rule)}\n\n{rule.content}\n"
            outputs.append(
                CompiledOutput(
                    path=path,
                    content=self.add_metadata(context, body),
                    tokens=count_tokens(body),
                    sources=[rule_source(rule)],
                )
            )

        total = sum(output.tokens for output in outputs)
        return CompilationResult(
            target=self.name,
            success=not errors,
            outputs=outputs,
            errors=errors,
            warnings=warnings,
            stats=CompilationStats(
                rules_processed=len(context.rules),
                rules_included=len(outputs),
                output_files=len(outputs),
                total_tokens=total,
            ),
        )


__all__ = ["CursorCompiler", "output_name", "render_frontmatter"]
