"""Static analysis of a parsed rule set.

Duplicate ids and dead relative links block a build; token budget findings
are reported as warnings only.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Sequence

from ..compilers.tokens import count_tokens
from .models import ProjectConfig, ParsedRule

IssueType = Literal["duplicate_id", "dead_link", "token_limit"]

_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")
_EXTERNAL_PREFIXES = ("http://", "https://", "#", "mailto:")
APPROACHING_LIMIT_RATIO = 0.9


@dataclass(slots=True)
class ValidationIssue:
    type: IssueType
    message: str
    path: str
    line: int | None = None

    def describe(self) -> str:
        location = f"{self.path}:{self.line}" if self.line else self.path
        return f"{self.message} ({location})"


@dataclass(slots=True)
class ValidationReport:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def find_duplicate_ids(rules: Sequence[ParsedRule]) -> list[ValidationIssue]:
    paths_by_id: dict[str, list[str]] = defaultdict(list)
    for rule in rules:
        paths_by_id[rule.id].append(rule.path)

    issues: list[ValidationIssue] = []
    for rule_id, paths in paths_by_id.items():
        if len(paths) < 2:
            continue
        for path in paths:
            others = ", ".join(other for other in paths if other != path)
            issues.append(
                ValidationIssue(
                    type="duplicate_id",
                    message=f"Duplicate rule ID '{rule_id}' found in: {others}",
                    path=path,
                )
            )
    return issues


def _line_number(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def find_dead_links(rule: ParsedRule, project_root: Path) -> list[ValidationIssue]:
    """Relative markdown links in ``rule`` whose target does not exist.

    Links starting with ``/`` resolve from the project root, all others from
    the rule file's directory. Anchors are ignored.
    """

    issues: list[ValidationIssue] = []
    for match in _LINK_RE.finditer(rule.content):
        target = match.group(2).strip()
        if not target or target.startswith(_EXTERNAL_PREFIXES):
            continue
        link_path = target.split("#", 1)[0]
        if not link_path:
            continue
        if link_path.startswith("/"):
            resolved = Path(project_root) / link_path.lstrip("/")
        else:
            resolved = rule.absolute_path.parent / link_path
        if not resolved.exists():
            issues.append(
                ValidationIssue(
                    type="dead_link",
                    message=f"Dead link found: {link_path}",
                    path=rule.path,
                    line=_line_number(rule.content, match.start()),
                )
            )
    return issues


def _target_budgets(config: ProjectConfig) -> dict[str, int]:
    budgets: dict[str, int] = {}
    if config.compile.claude is not None:
        budgets["claude"] = config.compile.claude.max_tokens
    if config.compile.agents is not None:
        budgets["agents"] = config.compile.agents.max_tokens
    return budgets


def check_token_limits(rules: Sequence[ParsedRule], config: ProjectConfig) -> list[ValidationIssue]:
    budgets = _target_budgets(config)
    if not budgets:
        return []

    issues: list[ValidationIssue] = []
    total = 0
    for rule in rules:
        tokens = count_tokens(rule.content)
        total += tokens
        for target, budget in budgets.items():
            if tokens > budget:
                issues.append(
                    ValidationIssue(
                        type="token_limit",
                        message=(
                            f"Rule '{rule.id}' (~{tokens} tokens) exceeds the {target} "
                            f"budget of {budget} tokens and will never be included"
                        ),
                        path=rule.path,
                    )
                )

    claude_budget = budgets.get("claude")
    if claude_budget is not None and total > claude_budget * APPROACHING_LIMIT_RATIO:
        issues.append(
            ValidationIssue(
                type="token_limit",
                message=(
                    f"Estimated tokens ({total}) approaching limit ({claude_budget}). "
                    "Consider reducing content or increasing limit."
                ),
                path="all rules",
            )
        )
    return issues


def validate(
    rules: Sequence[ParsedRule],
    config: ProjectConfig,
    project_root: Path,
) -> ValidationReport:
    report = ValidationReport()
    report.errors.extend(find_duplicate_ids(rules))
    for rule in rules:
        report.errors.extend(find_dead_links(rule, project_root))
    report.warnings.extend(check_token_limits(rules, config))
    return report


__all__ = [
    "ValidationIssue",
    "ValidationReport",
    "check_token_limits",
    "find_dead_links",
    "find_duplicate_ids",
    "validate",
]
