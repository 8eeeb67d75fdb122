"""Rule selection strategies shared by the compilers."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ..rules.models import ParsedRule
from .tokens import apply_budget_margin, count_tokens


@dataclass(slots=True)
class Selection:
    rules: list[ParsedRule] = field(default_factory=list)
    total_tokens: int = 0
    excluded_by_budget: list[ParsedRule] = field(default_factory=list)
    excluded_by_filter: list[ParsedRule] = field(default_factory=list)


def sort_by_priority(rules: Iterable[ParsedRule]) -> list[ParsedRule]:
    """Highest priority first, ties broken by id."""

    return sorted(rules, key=lambda rule: (-rule.frontmatter.priority, rule.id))


def partition_always_apply(rules: Iterable[ParsedRule]) -> tuple[list[ParsedRule], list[ParsedRule]]:
    always: list[ParsedRule] = []
    conditional: list[ParsedRule] = []
    for rule in rules:
        (always if rule.frontmatter.always_apply else conditional).append(rule)
    return always, conditional


def filter_by_directory(rules: Sequence[ParsedRule], include_dirs: Sequence[str]) -> list[ParsedRule]:
    if not include_dirs:
        return list(rules)
    normalized = [directory.strip("/") for directory in include_dirs]

    def _included(rule: ParsedRule) -> bool:
        rule_dir = posixpath.dirname(rule.path).strip("/")
        return any(
            directory == "." or rule_dir == directory or rule_dir.startswith(directory + "/")
            for directory in normalized
        )

    return [rule for rule in rules if _included(rule)]


def filter_by_tag(rules: Sequence[ParsedRule], include_tags: Sequence[str]) -> list[ParsedRule]:
    if not include_tags:
        return list(rules)
    wanted = set(include_tags)
    return [rule for rule in rules if wanted.intersection(rule.frontmatter.tags)]


def select_by_budget(
    rules: Sequence[ParsedRule],
    max_tokens: int,
    always_include: Sequence[str] = (),
) -> Selection:
    budget = apply_budget_margin(max_tokens)
    pinned = set(always_include)
    selection = Selection()

    for rule in rules:
        if rule.id in pinned:
            selection.rules.append(rule)
            selection.total_tokens += count_tokens(rule.content)

    for rule in rules:
        if rule.id in pinned:
            continue
        tokens = count_tokens(rule.content)
        if selection.total_tokens + tokens <= budget:
            selection.rules.append(rule)
            selection.total_tokens += tokens
        else:
            selection.excluded_by_budget.append(rule)
    return selection


def select_rules(
    rules: Sequence[ParsedRule],
    strategy: str,
    *,
    max_tokens: int | None = None,
    always_include: Sequence[str] = (),
    include_dirs: Sequence[str] = (),
    include_tags: Sequence[str] = (),
) -> Selection:
    """Filter by ``strategy``, order by priority and apply the token budget."""

    filtered = list(rules)
    if strategy == "directory":
        filtered = filter_by_directory(filtered, include_dirs)
    elif strategy == "tag":
        filtered = filter_by_tag(filtered, include_tags)
    excluded = [rule for rule in rules if rule not in filtered]

    ordered = sort_by_priority(filtered)
    if max_tokens is None:
        return Selection(
            rules=ordered,
            total_tokens=sum(count_tokens(rule.content) for rule in ordered),
            excluded_by_filter=excluded,
        )
    if max_tokens <= 0:
        return Selection(excluded_by_budget=ordered, excluded_by_filter=excluded)

    selection = select_by_budget(ordered, max_tokens, always_include)
    selection.excluded_by_filter = excluded
    return selection


__all__ = [
    "Selection",
    "filter_by_directory",
    "filter_by_tag",
    "partition_always_apply",
    "select_by_budget",
    "select_rules",
    "sort_by_priority",
]
