"""Rule file discovery and parsing."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ParsedRule, RuleFrontmatter, infer_globs

RULES_DIRNAME = "rules"


class RuleParseError(RuntimeError):
    """Raised when a rule file cannot be parsed."""

    def __init__(self, message: str, path: str, line: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.line = line

    def describe(self) -> str:
        return f"Parse error: {self.message} ({self.path}:{self.line or 0})"


@dataclass(slots=True)
class ParseResult:
    rules: list[ParsedRule] = field(default_factory=list)
    errors: list[RuleParseError] = field(default_factory=list)


def rules_dir(project_root: Path) -> Path:
    return Path(project_root) / ".context" / RULES_DIRNAME


def split_frontmatter(raw: str) -> tuple[str, str] | None:
    """Return ``(frontmatter, body)`` when ``raw`` opens with a ``---`` fence."""

    text = raw.lstrip("\ufeff")
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return None
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return "".join(lines[1:index]), "".join(lines[index + 1 :])
    return None


def _ensure_inside(project_root: Path, absolute_path: Path, rel: str) -> None:
    resolved_root = Path(project_root).resolve()
    resolved = absolute_path.resolve()
    if resolved != resolved_root and resolved_root not in resolved.parents:
        raise RuleParseError(
            "Security violation: rule file resolves outside the project root", rel
        )


def parse_rule(rel: str, project_root: Path) -> ParsedRule:
    """Parse one rule file given its path relative to .context/rules/."""

    absolute_path = rules_dir(project_root) / rel
    _ensure_inside(project_root, absolute_path, rel)

    try:
        raw = absolute_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RuleParseError(f"Failed to read rule file: {exc}", rel) from exc

    if not raw.strip():
        raise RuleParseError("Rule file is empty", rel)

    parts = split_frontmatter(raw)
    if parts is None:
        raise RuleParseError(
            'Rule file has no frontmatter. Add YAML frontmatter with at least an "id" field.',
            rel,
        )
    header, body = parts

    try:
        document = yaml.safe_load(header)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = mark.line + 2 if mark is not None else None
        raise RuleParseError(f"Failed to parse frontmatter: {exc}", rel, line) from exc

    if not isinstance(document, dict) or not document:
        raise RuleParseError(
            'Rule file has no frontmatter. Add YAML frontmatter with at least an "id" field.',
            rel,
        )

    try:
        frontmatter = RuleFrontmatter.model_validate(document)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise RuleParseError(
            f"Invalid frontmatter at '{location}': {first['msg']}", rel
        ) from exc

    return ParsedRule(
        path=rel,
        absolute_path=absolute_path,
        frontmatter=frontmatter,
        content=body.strip(),
        inferred_globs=infer_globs(rel),
    )


def discover_rule_files(project_root: Path) -> list[str]:
    """Sorted ``*.md`` paths under .context/rules/, relative and POSIX-style."""

    base = rules_dir(project_root)
    if not base.is_dir():
        return []
    found: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(base):
        for name in filenames:
            if name.endswith(".md"):
                found.append(Path(dirpath, name).relative_to(base).as_posix())
    return sorted(found)


def parse_all(project_root: Path) -> ParseResult:
    """Parse every rule file; errors are collected, never raised."""

    result = ParseResult()
    for rel in discover_rule_files(project_root):
        try:
            result.rules.append(parse_rule(rel, project_root))
        except RuleParseError as exc:
            result.errors.append(exc)
    return result


__all__ = [
    "ParseResult",
    "RULES_DIRNAME",
    "RuleParseError",
    "discover_rule_files",
    "parse_all",
    "parse_rule",
    "rules_dir",
    "split_frontmatter",
]
