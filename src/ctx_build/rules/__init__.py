"""Rule parsing, project configuration and static analysis."""

from __future__ import annotations

from .config import ConfigLoadResult, load_config
from .models import ParsedRule, ProjectConfig, RuleFrontmatter, default_config
from .parser import ParseResult, RuleParseError, parse_all, parse_rule
from .validation import ValidationIssue, ValidationReport, validate

__all__ = [
    "ConfigLoadResult",
    "ParseResult",
    "ParsedRule",
    "ProjectConfig",
    "RuleFrontmatter",
    "RuleParseError",
    "ValidationIssue",
    "ValidationReport",
    "default_config",
    "load_config",
    "parse_all",
    "parse_rule",
    "validate",
]
