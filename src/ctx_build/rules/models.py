"""Rule and project configuration models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_PRIORITY = 50

SelectionStrategy = Literal["priority", "directory", "glob", "tag", "all"]
BUILD_TARGETS: tuple[str, ...] = ("claude", "cursor", "agents")


class RuleFrontmatter(BaseModel):
    """YAML frontmatter at the top of a rule file."""

    id: str = Field(..., description="Stable identifier for the rule.")
    description: str | None = Field(default=None, description="One-line summary.")
    domain: str | None = Field(default=None, description="Optional grouping label.")
    globs: list[str] | None = Field(
        default=None,
        description="File patterns the rule applies to; inferred from its directory when absent.",
    )
    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=100)
    tags: list[str] = Field(default_factory=list)
    always_apply: bool = Field(default=False)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("Rule ID is required")
        normalized = str(value).strip()
        if not normalized:
            raise ValueError("Rule ID is required")
        return normalized

    @field_validator("globs", mode="before")
    @classmethod
    def _ensure_glob_list(cls, value: Any):
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("globs must be a string or a list of strings")

    @field_validator("tags", mode="before")
    @classmethod
    def _ensure_tag_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("tags must be a list of strings")


def infer_globs(rule_path: str) -> list[str]:
    """Globs implied by a rule's directory under .context/rules/."""

    parts = rule_path.split("/")[:-1]
    if not parts:
        return ["**/*"]
    directory = "/".join(parts)
    return [f"{directory}/**/*", f"src/{directory}/**/*", f"lib/{directory}/**/*"]


@dataclass(slots=True)
class ParsedRule:
    """A rule file after frontmatter validation."""

    path: str
    absolute_path: Path
    frontmatter: RuleFrontmatter
    content: str
    inferred_globs: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.frontmatter.id

    @property
    def effective_globs(self) -> list[str]:
        return self.frontmatter.globs if self.frontmatter.globs else self.inferred_globs


class ClaudeTarget(BaseModel):
    max_tokens: int = Field(default=4000, gt=0)
    strategy: SelectionStrategy = "priority"
    always_include: list[str] = Field(default_factory=list)


class CursorTarget(BaseModel):
    strategy: SelectionStrategy = "all"


class AgentsTarget(BaseModel):
    max_tokens: int = Field(default=8000, gt=0)
    strategy: SelectionStrategy = "priority"
    include_dirs: list[str] = Field(default_factory=list)


class CompileConfig(BaseModel):
    claude: ClaudeTarget | None = None
    cursor: CursorTarget | None = None
    agents: AgentsTarget | None = None


class ProjectConfig(BaseModel):
    """Contents of .context/config.yaml."""

    version: str = "1.0"
    compile: CompileConfig = Field(default_factory=CompileConfig)

    @field_validator("version", mode="before")
    @classmethod
    def _stringify_version(cls, value: Any) -> str:
        return str(value)

    @field_validator("compile", mode="before")
    @classmethod
    def _empty_compile_section(cls, value: Any):
        return {} if value is None else value

    def configured_targets(self) -> list[str]:
        """Targets with a ``compile`` section, defaulting to ``claude``."""

        targets = [name for name in BUILD_TARGETS if getattr(self.compile, name) is not None]
        return targets or ["claude"]


def default_config() -> ProjectConfig:
    return ProjectConfig(
        compile=CompileConfig(
            claude=ClaudeTarget(),
            cursor=CursorTarget(),
            agents=AgentsTarget(),
        )
    )


__all__ = [
    "AgentsTarget",
    "BUILD_TARGETS",
    "ClaudeTarget",
    "CompileConfig",
    "CursorTarget",
    "DEFAULT_PRIORITY",
    "ParsedRule",
    "ProjectConfig",
    "RuleFrontmatter",
    "SelectionStrategy",
    "default_config",
    "infer_globs",
]
