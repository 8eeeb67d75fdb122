"""Loading of .context/config.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from pydantic import ValidationError

from ..build.errors import ConfigError
from .models import ProjectConfig, default_config

CONFIG_FILENAME = "config.yaml"
_KNOWN_KEYS = {"version", "compile", "conflict_resolution", "migration"}


@dataclass(slots=True)
class ConfigLoadResult:
    config: ProjectConfig
    source: Literal["file", "defaults"]
    warnings: list[str] = field(default_factory=list)


def config_path(project_root: Path) -> Path:
    return Path(project_root) / ".context" / CONFIG_FILENAME


def load_config(project_root: Path) -> ConfigLoadResult:
    """Load and validate the project config, falling back to defaults.

    Raises :class:`ConfigError` when the file exists but is unreadable, is not
    valid YAML, or does not match the schema.
    """

    path = config_path(project_root)
    if not path.exists():
        return ConfigLoadResult(
            config=default_config(),
            source="defaults",
            warnings=["No config.yaml found, using defaults"],
        )

    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read config file: {exc}") from exc

    if not raw.strip():
        return ConfigLoadResult(
            config=default_config(),
            source="defaults",
            warnings=["config.yaml is empty, using defaults"],
        )

    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line_info = f" at line {mark.line + 1}" if mark is not None else ""
        raise ConfigError(f"Invalid YAML syntax{line_info}: {exc}") from exc

    if document is None:
        return ConfigLoadResult(
            config=default_config(),
            source="defaults",
            warnings=["config.yaml parsed as empty, using defaults"],
        )
    if not isinstance(document, dict):
        raise ConfigError("Configuration must be a mapping at the top level")

    warnings: list[str] = []
    unknown = sorted(str(key) for key in document if key not in _KNOWN_KEYS)
    if unknown:
        warnings.append(f"Unknown configuration keys will be ignored: {', '.join(unknown)}")

    try:
        config = ProjectConfig.model_validate(
            {key: value for key, value in document.items() if key in {"version", "compile"}}
        )
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigError(f"Configuration validation failed at '{location}': {first['msg']}") from exc

    return ConfigLoadResult(config=config, source="file", warnings=warnings)


__all__ = ["CONFIG_FILENAME", "ConfigLoadResult", "config_path", "load_config"]
