from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

CONFIG_YAML = """
version: "1.0"
compile:
  claude:
    max_tokens: 4000
  cursor:
    strategy: all
  agents:
    max_tokens: 8000
"""


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path


def write_rule(root: Path, rel: str, rule_id: str, body: str = "Follow the rule.", **fields) -> Path:
    lines = ["---", f"id: {rule_id}"]
    for key, value in fields.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, list):
            value = "[" + ", ".join(value) + "]"
        lines.append(f"{key}: {value}")
    lines.extend(["---", "", body, ""])
    path = root / ".context" / "rules" / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    write(root / ".context" / "project.md", "# Sample\n\nA sample project for build tests.\n")
    write(root / ".context" / "architecture.md", "Layered: cli, build, compilers.\n")
    write(root / ".context" / "config.yaml", CONFIG_YAML)
    write_rule(
        root,
        "general.md",
        "general",
        "Keep functions small.\n\nPrefer composition over inheritance.",
        description="General coding guidance",
        priority=90,
        always_apply=True,
    )
    write_rule(
        root,
        "backend/api.md",
        "api-design",
        "Version every public endpoint.",
        description="API design rules",
        tags=["backend", "api"],
    )
    write_rule(root, "security/auth.md", "auth", "Never log credentials.", domain="security")
    return root
