"""Content-aware token estimation for context budgets.

Characters per token by detected content type: prose 3.5, code 2.5,
mixed 3.0, CJK 1.5.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Literal

ContentType = Literal["prose", "code", "mixed", "cjk"]

TOKEN_RATIOS: dict[str, float] = {
    "prose": 3.5,
    "code": 2.5,
    "mixed": 3.0,
    "cjk": 1.5,
}

_CODE_INDICATORS = [
    re.compile(pattern, re.MULTILINE)
    for pattern in (
        r"\bimport\s+",
        r"\bexport\s+",
        r"\bfunction\s+",
        r"\bclass\s+",
        r"\bconst\s+",
        r"\blet\s+",
        r"\bvar\s+",
        r"\bdef\s+",
        r"\basync\s+",
        r"=>",
        r"\breturn\s+",
        r"\bif\s*\(",
        r"\bfor\s*\(",
        r"\bwhile\s*\(",
        r"\bswitch\s*\(",
        r"\{\s*$",
        r"^\s*\}",
    )
]
_PROSE_INDICATORS = [
    re.compile(pattern)
    for pattern in (r"^#+\s+", r"^\s*[-*]\s+", r"^\d+\.\s+", r"\*\*[^*]+\*\*", r"\*[^*]+\*")
]
_CJK = re.compile("[一-鿿㐀-䶿぀-ゟ゠-ヿ가-힯]")

CODE_INDICATOR_THRESHOLD = 3
CJK_RATIO_THRESHOLD = 0.3
DEFAULT_MARGIN_PERCENT = 5


@dataclass(slots=True, frozen=True)
class TokenEstimate:
    tokens: int
    content_type: ContentType
    characters: int
    ratio: float


def detect_content_type(content: str) -> ContentType:
    if not content:
        return "mixed"

    if len(_CJK.findall(content)) / len(content) >= CJK_RATIO_THRESHOLD:
        return "cjk"

    code_hits = sum(len(pattern.findall(content)) for pattern in _CODE_INDICATORS)
    if code_hits >= CODE_INDICATOR_THRESHOLD:
        return "code"

    prose_lines = sum(
        1
        for line in content.split("\n")
        if any(pattern.search(line) for pattern in _PROSE_INDICATORS)
    )
    if prose_lines >= 3:
        return "prose"
    return "mixed"


def estimate_tokens(content: str) -> TokenEstimate:
    if not content:
        return TokenEstimate(tokens=0, content_type="mixed", characters=0, ratio=TOKEN_RATIOS["mixed"])
    content_type = detect_content_type(content)
    ratio = TOKEN_RATIOS[content_type]
    return TokenEstimate(
        tokens=math.ceil(len(content) / ratio),
        content_type=content_type,
        characters=len(content),
        ratio=ratio,
    )


def count_tokens(content: str) -> int:
    return estimate_tokens(content).tokens


def apply_budget_margin(budget: int, margin_percent: int = DEFAULT_MARGIN_PERCENT) -> int:
    """Budget left after reserving ``margin_percent`` for metadata overhead."""

    return math.floor(budget * (1 - margin_percent / 100))


__all__ = [
    "ContentType",
    "TOKEN_RATIOS",
    "TokenEstimate",
    "apply_budget_margin",
    "count_tokens",
    "detect_content_type",
    "estimate_tokens",
]
