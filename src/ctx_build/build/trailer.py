"""Build metadata trailer appended to every generated artifact.

The trailer is kept as a typed value until it is rendered, and this module
owns the single canonical implementation of appending, detecting and
stripping it:

    <body>
    <blank line>
    <!-- ctx build metadata -->
    <!-- timestamp: 2025-01-01T00:00:00.000Z -->
    <!-- checksum: sha256:<hex> -->

The checksum covers the newline-normalized body only, so two artifacts that
differ only in their timestamp line are equivalent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from .hashing import hash_content

TRAILER_MARKER = "<!-- ctx build metadata -->"

_TRAILER_RE = re.compile(
    r"\n<!-- ctx build metadata -->\n"
    r"<!-- timestamp: (?P<timestamp>[^\n]+) -->\n"
    r"<!-- checksum: (?P<checksum>sha256:[a-f0-9]{64}) -->\s*\Z"
)


@dataclass(slots=True, frozen=True)
class BuildTrailer:
    """Structured form of the metadata block."""

    timestamp: str
    checksum: str

    def render(self) -> str:
        return (
            f"\n{TRAILER_MARKER}\n"
            f"<!-- timestamp: {self.timestamp} -->\n"
            f"<!-- checksum: {self.checksum} -->\n"
        )


def normalize_newlines(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""

    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def checksum_body(body: str) -> str:
    return hash_content(normalize_newlines(body))


def make_trailer(body: str, moment: datetime | None = None) -> BuildTrailer:
    moment = moment or datetime.now(timezone.utc)
    return BuildTrailer(timestamp=format_timestamp(moment), checksum=checksum_body(body))


def append_trailer(body: str, moment: datetime | None = None) -> str:
    """Return ``body`` with a freshly computed trailer appended."""

    return body + make_trailer(body, moment).render()


def split_trailer(content: str) -> tuple[str, BuildTrailer | None]:
    """Split artifact content into ``(body, trailer)``.

    The body is newline-normalized. When no well-formed trailer terminates the
    content the whole normalized content is returned with ``None``.
    """

    content = normalize_newlines(content)
    match = _TRAILER_RE.search(content)
    if match is None:
        return content, None
    trailer = BuildTrailer(timestamp=match.group("timestamp"), checksum=match.group("checksum"))
    return content[: match.start()], trailer


def strip_trailer(content: str) -> str:
    return split_trailer(content)[0]


def has_trailer(content: str) -> bool:
    return split_trailer(content)[1] is not None


def equivalent(left: str, right: str) -> bool:
    """True when two artifact contents differ at most in their trailer."""

    return strip_trailer(left) == strip_trailer(right)


def verify_content(content: str) -> bool:
    """True when the embedded checksum matches the body."""

    body, trailer = split_trailer(content)
    if trailer is None:
        return False
    return trailer.checksum == hash_content(body)


__all__ = [
    "BuildTrailer",
    "TRAILER_MARKER",
    "append_trailer",
    "checksum_body",
    "equivalent",
    "format_timestamp",
    "has_trailer",
    "make_trailer",
    "normalize_newlines",
    "split_trailer",
    "strip_trailer",
    "verify_content",
]
