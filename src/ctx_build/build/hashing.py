"""Content hashing with algorithm-tagged digests."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Union

HASH_PREFIX = "sha256:"


def hash_content(content: Union[str, bytes]) -> str:
    """Return the ``sha256:<hex>`` digest of ``content`` (str is UTF-8 encoded)."""

    if isinstance(content, str):
        content = content.encode("utf-8")
    return f"{HASH_PREFIX}{hashlib.sha256(content).hexdigest()}"


def hash_file(path: Union[str, Path]) -> str:
    """Return the digest of a file's exact bytes."""

    return hash_content(Path(path).read_bytes())


def canonical_dumps(obj: Any) -> str:
    """Byte-stable JSON: sorted keys, compact separators, UTF-8."""

    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = ["HASH_PREFIX", "canonical_dumps", "hash_content", "hash_file"]
