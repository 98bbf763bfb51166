"""Core primitives for facetcut.

This module provides the foundational utilities used throughout the package:
- keccak-256 hashing (selector derivation)
- Address normalization and validation
- JSON loading and atomic JSON writing for ledger files
- Ledger timestamp formatting

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import json
import os
import pathlib
import re
import tempfile
from datetime import datetime, timezone
from typing import Any, Optional

from Crypto.Hash import keccak

ZERO_ADDRESS = "0x" + "00" * 20
EMPTY_PAYLOAD = "0x"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
SELECTOR_RE = re.compile(r"^0x[0-9a-f]{8}$")


def keccak256(data: bytes) -> bytes:
    """Compute the keccak-256 digest (pre-standard SHA-3 padding)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def is_address(value: Any) -> bool:
    """Check if value is a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(ADDRESS_RE.match(value))


def normalize_address(value: str) -> str:
    """Lowercase an address for case-insensitive comparison.

    Raises ValueError for anything that is not a 20-byte hex address.
    """
    if not is_address(value):
        raise ValueError(f"not an address: {value!r}")
    return value.lower()


def is_zero_address(value: Optional[str]) -> bool:
    return not value or value.lower() == ZERO_ADDRESS


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


def is_selector(value: Any) -> bool:
    return isinstance(value, str) and bool(SELECTOR_RE.match(value))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def dump_json(obj: Any, indent: int = 2) -> str:
    return json.dumps(obj, indent=indent, sort_keys=True, ensure_ascii=False) + "\n"


def write_json_atomic(path: pathlib.Path, obj: Any, indent: int = 2) -> None:
    """Write JSON so readers see either the old file or the new one.

    The payload goes to a temporary file in the same directory which then
    replaces the destination in a single rename.
    """
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_json(obj, indent=indent))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def ledger_timestamp(when: Optional[datetime] = None) -> str:
    """Format a timestamp the way deployment records store it.

    ``YYYY-MM-DD HH:MM:SS`` in UTC, no fractional seconds.
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def timestamp_from_block(block_timestamp: int) -> str:
    """Convert a block timestamp (unix seconds) into a ledger timestamp."""
    return ledger_timestamp(datetime.fromtimestamp(int(block_timestamp), tz=timezone.utc))
