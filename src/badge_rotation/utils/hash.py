"""Hashing helpers built on BLAKE3."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from blake3 import blake3


def blake3_hexdigest(data: bytes) -> str:
    """Return the hexadecimal digest of the supplied data."""
    return blake3(data).hexdigest()


def canonical_json(payload: Mapping[str, Any]) -> bytes:
    """Serialise a mapping deterministically so equal payloads hash equally."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def idempotency_key(kind: str, payload: Mapping[str, Any]) -> str:
    """Derive a stable idempotency key for an outbound record."""
    return blake3_hexdigest(kind.encode("utf-8") + b"\x00" + canonical_json(payload))
