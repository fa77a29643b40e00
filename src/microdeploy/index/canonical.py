"""Canonical serialization of structured cache keys."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel


def to_plain(value: Any) -> Any:
    """Convert models, mappings and sequences into plain JSON-able data.

    Pydantic models are dumped in JSON mode; mapping keys are stringified so
    that the result can always be encoded with sorted keys.
    """
    if isinstance(value, BaseModel):
        return to_plain(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(key): to_plain(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(to_plain(item) for item in value)
    if isinstance(value, (str, bytes)):
        return value.decode("utf-8") if isinstance(value, bytes) else value
    if isinstance(value, Sequence):
        return [to_plain(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """Serialize a value deterministically.

    Two logically equal values (same fields, any insertion order) always
    produce identical output.
    """
    return json.dumps(
        to_plain(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def fingerprint(value: Any) -> str:
    """Return the sha1 hex digest of a value's canonical serialization."""
    payload = canonical_json(value).encode("utf-8")
    return hashlib.sha1(payload).hexdigest()  # noqa: S324  # nosec B324
