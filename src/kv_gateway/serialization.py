"""
Conversion between the store's flat strings and structured values.

Strings are stored as-is and everything else as compact JSON. Reading is
best effort: a stored string that parses as JSON comes back decoded, so
the literal text ``"123"`` written as a string reads back as the number
123. The storage format cannot tell the two apart.
"""

import json
from typing import Any


def serialize(value: Any) -> str:
    """Return strings unchanged, JSON-encode everything else."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON
    raise ValueError(f"{name} is not valid JSON")


def deserialize(raw: str) -> Any:
    """Decode JSON, falling back to the raw string when it is not JSON."""
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except (TypeError, ValueError):
        return raw


def decode_batch_value(raw: str | None) -> Any:
    """
    Decode a value read by a batch ``get``.

    Only values starting with ``{`` or ``[`` are parsed; everything else,
    including numbers and quoted strings, is returned verbatim. A
    malformed value that starts with a brace raises ``json.JSONDecodeError``
    and fails its batch item.
    """
    if not raw:
        return None
    if raw.startswith("{") or raw.startswith("["):
        return json.loads(raw)
    return raw


def byte_size(raw: str) -> int:
    """Size in bytes of a stored string."""
    return len(raw.encode("utf-8"))
