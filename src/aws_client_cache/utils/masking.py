"""Sensitive-value masking for log output.

``redact_sensitive_fields`` walks dicts/lists and replaces values whose keys
match known sensitive markers. ``redact_headers`` is the flat variant used for
HTTP request headers, which may hold ``bytes`` values.
"""

from __future__ import annotations

from collections.abc import Mapping

_MAX_REDACT_DEPTH = 20

# Substring match, case-insensitive.
SENSITIVE_KEY_MARKERS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "accesskey",
    "credential",
    "authorization",
    "externalid",
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower().replace("-", "").replace("_", "")
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = "***",
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Recursively replace sensitive values in dicts/lists.

    When ``max_depth`` is exceeded the entire sub-tree is replaced with *mask*.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, Mapping):
        return {
            key: mask
            if _is_sensitive(str(key))
            else redact_sensitive_fields(val, mask=mask, depth=depth + 1, max_depth=max_depth)
            for key, val in value.items()
        }
    if isinstance(value, list):
        return [
            redact_sensitive_fields(item, mask=mask, depth=depth + 1, max_depth=max_depth)
            for item in value
        ]
    return value


def redact_headers(headers: Mapping[str, object], *, mask: str = "***") -> dict[str, str]:
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if _is_sensitive(key):
            redacted[key] = mask
        elif isinstance(value, bytes):
            redacted[key] = value.decode("utf-8", errors="replace")
        else:
            redacted[key] = str(value)
    return redacted
