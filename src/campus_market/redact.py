"""Scrub credentials from text and payloads before they reach the logs."""

from __future__ import annotations

import re
from typing import Any, Mapping

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "token",
        "credential",
        "password",
        "fcmtoken",
        "auth.credential",
    }
)

_KEY_VALUE_RE = re.compile(
    r"([\"']?(?:token|credential|password|fcmToken)[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&]+)",
    flags=re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(Bearer\s+)([^\s\"',}]+)", flags=re.IGNORECASE)


def redact_text(text: str) -> str:
    """Mask bearer tokens and ``key=value`` / ``"key": value`` secrets in free text.

    Used on error strings and URLs, which may echo request bodies or query
    parameters back at us.
    """

    masked = _BEARER_RE.sub(r"\1" + REDACTED, str(text))
    return _KEY_VALUE_RE.sub(r"\1" + REDACTED, masked)


def _scrub(value: Any) -> Any:
    if isinstance(value, Mapping):
        return redact_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


def redact_mapping(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Copy ``payload`` with the values of credential-bearing keys masked, at any depth."""

    return {
        key: REDACTED if str(key).lower() in SENSITIVE_KEYS else _scrub(value)
        for key, value in payload.items()
    }
