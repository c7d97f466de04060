"""Secret / PII scrubbing for log lines and audit details.

A signed media URL is a bearer credential for 30 minutes: the `token=` query
parameter is cut out wherever a URL is logged, the rest of the URL is kept
for debugging.
"""
import re
from typing import Any, FrozenSet, Iterable, Optional, Tuple

SENSITIVE_KEYS: FrozenSet[str] = frozenset({
    "token", "password", "secret", "api_key", "jwt",
    "authorization", "session_token", "signed_url", "credential",
})

# Order matters: the URL token rule runs before the JWT rule so the
# query-string prefix survives.
_RULES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"([?&]token=)[A-Za-z0-9_\-\.%]+"), r"\1[REDACTED_URL_TOKEN]"),
    (re.compile(r"Bearer\s+[A-Za-z0-9_\-\.]+", re.IGNORECASE), "[REDACTED_BEARER]"),
    (re.compile(r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), "[REDACTED_JWT]"),
    (re.compile(r"mongodb(?:\+srv)?://\S+"), "[REDACTED_MONGO_URI]"),
    (
        re.compile(r"(?:api[_-]?key|secret|password)[\s:=]+[\"']?[A-Za-z0-9_\-\.]{20,}[\"']?", re.IGNORECASE),
        "[REDACTED_SECRET]",
    ),
    (re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+"), "[REDACTED_EMAIL]"),
    (re.compile(r"\+\d[\d\-\s]{8,15}\d"), "[REDACTED_PHONE]"),
)


def redact(text: str) -> str:
    for pattern, replacement in _RULES:
        text = pattern.sub(replacement, text)
    return text


def _redact_value(value: Any, keys: FrozenSet[str]) -> Any:
    if isinstance(value, dict):
        return redact_dict(value, keys)
    if isinstance(value, (list, tuple)):
        return [_redact_value(v, keys) for v in value]
    if isinstance(value, str):
        return redact(value)
    return value


def redact_dict(data: dict, sensitive_keys: Optional[Iterable[str]] = None) -> dict:
    """Copy of `data` with sensitive keys masked and string values scrubbed, recursively."""
    keys = SENSITIVE_KEYS if sensitive_keys is None else frozenset(k.lower() for k in sensitive_keys)
    return {
        k: "[REDACTED]" if str(k).lower() in keys else _redact_value(v, keys)
        for k, v in data.items()
    }
