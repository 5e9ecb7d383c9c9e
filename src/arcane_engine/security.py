from __future__ import annotations

import re
from typing import Any


SECRET_VALUE_PATTERNS = [
    re.compile(r"\bsk-[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\b(?:Bearer|Token)\s+[A-Za-z0-9\-_\.]{16,}\b", re.IGNORECASE),
    re.compile(r"\b(?:password|passwd|pwd)\s*[:=]\s*\S+", re.IGNORECASE),
    re.compile(r"-----BEGIN (?:RSA|EC|OPENSSH|PRIVATE) KEY-----"),
]

PII_PATTERNS = [
    re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w{2,}\b"),  # email
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN-like
]


def _iter_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for key, inner in value.items():
            yield str(key)
            yield from _iter_strings(inner)
    elif isinstance(value, (list, tuple)):
        for inner in value:
            yield from _iter_strings(inner)


def payload_contains_secrets(value: Any) -> bool:
    for text in _iter_strings(value):
        for pattern in SECRET_VALUE_PATTERNS:
            if pattern.search(text):
                return True
    return False


def payload_contains_pii(value: Any) -> bool:
    for text in _iter_strings(value):
        for pattern in PII_PATTERNS:
            if pattern.search(text):
                return True
    return False


def mask_email(email: str) -> str:
    """`someone@example.com` -> `s***@example.com` for console output."""

    local, sep, domain = (email or "").partition("@")
    if not sep or not local:
        return "***"
    return f"{local[0]}***@{domain}"
