"""Redaction of credentials and contact details before anything is logged or journaled."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel

REDACTED = "[REDACTED]"

_SECRET_NAMES = (
    "authorization",
    "apikey",
    "api[_-]?key",
    "service[_-]?role(?:[_-]?key)?",
    "secret",
    "password",
    "token",
    "bearer",
)
_SECRET_NAME_PATTERN = "|".join(_SECRET_NAMES)

_SENSITIVE_KEY_RE = re.compile(rf"({_SECRET_NAME_PATTERN})", re.IGNORECASE)
_ASSIGNED_SECRET_RE = re.compile(rf"(?i)\b({_SECRET_NAME_PATTERN})\s*[:=]\s*[^\s,;&]+")
_BEARER_RE = re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9\-._~+/]+=*")
# Supabase anon and service-role keys are JWTs.
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")
_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+\-])[A-Za-z0-9._%+\-]*@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})\b")


def mask_email(text: str) -> str:
    """Keep the first character and the domain of each address: ``a***@example.com``."""
    return _EMAIL_RE.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", text)


def sanitize_text(text: str) -> str:
    """Redact credentials and mask email addresses embedded in free text."""
    sanitized = _JWT_RE.sub(REDACTED, text)
    sanitized = _BEARER_RE.sub(lambda m: f"{m.group(1)} {REDACTED}", sanitized)
    sanitized = _ASSIGNED_SECRET_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", sanitized)
    return mask_email(sanitized)


def sanitize_for_logging(value: Any) -> Any:
    """Recursively redact a payload; models are dumped first, numbers pass through."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {
            key: REDACTED if _SENSITIVE_KEY_RE.search(str(key)) else sanitize_for_logging(child)
            for key, child in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_for_logging(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
