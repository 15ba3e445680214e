from __future__ import annotations

import re


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PUSH_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[.+\]$")


def normalize_email(email: str | None) -> str:
    """Lower-cased, stripped email. Uniqueness is enforced on this form."""
    return (email or "").strip().lower()


def is_valid_email(email: str | None) -> bool:
    e = normalize_email(email)
    return bool(e) and len(e) <= 254 and _EMAIL_RE.match(e) is not None


def clean_text(value: str | None) -> str:
    """Strip and collapse internal whitespace."""
    return re.sub(r"\s+", " ", (value or "").strip())


def is_expo_push_token(token: str | None) -> bool:
    return bool(token) and _PUSH_TOKEN_RE.match(str(token).strip()) is not None
