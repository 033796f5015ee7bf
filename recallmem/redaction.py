from __future__ import annotations

import re

REDACTION_MARKER = "***REDACTED***"

REDACTION_PATTERNS = [
    # AWS access key ids
    re.compile(r"(?:AKIA|ABIA|ACCA|ASIA)[A-Z0-9]{16}"),
    # JWTs
    re.compile(r"eyJ[a-zA-Z0-9_-]{10,}\.eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}"),
    re.compile(
        r"(?:api[_-]?key|apikey|api[_-]?secret)\s*[:=]\s*['\"]?[A-Za-z0-9_-]{20,}['\"]?",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:password|passwd|pwd|secret|token|auth[_-]?token|access[_-]?token|bearer)"
        r"\s*[:=]\s*['\"]?[^\s'\"]{8,}['\"]?",
        re.IGNORECASE,
    ),
    # user:pass@host
    re.compile(r"https?://[^:/\s]+:[^@\s]+@"),
    re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"),
    re.compile(r"gh[pousr]_[A-Za-z0-9]{36,}"),
    re.compile(r"xox[baprs]-[A-Za-z0-9-]{10,}", re.IGNORECASE),
    re.compile(r"sk-[A-Za-z0-9]{10,}"),
    re.compile(r"\bBearer\s+[A-Za-z0-9_\-.]{20,}"),
]


def _mask(match: re.Match[str]) -> str:
    return match.group(0)[:4] + REDACTION_MARKER


def redact(text: str) -> str:
    """Mask secrets, keeping the first four characters of each match."""
    if not text:
        return text
    redacted = text
    for pattern in REDACTION_PATTERNS:
        redacted = pattern.sub(_mask, redacted)
    return redacted


def redact_optional(text: str | None) -> str | None:
    if text is None:
        return None
    return redact(text)

