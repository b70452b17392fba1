"""Make values safe for log lines: mask secrets, neutralize client-controlled text."""
import re
from typing import Any

MASK = "[REDACTED]"
MAX_VALUE_LENGTH = 256

# Substrings of dict keys (case-insensitive) whose values are never logged
SENSITIVE_KEY_PARTS = ("secret", "token", "authorization", "cookie", "password", "api_key")

# CR/LF and other control characters would let a client forge extra log lines
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def clean_log_text(value: str, max_length: int = MAX_VALUE_LENGTH) -> str:
    cleaned = _CONTROL_CHARS.sub("?", value)
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "..."
    return cleaned


def redact_for_log(obj: Any) -> Any:
    """Copy of obj for logging. Dicts and sequences are walked; strings are cleaned and truncated."""
    if isinstance(obj, dict):
        return {k: MASK if is_sensitive_key(str(k)) else redact_for_log(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(item) for item in obj)
    if isinstance(obj, str):
        return clean_log_text(obj)
    return obj
