"""
Log Sanitizer - Prevents Log Forging attacks

Purchase order notes, cancellation reasons and actor identifiers come straight
from request bodies and end up in audit lines. Anything user supplied must pass
through here first so a crafted value cannot inject newlines or control
characters and forge extra audit entries (CWE-117).

Usage:
    from api.log_sanitizer import sanitize_for_log

    logger.info("po.cancelled po=%s reason=%s", po_number, sanitize_for_log(reason))
"""

import re
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

DEFAULT_SENSITIVE_KEYS = frozenset(
    {"password", "secret", "token", "key", "auth", "credential", "authorization"}
)


def sanitize_for_log(value: Any, max_length: int = 500) -> str:
    """
    Sanitize a value for safe inclusion in log messages.

    Newlines become visible markers, other control characters are replaced
    and overly long values are truncated.

    Examples:
        >>> sanitize_for_log("line1\\nline2")
        'line1[LF]line2'

        >>> sanitize_for_log(None)
        '[None]'
    """
    if value is None:
        return "[None]"

    try:
        s = str(value)
    except Exception:
        return "[UnprintableObject]"

    s = s.replace("\r\n", "[CRLF]")
    s = s.replace("\n", "[LF]")
    s = s.replace("\r", "[CR]")
    s = s.replace("\t", "[TAB]")
    s = _CONTROL_CHARS.sub("[CTRL]", s)

    if len(s) > max_length:
        s = s[:max_length] + "...(truncated)"

    return s


def sanitize_dict_for_log(
    d: Optional[dict], max_length: int = 500, sensitive_keys: Optional[frozenset] = None
) -> str:
    """
    Render a dictionary as ``{k=v, ...}`` with each value sanitized and
    sensitive keys redacted.
    """
    if d is None:
        return "[None]"

    if not isinstance(d, dict):
        return sanitize_for_log(d, max_length)

    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_KEYS

    parts = []
    for key, value in d.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in sensitive_keys):
            parts.append(f"{sanitize_for_log(key, 50)}=[REDACTED]")
        else:
            parts.append(f"{sanitize_for_log(key, 50)}={sanitize_for_log(value, max_length=100)}")

    result = "{" + ", ".join(parts) + "}"
    if len(result) > max_length:
        result = result[:max_length] + "...(truncated)}"
    return result
