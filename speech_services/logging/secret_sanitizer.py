"""Secret sanitizer: masks credentials in log output.

Signed socket URLs carry the authorization material in the query string,
and baidu calls carry bearer tokens in query or body. Anything that looks
like one of those is masked before a record leaves the process.
"""

from __future__ import annotations

import re

# key=value pairs in URLs, form bodies and reprs of dicts
_QUERY_SECRET_RE = re.compile(
    r"(?P<key>\b(?:authorization|access_token|token|tok|client_secret|api_secret)"
    r"(?:['\"]?\s*[:=]\s*['\"]?))"
    r"(?P<value>[^&\s'\",}]+)",
    re.IGNORECASE,
)

# signature="..." inside an hmac authorization header
_SIGNATURE_RE = re.compile(r'(signature=")([^"]+)(")')

# api_key="..." inside an hmac authorization header
_API_KEY_RE = re.compile(r'(api_key=")([^"]+)(")')


def _mask(value: str) -> str:
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def sanitize_query_secrets(text: str) -> str:
    """Mask token-like parameters: access_token=24.abc...xyz → access_token=24***yz."""

    def _replace(m: re.Match[str]) -> str:
        return f"{m.group('key')}{_mask(m.group('value'))}"

    return _QUERY_SECRET_RE.sub(_replace, text)


def sanitize_signature(text: str) -> str:
    """Mask hmac signature and api_key values in authorization strings."""
    text = _SIGNATURE_RE.sub(lambda m: f"{m.group(1)}***{m.group(3)}", text)
    return _API_KEY_RE.sub(lambda m: f"{m.group(1)}{_mask(m.group(2))}{m.group(3)}", text)


def sanitize_secrets(text: str) -> str:
    """Apply all secret masks to a log message."""
    if not text:
        return text
    text = sanitize_signature(text)
    return sanitize_query_secrets(text)
