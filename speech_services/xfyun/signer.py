"""HMAC-SHA256 request signing for xfyun endpoints.

Canonical string:
  host: {host}
  date: {date}
  {METHOD} {path} HTTP/1.1
  [digest: {digest}]

The signature is base64(HMAC-SHA256(secret, canonical)) wrapped in the
vendor authorization scheme. Socket connections send the scheme string
base64-encoded once more as the ``authorization`` query parameter.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from email.utils import formatdate
from urllib.parse import urlencode, urlsplit

ALGORITHM = "hmac-sha256"


@dataclass(frozen=True, slots=True)
class SigningMaterial:
    """Headers/parameters that authenticate one request."""

    date: str
    authorization: str
    digest: str | None = None


def format_date(timestamp: float) -> str:
    """RFC 1123 date in GMT: 'Mon, 19 Oct 2026 08:00:00 GMT'."""
    return formatdate(timestamp, usegmt=True)


def body_digest(body: bytes) -> str:
    """Digest header value for a POST body."""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def canonical_string(
    host: str, path: str, method: str, date: str, digest: str | None = None
) -> str:
    canonical = f"host: {host}\ndate: {date}\n{method.upper()} {path} HTTP/1.1"
    if digest is not None:
        canonical += f"\ndigest: {digest}"
    return canonical


def sign(secret: str, canonical: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_request(
    *,
    host: str,
    path: str,
    method: str,
    api_key: str,
    secret: str,
    timestamp: float,
    digest: str | None = None,
) -> SigningMaterial:
    """Build the authorization scheme string for one request.

    Pure and deterministic: the same inputs always give the same output.
    An empty secret is the caller's problem and is not checked here.
    """
    date = format_date(timestamp)
    signature = sign(secret, canonical_string(host, path, method, date, digest))
    headers = "host date request-line" if digest is None else "host date request-line digest"
    authorization = (
        f'api_key="{api_key}", algorithm="{ALGORITHM}", '
        f'headers="{headers}", signature="{signature}"'
    )
    return SigningMaterial(date=date, authorization=authorization, digest=digest)


def signed_socket_url(url: str, *, api_key: str, secret: str, timestamp: float) -> str:
    """Append GET-signed authentication parameters to a socket URL."""
    parts = urlsplit(url)
    material = sign_request(
        host=parts.netloc,
        path=parts.path,
        method="GET",
        api_key=api_key,
        secret=secret,
        timestamp=timestamp,
    )
    authorization = base64.b64encode(material.authorization.encode("utf-8")).decode("ascii")
    query = urlencode(
        {"authorization": authorization, "date": material.date, "host": parts.netloc}
    )
    return f"{parts.scheme}://{parts.netloc}{parts.path}?{query}"
