"""Errors raised by the baidu client."""

from __future__ import annotations


class BaiduAPIError(Exception):
    """Raised when a baidu call fails or returns an error payload."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"baidu {code}: {message}")


class BaiduCredentialError(BaiduAPIError):
    """Bearer token could not be obtained, or was rejected after a refresh."""
