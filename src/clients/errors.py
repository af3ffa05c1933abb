"""Errors raised by the Simpro gateway."""

from __future__ import annotations

from typing import Any


class SimproError(Exception):
    """A Simpro API call failed after retries, or every fallback was rejected.

    ``status`` is the last HTTP status seen (None for network errors and
    timeouts); ``body`` is the decoded response body when there was one.
    """

    def __init__(self, message: str, status: int | None = None, body: Any = None, url: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.url = url

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": "SIMPRO_ERROR",
                "message": self.message,
                "status": self.status,
                "details": self.body,
            }
        }
