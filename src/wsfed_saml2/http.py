"""HTTP status helpers."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus as _HTTPStatus


class Status(IntEnum):
    """HTTP status codes produced by the authentication flows."""

    OK = 200
    FOUND = 302
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    INTERNAL_SERVER_ERROR = 500


def ensure_status(status: int | Status) -> int:
    """Normalize ``status`` to an ``int`` and ensure it is within the HTTP range."""

    code = int(status)
    if code < 100 or code > 599:
        raise ValueError(f"Invalid HTTP status code: {status}")
    return code


def reason_phrase(status: int | Status) -> str:
    """Return the HTTP reason phrase for ``status`` if known."""

    try:
        return _HTTPStatus(ensure_status(status)).phrase
    except ValueError:
        return "Unknown Status"


__all__ = ["Status", "ensure_status", "reason_phrase"]
