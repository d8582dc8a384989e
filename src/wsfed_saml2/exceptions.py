"""Error taxonomy for the federated authentication strategy."""

from __future__ import annotations

from typing import Any

from .http import Status, ensure_status, reason_phrase
from .serialization import json_encode


class WsFedSaml2Error(Exception):
    """Base error type."""


class ConfigurationError(WsFedSaml2Error):
    """The strategy instance is misconfigured; raised loudly, never reported as an outcome."""


class AuthenticationError(WsFedSaml2Error, RuntimeError):
    """Raised by validators when a credential is rejected.

    The message is a short machine code such as ``"invalid_signature"``.
    """

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(code if detail is None else f"{code}: {detail}")
        self.code = code
        self.detail = detail


class MalformedCredentialError(WsFedSaml2Error, ValueError):
    """The request carries credential material that is not even well-shaped.

    The message is human readable and is reported back as a 400 failure.
    """


class HTTPError(WsFedSaml2Error):
    """Structured HTTP error that is msgspec serializable."""

    def __init__(self, status: int | Status, detail: Any) -> None:
        status_code = ensure_status(status)
        super().__init__(status_code, detail)
        self.status = status_code
        self.detail = detail
        self.reason = reason_phrase(status_code)

    def to_response_body(self) -> bytes:
        return json_encode({"error": {"status": self.status, "reason": self.reason, "detail": self.detail}})


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "HTTPError",
    "MalformedCredentialError",
    "WsFedSaml2Error",
]
