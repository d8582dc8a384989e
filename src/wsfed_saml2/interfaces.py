"""Capability interfaces for the collaborators driven by the strategy.

The strategy only depends on these protocols; the defaults in
:mod:`wsfed_saml2.saml`, :mod:`wsfed_saml2.jwt` and
:mod:`wsfed_saml2.initiators` can be swapped for any object with the same shape.
Validators return a profile, return ``None`` to reject without an error, or
raise to report an error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from .config import AuthorizationParams
from .verification import Profile

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    import lxml.etree as LET

__all__ = [
    "AssertionValidator",
    "CompactTokenValidator",
    "SamlResponseValidator",
    "SamlpRequestInitiator",
    "WsFedRequestInitiator",
]


class AssertionValidator(Protocol):
    async def validate(self, assertion: "LET._Element") -> Profile | None: ...


class SamlResponseValidator(Protocol):
    async def validate_response(self, response: "LET._Element") -> Profile | None: ...


class CompactTokenValidator(Protocol):
    async def validate(self, token: str) -> Profile | None: ...


class WsFedRequestInitiator(Protocol):
    def get_request_security_token_url(self, params: AuthorizationParams) -> str: ...


class SamlpRequestInitiator(Protocol):
    async def get_request_url(self, params: AuthorizationParams) -> str: ...

    async def get_request_form(self, params: AuthorizationParams) -> str: ...
