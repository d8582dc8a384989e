"""Strategy configuration objects."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

import msgspec
from msgspec import Struct

from .exceptions import ConfigurationError

__all__ = [
    "AuthenticateOptions",
    "AuthorizationParams",
    "CompactTokenOptions",
    "Protocol",
    "ProtocolBinding",
    "StrategyConfig",
    "TokenFormat",
    "build_authorization_params",
    "coerce_options",
]


class Protocol(str, Enum):
    """Federation protocols understood by the strategy."""

    WSFED = "wsfed"
    SAMLP = "samlp"


class TokenFormat(str, Enum):
    """Credential formats; exactly one is active per strategy."""

    XML_ASSERTION = "xml-assertion"
    COMPACT = "compact"


class ProtocolBinding(str, Enum):
    """SAML bindings used to deliver the authentication request."""

    HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
    HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"


_BINDING_ALIASES = {
    "redirect": ProtocolBinding.HTTP_REDIRECT.value,
    "post": ProtocolBinding.HTTP_POST.value,
}


class CompactTokenOptions(Struct, frozen=True, rename="camel"):
    """Verification bounds for signed compact tokens."""

    algorithms: tuple[str, ...] = ("RS256",)
    audience: str | None = None
    issuer: str | None = None
    clock_skew_seconds: int = 0
    ignore_expiration: bool = False


class StrategyConfig(Struct, frozen=True, rename="camel"):
    """Immutable configuration resolved once when a strategy is built.

    Field names are exposed in camelCase (``identityProviderUrl``,
    ``protocolBinding``) when converted from a mapping with
    :meth:`from_mapping`.
    """

    protocol: Protocol = Protocol.WSFED
    token_format: TokenFormat = TokenFormat.XML_ASSERTION
    protocol_binding: ProtocolBinding = ProtocolBinding.HTTP_REDIRECT
    realm: str | None = None
    home_realm: str | None = None
    identity_provider_url: str | None = None
    wreply: str | None = None
    cert: str | None = None
    thumbprints: tuple[str, ...] = ()
    check_expiration: bool = True
    check_audience: bool = True
    clock_skew_seconds: int = 0
    issuer: str | None = None
    name_id_format: str | None = None
    jwt: CompactTokenOptions = CompactTokenOptions()

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "StrategyConfig":
        """Build a configuration from camelCase options.

        A ``jwt`` entry without an explicit ``tokenFormat`` selects compact tokens.
        Bindings may be given as full URNs or as ``"redirect"``/``"post"``.
        """

        data = dict(options)
        if data.get("jwt") is not None and "tokenFormat" not in data:
            data["tokenFormat"] = TokenFormat.COMPACT.value
        binding = data.get("protocolBinding")
        if isinstance(binding, str):
            data["protocolBinding"] = _BINDING_ALIASES.get(binding.lower(), binding)
        try:
            return msgspec.convert(data, type=cls)
        except msgspec.ValidationError as exc:
            raise ConfigurationError(f"invalid strategy configuration: {exc}") from exc

    @property
    def sp_issuer(self) -> str | None:
        """Entity ID presented to the identity provider in SAML requests."""

        return self.issuer or self.realm


class AuthenticateOptions(Struct, frozen=True, rename="camel"):
    """Per-call options accepted by :meth:`WsFedSaml2Strategy.authenticate`.

    ``protocol`` stays a plain string so that unknown values surface as a
    :class:`~wsfed_saml2.exceptions.ConfigurationError` rather than a decode error.
    """

    protocol: str | None = None
    wctx: str | None = None
    whr: str | None = None
    wreply: str | None = None
    wfresh: int | None = None
    relay_state: str | None = None
    force_authn: bool = False
    extra_params: tuple[tuple[str, str], ...] = ()


class AuthorizationParams(Struct, frozen=True):
    """Parameters forwarded to the identity provider when initiating a sign-in.

    ``wctx``/``relay_state`` carry opaque caller context back on the response,
    ``whr`` and ``wreply`` override the configured home realm and reply URL,
    ``wfresh`` bounds the age of the identity provider session in minutes,
    ``force_authn`` asks a SAML identity provider to re-authenticate and
    ``extra_params`` are appended to the request URL verbatim.
    """

    wctx: str | None = None
    whr: str | None = None
    wreply: str | None = None
    wfresh: int | None = None
    relay_state: str | None = None
    force_authn: bool = False
    extra_params: tuple[tuple[str, str], ...] = ()


def coerce_options(options: AuthenticateOptions | Mapping[str, Any] | None) -> AuthenticateOptions:
    if options is None:
        return AuthenticateOptions()
    if isinstance(options, AuthenticateOptions):
        return options
    try:
        return msgspec.convert(dict(options), type=AuthenticateOptions)
    except msgspec.ValidationError as exc:
        raise ConfigurationError(f"invalid authenticate options: {exc}") from exc


def build_authorization_params(options: AuthenticateOptions | Mapping[str, Any] | None) -> AuthorizationParams:
    """Return the identity provider parameters carried by ``options``."""

    resolved = coerce_options(options)
    return AuthorizationParams(
        wctx=resolved.wctx,
        whr=resolved.whr,
        wreply=resolved.wreply,
        wfresh=resolved.wfresh,
        relay_state=resolved.relay_state,
        force_authn=resolved.force_authn,
        extra_params=tuple(resolved.extra_params),
    )
