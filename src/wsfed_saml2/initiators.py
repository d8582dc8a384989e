"""Build identity provider sign-in requests."""

from __future__ import annotations

import base64
import datetime as dt
import html
import logging
import secrets
import zlib
from collections.abc import Callable, Iterable
from urllib.parse import urlencode

import lxml.etree as LET

from .config import AuthorizationParams, ProtocolBinding, StrategyConfig
from .exceptions import ConfigurationError
from .saml import SAML2_ASSERTION_NS, SAML2_PROTOCOL_NS

__all__ = ["SamlpInitiator", "WsFederationInitiator"]

logger = logging.getLogger(__name__)

_FORM_TEMPLATE = """<!DOCTYPE html>
<html>
  <head><title>Working...</title></head>
  <body onload="document.forms[0].submit()">
    <form method="post" action="{action}">
{fields}
      <noscript><p>Script is disabled. Click Submit to continue.</p><input type="submit" value="Submit"/></noscript>
    </form>
  </body>
</html>
"""


def _append_query(url: str, pairs: Iterable[tuple[str, str]]) -> str:
    query = urlencode(list(pairs))
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


def _default_request_id() -> str:
    return f"_{secrets.token_hex(20)}"


def _saml_instant(moment: dt.datetime) -> str:
    return moment.astimezone(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class WsFederationInitiator:
    """Build ``wsignin1.0`` request security token URLs."""

    def __init__(
        self,
        *,
        realm: str | None,
        identity_provider_url: str | None,
        home_realm: str | None = None,
        wreply: str | None = None,
    ) -> None:
        self.realm = realm
        self.identity_provider_url = identity_provider_url
        self.home_realm = home_realm
        self.wreply = wreply

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "WsFederationInitiator":
        return cls(
            realm=config.realm,
            identity_provider_url=config.identity_provider_url,
            home_realm=config.home_realm,
            wreply=config.wreply,
        )

    def ensure_configured(self) -> None:
        if not self.identity_provider_url or not self.realm:
            raise ConfigurationError("identityProviderUrl and realm are required to initiate a WS-Federation sign-in")

    def get_request_security_token_url(self, params: AuthorizationParams) -> str:
        self.ensure_configured()
        pairs: list[tuple[str, str]] = [("wa", "wsignin1.0"), ("wtrealm", self.realm)]
        wreply = params.wreply or self.wreply
        if wreply:
            pairs.append(("wreply", wreply))
        if params.wctx:
            pairs.append(("wctx", params.wctx))
        whr = params.whr or self.home_realm
        if whr:
            pairs.append(("whr", whr))
        if params.wfresh is not None:
            pairs.append(("wfresh", str(params.wfresh)))
        pairs.extend(params.extra_params)
        return _append_query(self.identity_provider_url, pairs)


class SamlpInitiator:
    """Build SAML 2.0 ``AuthnRequest`` messages for the redirect and POST bindings.

    The response is always requested over HTTP-POST, which is the only response
    binding the strategy consumes.
    """

    def __init__(
        self,
        *,
        identity_provider_url: str | None,
        issuer: str | None,
        assertion_consumer_service_url: str | None = None,
        name_id_format: str | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.identity_provider_url = identity_provider_url
        self.issuer = issuer
        self.assertion_consumer_service_url = assertion_consumer_service_url
        self.name_id_format = name_id_format
        self._id_factory = id_factory or _default_request_id
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "SamlpInitiator":
        return cls(
            identity_provider_url=config.identity_provider_url,
            issuer=config.sp_issuer,
            assertion_consumer_service_url=config.wreply,
            name_id_format=config.name_id_format,
        )

    def ensure_configured(self) -> None:
        if not self.identity_provider_url or not self.issuer:
            raise ConfigurationError("identityProviderUrl and an issuer (or realm) are required for SAML requests")

    def build_authn_request(self, params: AuthorizationParams) -> bytes:
        self.ensure_configured()
        request = LET.Element(
            f"{{{SAML2_PROTOCOL_NS}}}AuthnRequest",
            nsmap={"samlp": SAML2_PROTOCOL_NS, "saml": SAML2_ASSERTION_NS},
        )
        request.set("ID", self._id_factory())
        request.set("Version", "2.0")
        request.set("IssueInstant", _saml_instant(self._clock()))
        request.set("Destination", self.identity_provider_url)
        request.set("ProtocolBinding", ProtocolBinding.HTTP_POST.value)
        consumer_url = params.wreply or self.assertion_consumer_service_url
        if consumer_url:
            request.set("AssertionConsumerServiceURL", consumer_url)
        if params.force_authn:
            request.set("ForceAuthn", "true")
        issuer = LET.SubElement(request, f"{{{SAML2_ASSERTION_NS}}}Issuer")
        issuer.text = self.issuer
        if self.name_id_format:
            policy = LET.SubElement(request, f"{{{SAML2_PROTOCOL_NS}}}NameIDPolicy")
            policy.set("Format", self.name_id_format)
            policy.set("AllowCreate", "true")
        return LET.tostring(request)

    async def get_request_url(self, params: AuthorizationParams) -> str:
        message = self.build_authn_request(params)
        compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
        deflated = compressor.compress(message) + compressor.flush()
        pairs = [("SAMLRequest", base64.b64encode(deflated).decode())]
        relay_state = params.relay_state or params.wctx
        if relay_state:
            pairs.append(("RelayState", relay_state))
        pairs.extend(params.extra_params)
        assert self.identity_provider_url is not None
        return _append_query(self.identity_provider_url, pairs)

    async def get_request_form(self, params: AuthorizationParams) -> str:
        message = self.build_authn_request(params)
        fields = [("SAMLRequest", base64.b64encode(message).decode())]
        relay_state = params.relay_state or params.wctx
        if relay_state:
            fields.append(("RelayState", relay_state))
        rendered = "\n".join(
            f'      <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}"/>'
            for name, value in fields
        )
        assert self.identity_provider_url is not None
        return _FORM_TEMPLATE.format(action=html.escape(self.identity_provider_url), fields=rendered)
