"""WS-Federation / SAML2 authentication strategy."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .config import (
    AuthenticateOptions,
    AuthorizationParams,
    Protocol,
    ProtocolBinding,
    StrategyConfig,
    TokenFormat,
    build_authorization_params,
    coerce_options,
)
from .exceptions import ConfigurationError, MalformedCredentialError
from .extraction import (
    bearer_token,
    decode_bearer_assertion,
    decode_saml_response,
    extract_requested_security_token,
    parse_xml,
    posted_field,
)
from .http import Status
from .interfaces import (
    AssertionValidator,
    CompactTokenValidator,
    SamlpRequestInitiator,
    SamlResponseValidator,
    WsFedRequestInitiator,
)
from .outcomes import Error, Fail, FormPost, Outcome, Redirect
from .requests import Request
from .verification import Profile, VerifyFunction, run_verification

__all__ = ["WsFedSaml2Strategy"]

logger = logging.getLogger(__name__)

_Flow = Callable[[Request, AuthorizationParams], Awaitable[Outcome]]


class WsFedSaml2Strategy:
    """Authenticate requests over WS-Federation or SAMLp.

    The token format is fixed when the strategy is built: either XML assertions
    (validated by ``assertion_validator``) or compact tokens (validated by
    ``compact_token_validator``), never both. Collaborators that are not given
    are built from ``config`` with the default implementations.
    """

    name = "wsfed-saml2"

    def __init__(
        self,
        config: StrategyConfig | Mapping[str, Any] | None,
        verify: VerifyFunction | None,
        *,
        assertion_validator: AssertionValidator | None = None,
        saml_response_validator: SamlResponseValidator | None = None,
        compact_token_validator: CompactTokenValidator | None = None,
        wsfed_initiator: WsFedRequestInitiator | None = None,
        samlp_initiator: SamlpRequestInitiator | None = None,
    ) -> None:
        if verify is None:
            raise ConfigurationError("this strategy requires a verify function")
        if isinstance(config, StrategyConfig):
            self.config = config
        else:
            self.config = StrategyConfig.from_mapping(config or {})
        self._verify = verify
        self._assertions: AssertionValidator | None = None
        self._saml_responses: SamlResponseValidator | None = None
        self._compact: CompactTokenValidator | None = None
        self._samlp: SamlpRequestInitiator | None = None

        if self.config.token_format is TokenFormat.COMPACT:
            if self.config.protocol is Protocol.SAMLP:
                raise ConfigurationError("the samlp protocol requires the xml-assertion token format")
            if compact_token_validator is None:
                from .jwt import JwtValidator

                compact_token_validator = JwtValidator.from_config(self.config)
            self._compact = compact_token_validator
        else:
            from .initiators import SamlpInitiator
            from .saml import SamlResponseValidator as DefaultSamlResponseValidator
            from .saml import XmlAssertionValidator

            if assertion_validator is None:
                assertion_validator = XmlAssertionValidator.from_config(self.config)
            if saml_response_validator is None and isinstance(assertion_validator, XmlAssertionValidator):
                saml_response_validator = DefaultSamlResponseValidator(assertion_validator)
            self._assertions = assertion_validator
            self._saml_responses = saml_response_validator
            if samlp_initiator is None:
                samlp_initiator = SamlpInitiator.from_config(self.config)
                if self.config.protocol is Protocol.SAMLP:
                    samlp_initiator.ensure_configured()
            self._samlp = samlp_initiator
            if self.config.protocol is Protocol.SAMLP and self._saml_responses is None:
                raise ConfigurationError("the samlp protocol requires a SAML response validator")
        if wsfed_initiator is None:
            from .initiators import WsFederationInitiator

            wsfed_initiator = WsFederationInitiator.from_config(self.config)
            if self.config.protocol is Protocol.WSFED:
                wsfed_initiator.ensure_configured()
        self._wsfed = wsfed_initiator
        self._flows: dict[Protocol, _Flow] = {
            Protocol.WSFED: self._execute_wsfed,
            Protocol.SAMLP: self._execute_samlp,
        }

    def authorization_params(self, options: AuthenticateOptions) -> AuthorizationParams:
        """Parameters sent to the identity provider when a sign-in is initiated."""

        return build_authorization_params(options)

    async def authenticate(
        self,
        request: Request,
        options: AuthenticateOptions | Mapping[str, Any] | None = None,
    ) -> Outcome:
        """Authenticate ``request`` and return exactly one outcome.

        Raises :class:`~wsfed_saml2.exceptions.ConfigurationError` when the
        effective protocol is unknown or unusable with this strategy.
        """

        resolved = coerce_options(options)
        protocol = self._resolve_protocol(resolved.protocol)
        params = self.authorization_params(resolved)
        outcome = await self._flows[protocol](request, params)
        logger.debug("%s authentication finished with %s", protocol.value, type(outcome).__name__)
        return outcome

    def _resolve_protocol(self, override: str | None) -> Protocol:
        if not override:
            return self.config.protocol
        try:
            protocol = Protocol(override)
        except ValueError as exc:
            raise ConfigurationError(f"not supported protocol: {override}") from exc
        if protocol is Protocol.SAMLP and self._saml_responses is None:
            raise ConfigurationError("the samlp protocol is not available with this strategy configuration")
        return protocol

    async def _execute_wsfed(self, request: Request, params: AuthorizationParams) -> Outcome:
        token = bearer_token(request)
        if token is not None:
            logger.debug("Authenticating WS-Federation bearer token")
            if self._compact is not None:
                return await self._authenticate_compact(token)
            try:
                document = decode_bearer_assertion(token)
            except MalformedCredentialError as exc:
                return self._reject_shape(str(exc))
            return await self._authenticate_assertion(document)

        wresult = posted_field(request, "wresult")
        if wresult is not None:
            logger.debug("Authenticating WS-Federation response")
            if self._compact is not None:
                return await self._authenticate_compact(wresult)
            if "<" not in wresult:
                return self._reject_shape("wresult should be a valid xml")
            assertion = extract_requested_security_token(wresult)
            if assertion is None:
                return self._reject_shape("missing RequestedSecurityToken element")
            return await self._authenticate_assertion(assertion)

        url = self._wsfed.get_request_security_token_url(params)
        logger.info("Initiating WS-Federation sign-in")
        return Redirect(url)

    async def _execute_samlp(self, request: Request, params: AuthorizationParams) -> Outcome:
        assert self._saml_responses is not None and self._samlp is not None
        saml_response = posted_field(request, "SAMLResponse")
        if saml_response is not None:
            logger.debug("Authenticating SAML response")
            try:
                xml_text = decode_saml_response(saml_response)
                if "<" not in xml_text:
                    return self._reject_shape("SAMLResponse should be a valid xml")
                document = parse_xml(xml_text)
            except MalformedCredentialError:
                return self._reject_shape("SAMLResponse should be a valid xml")
            return await self._validate_and_verify(self._saml_responses.validate_response, document)

        try:
            if self.config.protocol_binding is ProtocolBinding.HTTP_POST:
                form = await self._samlp.get_request_form(params)
                logger.info("Initiating SAML sign-in with the HTTP-POST binding")
                return FormPost(form)
            url = await self._samlp.get_request_url(params)
        except Exception as exc:
            logger.warning("Could not generate a SAML request: %s", exc)
            return Error(exc)
        logger.info("Initiating SAML sign-in with the HTTP-Redirect binding")
        return Redirect(url)

    async def _authenticate_assertion(self, assertion: Any) -> Outcome:
        assert self._assertions is not None
        return await self._validate_and_verify(self._assertions.validate, assertion)

    async def _authenticate_compact(self, token: str) -> Outcome:
        assert self._compact is not None
        return await self._validate_and_verify(self._compact.validate, token)

    async def _validate_and_verify(
        self,
        validate: Callable[[Any], Awaitable[Profile | None]],
        credential: Any,
    ) -> Outcome:
        try:
            profile = await validate(credential)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.info("Credential rejected: %s", exc)
            return Error(exc)
        if profile is None:
            return Fail("invalid token")
        return await run_verification(self._verify, profile)

    @staticmethod
    def _reject_shape(message: str) -> Fail:
        logger.warning("Rejecting malformed authentication request: %s", message)
        return Fail(message, int(Status.BAD_REQUEST))
