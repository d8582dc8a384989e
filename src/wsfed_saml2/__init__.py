"""WS-Federation and SAML 2.0 sign-in for asynchronous Python services."""

from .config import (
    AuthenticateOptions,
    AuthorizationParams,
    CompactTokenOptions,
    Protocol,
    ProtocolBinding,
    StrategyConfig,
    TokenFormat,
)
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    HTTPError,
    MalformedCredentialError,
    WsFedSaml2Error,
)
from .middleware import apply_middleware, federated_authentication
from .outcomes import Error, Fail, FormPost, Outcome, OutcomeReporter, Redirect, Success, report
from .requests import Request
from .responses import HTMLResponse, RedirectResponse, Response, outcome_to_response
from .strategy import WsFedSaml2Strategy
from .verification import callback_verifier

__all__ = [
    "AuthenticateOptions",
    "AuthenticationError",
    "AuthorizationParams",
    "CompactTokenOptions",
    "ConfigurationError",
    "Error",
    "Fail",
    "FormPost",
    "HTMLResponse",
    "HTTPError",
    "MalformedCredentialError",
    "Outcome",
    "OutcomeReporter",
    "Protocol",
    "ProtocolBinding",
    "Redirect",
    "RedirectResponse",
    "Request",
    "Response",
    "StrategyConfig",
    "Success",
    "TokenFormat",
    "WsFedSaml2Error",
    "WsFedSaml2Strategy",
    "apply_middleware",
    "callback_verifier",
    "federated_authentication",
    "outcome_to_response",
    "report",
]
