"""Authentication outcomes.

Every call to :meth:`~wsfed_saml2.strategy.WsFedSaml2Strategy.authenticate`
returns exactly one of these values. ``Success``, ``Fail`` and ``Error`` close an
authentication attempt; ``Redirect`` and ``FormPost`` start a new exchange with
the identity provider.
"""

from __future__ import annotations

from typing import Any, Protocol, Union

from msgspec import Struct

__all__ = [
    "Error",
    "Fail",
    "FormPost",
    "Outcome",
    "OutcomeReporter",
    "Redirect",
    "Success",
    "report",
]


class Success(Struct, frozen=True):
    """The credential was valid and the verify function accepted the user."""

    user: Any
    info: Any = None


class Fail(Struct, frozen=True):
    """The request was rejected.

    ``status`` is only set for malformed requests (400); otherwise the host
    applies its own default.
    """

    info: Any = None
    status: int | None = None


class Error(Struct, frozen=True):
    """A validator or verify function reported an error."""

    error: Any


class Redirect(Struct, frozen=True):
    url: str


class FormPost(Struct, frozen=True):
    """Auto-submitting HTML form to be written back with ``content_type``."""

    html: str
    content_type: str = "text/html"


Outcome = Union[Success, Fail, Error, Redirect, FormPost]


class OutcomeReporter(Protocol):
    """Callback-style host contract."""

    def success(self, user: Any, info: Any = None) -> None: ...

    def fail(self, info: Any = None, status: int | None = None) -> None: ...

    def error(self, error: Any) -> None: ...

    def redirect(self, url: str) -> None: ...

    def send_html(self, html: str, *, content_type: str = "text/html") -> None: ...


def report(outcome: Outcome, reporter: OutcomeReporter) -> None:
    """Replay ``outcome`` onto ``reporter`` with exactly one callback invocation."""

    if isinstance(outcome, Success):
        reporter.success(outcome.user, outcome.info)
    elif isinstance(outcome, Fail):
        reporter.fail(outcome.info, outcome.status)
    elif isinstance(outcome, Error):
        reporter.error(outcome.error)
    elif isinstance(outcome, Redirect):
        reporter.redirect(outcome.url)
    elif isinstance(outcome, FormPost):
        reporter.send_html(outcome.html, content_type=outcome.content_type)
    else:
        raise TypeError(f"Unsupported authentication outcome: {outcome!r}")
