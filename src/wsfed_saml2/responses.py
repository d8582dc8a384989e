"""Response primitives for hosts that speak plain request/response."""

from __future__ import annotations

from typing import Any, Iterable

import msgspec

from .exceptions import HTTPError
from .http import Status
from .outcomes import Error, Fail, FormPost, Outcome, Redirect, Success

DEFAULT_SECURITY_HEADERS: tuple[tuple[str, str], ...] = (
    ("content-security-policy", "default-src 'self'"),
    ("x-content-type-options", "nosniff"),
    ("referrer-policy", "no-referrer"),
    ("x-frame-options", "DENY"),
    ("cache-control", "no-store"),
)

# The auto-submitting form runs one inline handler and posts to another origin.
_FORM_POST_POLICY = "default-src 'none'; script-src 'unsafe-inline'; form-action *"

Headers = tuple[tuple[str, str], ...]


class Response(msgspec.Struct, frozen=True):
    """Immutable response payload."""

    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response with ``headers`` appended."""

        return Response(status=self.status, headers=self.headers + tuple(headers), body=self.body)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


def apply_default_security_headers(
    response: Response,
    *,
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Append default security headers to ``response`` when missing."""

    baseline = tuple(headers or DEFAULT_SECURITY_HEADERS)
    existing = {name.lower() for name, _ in response.headers}
    additions = tuple((name, value) for name, value in baseline if name.lower() not in existing)
    if not additions:
        return response
    return response.with_headers(additions)


def RedirectResponse(url: str, *, status: int = int(Status.FOUND)) -> Response:
    response = Response(status=status, headers=(("location", url),))
    return apply_default_security_headers(response)


def HTMLResponse(
    html: str,
    *,
    status: int = int(Status.OK),
    content_type: str = "text/html",
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create an HTML response; ``charset`` is added to bare ``text/html``."""

    if "charset" not in content_type:
        content_type = f"{content_type}; charset=utf-8"
    combined = (("content-type", content_type),) + tuple(headers or ())
    response = Response(status=status, headers=combined, body=html.encode("utf-8"))
    return apply_default_security_headers(response)


def exception_to_response(exc: HTTPError) -> Response:
    response = Response(
        status=exc.status,
        headers=(("content-type", "application/json"),),
        body=exc.to_response_body(),
    )
    return apply_default_security_headers(response)


def outcome_to_response(outcome: Outcome) -> Response:
    """Render a non-success outcome as an HTTP response.

    ``Fail`` without an explicit status maps to 401. ``Error`` always maps to a
    generic 500 so that validator internals never reach the client.
    """

    if isinstance(outcome, Redirect):
        return RedirectResponse(outcome.url)
    if isinstance(outcome, FormPost):
        return HTMLResponse(
            outcome.html,
            content_type=outcome.content_type,
            headers=(("content-security-policy", _FORM_POST_POLICY),),
        )
    if isinstance(outcome, Fail):
        status = outcome.status or int(Status.UNAUTHORIZED)
        return exception_to_response(HTTPError(status, _fail_detail(outcome.info)))
    if isinstance(outcome, Error):
        return exception_to_response(HTTPError(Status.INTERNAL_SERVER_ERROR, "authentication_error"))
    if isinstance(outcome, Success):
        raise ValueError("a successful outcome is handled by the application, not rendered")
    raise TypeError(f"Unsupported authentication outcome: {outcome!r}")


def _fail_detail(info: Any) -> Any:
    if info is None:
        return "authentication_failed"
    if isinstance(info, (str, int, float, bool, list, dict)):
        return info
    return str(info)


__all__ = [
    "DEFAULT_SECURITY_HEADERS",
    "HTMLResponse",
    "RedirectResponse",
    "Response",
    "apply_default_security_headers",
    "exception_to_response",
    "outcome_to_response",
]
