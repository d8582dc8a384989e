"""Middleware adapters that run the strategy in front of an endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Mapping, Protocol

from .config import AuthenticateOptions
from .exceptions import HTTPError
from .outcomes import Success
from .requests import Request
from .responses import Response, exception_to_response, outcome_to_response

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .strategy import WsFedSaml2Strategy

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


class Middleware(Protocol):
    async def __call__(self, request: Request, handler: Handler) -> Response:  # pragma: no cover - protocol
        ...


MiddlewareCallable = Callable[[Request, Handler], Awaitable[Response]]


def apply_middleware(middlewares: Iterable[MiddlewareCallable], endpoint: Handler) -> Handler:
    """Compose middleware into a single handler, outermost first."""

    chain = tuple(middlewares)
    if not chain:
        return endpoint
    return _NextHandler(chain, 0, endpoint)


class _NextHandler:
    __slots__ = ("_endpoint", "_index", "_middlewares")

    def __init__(self, middlewares: tuple[MiddlewareCallable, ...], index: int, endpoint: Handler) -> None:
        self._middlewares = middlewares
        self._index = index
        self._endpoint = endpoint

    async def __call__(self, request: Request) -> Response:
        if self._index >= len(self._middlewares):
            return await self._endpoint(request)
        middleware = self._middlewares[self._index]
        return await middleware(request, _NextHandler(self._middlewares, self._index + 1, self._endpoint))


def federated_authentication(
    strategy: "WsFedSaml2Strategy",
    *,
    options: AuthenticateOptions | Mapping[str, Any] | None = None,
) -> MiddlewareCallable:
    """Build middleware that authenticates every request with ``strategy``.

    On success the verified user is attached as ``request.principal`` and the
    wrapped handler runs. Every other outcome is rendered as the response.
    """

    async def middleware(request: Request, handler: Handler) -> Response:
        try:
            outcome = await strategy.authenticate(request, options)
        except HTTPError as exc:
            return exception_to_response(exc)
        if isinstance(outcome, Success):
            return await handler(request.with_principal(outcome.user))
        logger.debug("Short-circuiting %s %s with %s", request.method, request.path, type(outcome).__name__)
        return outcome_to_response(outcome)

    return middleware


__all__ = [
    "Handler",
    "Middleware",
    "MiddlewareCallable",
    "apply_middleware",
    "federated_authentication",
]
