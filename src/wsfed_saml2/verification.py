"""Verify-function plumbing shared by every authentication path."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable

from .outcomes import Error, Fail, Outcome, Success

__all__ = [
    "Done",
    "Profile",
    "Verification",
    "VerifyFunction",
    "callback_verifier",
    "resolve_verification",
    "run_verification",
]

logger = logging.getLogger(__name__)

Profile = Mapping[str, Any]
Verification = tuple[Any, Any, Any]
VerifyFunction = Callable[[Profile], Awaitable[Verification] | Verification]
Done = Callable[..., None]


def resolve_verification(err: Any, user: Any, info: Any = None) -> Outcome:
    """Translate a ``(err, user, info)`` verification result into an outcome."""

    if err:
        return Error(err)
    if not user:
        return Fail(info)
    return Success(user, info)


async def run_verification(verify: VerifyFunction, profile: Profile) -> Outcome:
    """Call ``verify`` with ``profile`` and normalize whatever it produces."""

    try:
        result = verify(profile)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        logger.debug("Verify function raised %s", type(exc).__name__)
        return Error(exc)
    if not isinstance(result, tuple) or len(result) != 3:
        return Error(TypeError(f"verify function must return (err, user, info), got {result!r}"))
    err, user, info = result
    return resolve_verification(err, user, info)


def callback_verifier(
    function: Callable[[Profile, Done], Any],
    *,
    timeout: float | None = 30.0,
) -> VerifyFunction:
    """Adapt a ``function(profile, done)`` verifier to the awaitable form.

    ``done(err, user, info)`` may be called at most once, either before
    ``function`` returns or later from the event loop. A verifier that never
    calls ``done`` within ``timeout`` seconds is reported as an error.
    """

    async def verify(profile: Profile) -> Verification:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Verification] = loop.create_future()

        def done(err: Any = None, user: Any = None, info: Any = None) -> None:
            if future.done():
                raise RuntimeError("verification callback called more than once")
            future.set_result((err, user, info))

        returned = function(profile, done)
        if inspect.isawaitable(returned):
            await returned
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise RuntimeError("verification callback was never called") from exc

    return verify
