from __future__ import annotations

import asyncio
from typing import Any

import pytest

from wsfed_saml2.outcomes import Error, Fail, Success
from wsfed_saml2.verification import callback_verifier, resolve_verification, run_verification


@pytest.mark.parametrize(
    ("result", "expected"),
    [
        ((None, {"id": "u1"}, {}), Success({"id": "u1"}, {})),
        ((None, None, "unknown user"), Fail("unknown user")),
        ((None, False, None), Fail(None)),
        (("boom", {"id": "u1"}, None), Error("boom")),
    ],
)
def test_resolve_verification(result: tuple[Any, Any, Any], expected: object) -> None:
    assert resolve_verification(*result) == expected


@pytest.mark.asyncio
async def test_run_verification_accepts_sync_and_async_functions() -> None:
    def sync_verify(profile: dict[str, Any]) -> tuple[Any, Any, Any]:
        return None, profile["subject"], None

    async def async_verify(profile: dict[str, Any]) -> tuple[Any, Any, Any]:
        await asyncio.sleep(0)
        return None, profile["subject"], {"source": "async"}

    profile = {"subject": "alice"}
    assert await run_verification(sync_verify, profile) == Success("alice")
    assert await run_verification(async_verify, profile) == Success("alice", {"source": "async"})


@pytest.mark.asyncio
async def test_run_verification_reports_raised_exceptions_as_errors() -> None:
    problem = PermissionError("denied")

    async def verify(profile: dict[str, Any]) -> tuple[Any, Any, Any]:
        raise problem

    assert await run_verification(verify, {}) == Error(problem)


@pytest.mark.asyncio
async def test_run_verification_rejects_malformed_results() -> None:
    outcome = await run_verification(lambda profile: "alice", {})
    assert isinstance(outcome, Error)
    assert isinstance(outcome.error, TypeError)


@pytest.mark.asyncio
async def test_callback_verifier_resolves_synchronous_done() -> None:
    def verify(profile: dict[str, Any], done: Any) -> None:
        done(None, {"id": profile["subject"]}, {})

    outcome = await run_verification(callback_verifier(verify), {"subject": "u1"})
    assert outcome == Success({"id": "u1"}, {})


@pytest.mark.asyncio
async def test_callback_verifier_resolves_deferred_done() -> None:
    def verify(profile: dict[str, Any], done: Any) -> None:
        asyncio.get_running_loop().call_soon(done, None, None, "not provisioned")

    outcome = await run_verification(callback_verifier(verify), {})
    assert outcome == Fail("not provisioned")


@pytest.mark.asyncio
async def test_callback_verifier_rejects_second_call() -> None:
    second_call: list[BaseException] = []

    def verify(profile: dict[str, Any], done: Any) -> None:
        done(None, {"id": "u1"}, None)
        try:
            done("late", None, None)
        except RuntimeError as exc:
            second_call.append(exc)

    outcome = await run_verification(callback_verifier(verify), {})
    assert outcome == Success({"id": "u1"})
    assert len(second_call) == 1


@pytest.mark.asyncio
async def test_callback_verifier_times_out_when_done_is_never_called() -> None:
    outcome = await run_verification(callback_verifier(lambda profile, done: None, timeout=0.01), {})
    assert isinstance(outcome, Error)
    assert "never called" in str(outcome.error)
