"""Unit tests for concord/healthcheck.py: no real API calls."""

import httpx

from concord.healthcheck import run_health_checks
from concord.models import ModelSelection
from tests.conftest import FakeProviders, request_json


async def test_all_providers_pass(credentials):
    """All providers succeed -> all marked ok, no errors."""
    fake = FakeProviders({"anthropic": ["OK"], "google": ["OK"]})
    async with fake.client() as client:
        results = await run_health_checks(
            [ModelSelection("anthropic"), ModelSelection("google")], credentials, client=client,
        )

    assert results["anthropic"] == (True, "")
    assert results["google"] == (True, "")


async def test_one_provider_fails(credentials):
    """A provider that errors returns ok=False with the error message."""
    fake = FakeProviders({
        "anthropic": ["OK"],
        "openai": [httpx.Response(403, json={"error": {"message": "403 Forbidden"}})],
    })
    async with fake.client() as client:
        results = await run_health_checks(
            [ModelSelection("anthropic"), ModelSelection("openai")], credentials, client=client,
        )

    assert results["anthropic"] == (True, "")
    ok, err = results["openai"]
    assert ok is False
    assert "403" in err


async def test_missing_key_fails_without_request():
    fake = FakeProviders({})
    async with fake.client() as client:
        results = await run_health_checks([ModelSelection("deepseek")], {}, client=client)

    ok, err = results["deepseek"]
    assert ok is False
    assert "deepseek" in err
    assert fake.calls("deepseek") == 0


async def test_health_check_does_not_retry(credentials):
    """Server errors are reported at once rather than retried."""
    fake = FakeProviders({"openai": [httpx.Response(503)]})
    async with fake.client() as client:
        results = await run_health_checks([ModelSelection("openai")], credentials, client=client)

    assert results["openai"][0] is False
    assert fake.calls("openai") == 1


async def test_health_check_uses_small_token_budget(credentials):
    fake = FakeProviders({"openai": ["OK"]})
    async with fake.client() as client:
        await run_health_checks([ModelSelection("openai", "gpt-4.1-mini")], credentials, client=client)

    body = request_json(fake.requests["openai"][0])
    assert body["max_tokens"] == 16
    assert body["model"] == "gpt-4.1-mini"


async def test_empty_selection():
    """Empty selection returns empty results."""
    results = await run_health_checks([], {})
    assert results == {}
