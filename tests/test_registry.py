"""Tests for concord/providers/registry.py."""

import pytest

from concord.providers.base import UnknownProvider
from concord.providers.registry import (
    PROVIDERS,
    ROUTER,
    ROUTER_ID,
    available_providers,
    direct_model_id,
    display_name,
    get_provider,
    has_credential,
    router_model_id,
)


def test_catalog_has_six_providers():
    assert set(PROVIDERS) == {"openai", "anthropic", "google", "xai", "mistral", "deepseek"}


def test_every_provider_has_a_known_family():
    assert {p.family for p in PROVIDERS.values()} <= {"openai", "anthropic", "google"}


def test_get_provider_returns_router():
    assert get_provider(ROUTER_ID) is ROUTER
    assert ROUTER.base_url == "https://openrouter.ai/api/v1"


def test_get_provider_unknown_raises():
    with pytest.raises(UnknownProvider, match="nope"):
        get_provider("nope")


def test_available_providers_direct_keys_only():
    assert available_providers({"openai": "sk-1", "google": "AIza", "xai": "  "}) == ["openai", "google"]


def test_available_providers_router_unlocks_catalog():
    assert available_providers({"openrouter": "sk-or-1"}) == list(PROVIDERS)


def test_available_providers_empty():
    assert available_providers({}) == []


def test_has_credential_router_only_when_enabled():
    creds = {"openrouter": "sk-or-1"}
    assert has_credential(creds, "anthropic", use_router=True)
    assert not has_credential(creds, "anthropic", use_router=False)


def test_has_credential_direct():
    assert has_credential({"anthropic": "sk-ant"}, "anthropic")
    assert has_credential({"anthropic": "sk-ant"}, "anthropic", use_router=True)


def test_has_credential_unknown_provider():
    with pytest.raises(UnknownProvider):
        has_credential({}, "nope")


@pytest.mark.parametrize(
    "provider, model, expected",
    [
        ("google", None, "google/gemini-2.5-pro-preview-06-05"),
        ("anthropic", None, "anthropic/claude-sonnet-4-20250514"),
        ("mistral", "codestral-latest", "mistralai/codestral-latest"),
        ("deepseek", "deepseek/deepseek-r1", "deepseek/deepseek-r1"),
    ],
)
def test_router_model_id(provider, model, expected):
    assert router_model_id(provider, model) == expected


def test_direct_model_id_default_and_override():
    assert direct_model_id("openai") == "gpt-4o"
    assert direct_model_id("openai", "o3") == "o3"


def test_display_name():
    assert display_name("anthropic") == "Claude"
    assert display_name("xai") == "Grok"
    assert display_name("something-else") == "something-else"
