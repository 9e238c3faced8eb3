"""Shared pytest fixtures."""

import json
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import pytest

from config.config_loader import DefaultsConfig, InvocationConfig
from concord.deliberation import DeliberationSession
from concord.models import Deliberation, ModelSelection, Phase, Response, Round, Status, Synthesis
from concord.storage import MemoryStore

HOSTS = {
    "api.openai.com": "openai",
    "api.anthropic.com": "anthropic",
    "generativelanguage.googleapis.com": "google",
    "api.x.ai": "xai",
    "api.mistral.ai": "mistral",
    "api.deepseek.com": "deepseek",
    "openrouter.ai": "openrouter",
}


def openai_reply(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def anthropic_reply(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def reply_for(provider: str, text: str) -> httpx.Response:
    """A successful response in the wire shape of ``provider``'s family."""
    if provider == "anthropic":
        return httpx.Response(200, json=anthropic_reply(text))
    if provider == "google":
        return httpx.Response(200, json=gemini_reply(text))
    return httpx.Response(200, json=openai_reply(text))


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


def request_prompt(request: httpx.Request) -> str:
    body = request_json(request)
    if "contents" in body:
        return body["contents"][0]["parts"][0]["text"]
    return body["messages"][0]["content"]


class FakeProviders:
    """MockTransport handler scripting each provider's replies in order.

    ``script[provider]`` is a list of str (success text) or httpx.Response /
    Exception instances. Every request is recorded per provider.
    """

    def __init__(self, script: dict[str, list]) -> None:
        self.script = {k: list(v) for k, v in script.items()}
        self.requests: dict[str, list[httpx.Request]] = defaultdict(list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        provider = HOSTS[request.url.host]
        self.requests[provider].append(request)
        replies = self.script.get(provider) or ["OK"]
        item = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return reply_for(provider, item)

    def calls(self, provider: str) -> int:
        return len(self.requests[provider])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def fast_invocation() -> InvocationConfig:
    return InvocationConfig(retry_delay_sec=0.0, timeout_sec=5.0)


@pytest.fixture
def credentials() -> dict[str, str]:
    return {
        "openai": "sk-openai-test",
        "anthropic": "sk-ant-test",
        "google": "AIza-test",
    }


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_session(memory_store: MemoryStore, credentials: dict[str, str], fast_invocation: InvocationConfig
                 ) -> Callable[..., DeliberationSession]:
    """Build a session on the shared MemoryStore with two models enabled by default."""

    def _make(
        models: list[str] | None = None,
        query: str = "Q",
        client: httpx.AsyncClient | None = None,
        start: bool = True,
        **settings_kwargs,
    ) -> DeliberationSession:
        settings = DefaultsConfig(transition_pause_sec=0.0, **settings_kwargs)
        session = DeliberationSession(memory_store, settings=settings, invocation=fast_invocation, client=client)
        session.set_credentials(credentials)
        if session.state.phase is Phase.SETUP:
            session.set_enabled_models(models or ["openai", "anthropic"])
            session.set_query(query)
            if start:
                assert session.start()
        return session

    return _make


@pytest.fixture
def completed_deliberation() -> Deliberation:
    return Deliberation(
        id="abc123",
        query="Should we use YAML or JSON for config?",
        enabled_models=["openai", "anthropic"],
        synthesis_model=ModelSelection("anthropic"),
        current_round=2,
        rounds=[
            Round(1, {
                "openai": Response("Use YAML.\nSTATUS: CONTINUE", Status.CONTINUE),
                "anthropic": Response("Use JSON.\nSTATUS: SATISFIED", Status.SATISFIED),
            }),
            Round(2, {
                "openai": Response("YAML for humans.\nSTATUS: SATISFIED", Status.SATISFIED),
                "anthropic": Response("Agreed, YAML.\nSTATUS: SATISFIED", Status.SATISFIED),
            }),
        ],
        phase=Phase.COMPLETE,
        synthesis=Synthesis(prompt="synthesize", response="## Consensus\nUse YAML for config."),
        created_at=datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        completed_at=datetime(2025, 1, 2, 3, 9, 5, tzinfo=timezone.utc),
    )
