"""Static catalog of supported LLM providers and credential lookups."""

from dataclasses import dataclass
from collections.abc import Mapping

from concord.providers.base import UnknownProvider

ROUTER_ID = "openrouter"
MAX_PARTICIPANTS = 5


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str                 # display name, e.g. "Anthropic"
    short_name: str           # persona name used in prompts, e.g. "Claude"
    color: str
    base_url: str
    default_model: str
    key_prefix: str
    family: str               # wire family: "openai", "anthropic", "google"
    router_namespace: str = ""
    router_default_model: str = ""
    description: str = ""


PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        short_name="GPT",
        color="#10a37f",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
        key_prefix="sk-",
        family="openai",
        router_namespace="openai",
        router_default_model="openai/gpt-4o",
        description="GPT-4o, GPT-4.1, o1, o3, etc.",
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        name="Anthropic",
        short_name="Claude",
        color="#d4a27f",
        base_url="https://api.anthropic.com/v1",
        default_model="claude-sonnet-4-20250514",
        key_prefix="sk-ant-",
        family="anthropic",
        router_namespace="anthropic",
        router_default_model="anthropic/claude-sonnet-4-20250514",
        description="Claude 4, Claude 3.5, etc.",
    ),
    "google": ProviderInfo(
        id="google",
        name="Google",
        short_name="Gemini",
        color="#4285f4",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        default_model="gemini-2.5-pro",
        key_prefix="AIza",
        family="google",
        router_namespace="google",
        router_default_model="google/gemini-2.5-pro-preview-06-05",
        description="Gemini 2.5, Gemini 2.0, etc.",
    ),
    "xai": ProviderInfo(
        id="xai",
        name="xAI",
        short_name="Grok",
        color="#1da1f2",
        base_url="https://api.x.ai/v1",
        default_model="grok-2",
        key_prefix="xai-",
        family="openai",
        router_namespace="x-ai",
        router_default_model="x-ai/grok-2",
        description="Grok 2, Grok 3, etc.",
    ),
    "mistral": ProviderInfo(
        id="mistral",
        name="Mistral",
        short_name="Mistral",
        color="#ff7000",
        base_url="https://api.mistral.ai/v1",
        default_model="mistral-large-latest",
        key_prefix="",
        family="openai",
        router_namespace="mistralai",
        router_default_model="mistralai/mistral-large",
        description="Mistral Large, Codestral, etc.",
    ),
    "deepseek": ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        short_name="DeepSeek",
        color="#0066ff",
        base_url="https://api.deepseek.com/v1",
        default_model="deepseek-chat",
        key_prefix="sk-",
        family="openai",
        router_namespace="deepseek",
        router_default_model="deepseek/deepseek-chat",
        description="DeepSeek V3, DeepSeek R1, etc.",
    ),
}

ROUTER = ProviderInfo(
    id=ROUTER_ID,
    name="OpenRouter",
    short_name="OpenRouter",
    color="#6467f2",
    base_url="https://openrouter.ai/api/v1",
    default_model="openai/gpt-4o",
    key_prefix="sk-or-",
    family="openai",
    description="Unified access to 400+ models",
)


def get_provider(provider_id: str) -> ProviderInfo:
    """Return catalog metadata for a provider (or the router). Raises UnknownProvider."""
    if provider_id == ROUTER_ID:
        return ROUTER
    try:
        return PROVIDERS[provider_id]
    except KeyError:
        raise UnknownProvider(provider_id) from None


def _has_key(credentials: Mapping[str, str], provider_id: str) -> bool:
    return bool((credentials.get(provider_id) or "").strip())


def has_credential(credentials: Mapping[str, str], provider_id: str, use_router: bool = False) -> bool:
    """True when a call to provider_id could be authenticated."""
    get_provider(provider_id)
    if use_router and _has_key(credentials, ROUTER_ID):
        return True
    return _has_key(credentials, provider_id)


def available_providers(credentials: Mapping[str, str]) -> list[str]:
    """Providers usable with the given keys. A router key unlocks the whole catalog."""
    if _has_key(credentials, ROUTER_ID):
        return list(PROVIDERS)
    return [p for p in PROVIDERS if _has_key(credentials, p)]


def router_model_id(provider_id: str, model: str | None = None) -> str:
    """Map a provider + optional override to the router's ``vendor/model`` naming."""
    info = get_provider(provider_id)
    if model:
        if "/" in model:
            return model
        return f"{info.router_namespace or provider_id}/{model}"
    return info.router_default_model or f"{info.router_namespace or provider_id}/{info.default_model}"


def direct_model_id(provider_id: str, model: str | None = None) -> str:
    """Model id for a direct call: the override when given, else the provider default."""
    info = get_provider(provider_id)
    return model or info.default_model


def display_name(provider_id: str) -> str:
    """Short persona name used in prompts and transcripts, falling back to the id."""
    info = PROVIDERS.get(provider_id)
    return info.short_name if info else provider_id
