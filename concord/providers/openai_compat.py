"""OpenAI-compatible chat-completions wire family (OpenAI, xAI, Mistral, DeepSeek)."""

from typing import Any

from concord.providers.base import WireFamily


class OpenAICompatibleFamily(WireFamily):
    """Bearer auth, ``{model, messages, max_tokens}`` in, ``choices[0].message.content`` out."""

    name = "openai"

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url.rstrip('/')}/chat/completions"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_request(self, model: str, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""
