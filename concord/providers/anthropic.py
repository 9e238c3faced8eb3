"""Anthropic Messages API wire family."""

from typing import Any

from concord.providers.base import WireFamily

ANTHROPIC_VERSION = "2023-06-01"


class MessagesFamily(WireFamily):
    """Anthropic Claude via the Messages API."""

    name = "anthropic"

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url.rstrip('/')}/messages"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def build_request(self, model: str, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        blocks = data.get("content") or []
        text_blocks = [b.get("text", "") for b in blocks if b.get("type", "text") == "text"]
        return "\n".join(t for t in text_blocks if t)
