"""Google Gemini generateContent wire family."""

from typing import Any

from concord.providers.base import WireFamily


class GenerateContentFamily(WireFamily):
    """Google Gemini via generateContent; the key travels as a query parameter."""

    name = "google"

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url.rstrip('/')}/models/{model}:generateContent"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def auth_params(self, api_key: str) -> dict[str, str]:
        return {"key": api_key}

    def build_request(self, model: str, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens},
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return ""
        return parts[0].get("text") or ""
