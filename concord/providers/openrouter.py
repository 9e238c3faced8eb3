"""OpenRouter unified router: OpenAI-compatible plus identifying headers."""

from concord.providers.openai_compat import OpenAICompatibleFamily


class RouterFamily(OpenAICompatibleFamily):
    """Reaches every catalog provider through one key; model ids are ``vendor/model``."""

    name = "openrouter"

    def __init__(self, referer: str = "https://github.com/concord-llm/concord", title: str = "Concord") -> None:
        self._referer = referer
        self._title = title

    def auth_headers(self, api_key: str) -> dict[str, str]:
        headers = super().auth_headers(api_key)
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers
