"""Error taxonomy and the abstract wire family shared by all providers."""

from abc import ABC, abstractmethod
from typing import Any


class ConcordError(Exception):
    """Base class for all Concord errors."""


class UnknownProvider(ConcordError):
    """Raised when a provider id is not in the catalog."""

    def __init__(self, provider_name: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"Unknown provider: {provider_name}")


class MissingCredential(ConcordError):
    """Raised before any network attempt when no usable key exists."""

    def __init__(self, provider_name: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"No API key configured for {provider_name}")


class ProviderError(ConcordError):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{provider_name}] {message}")


class TransportError(ProviderError):
    """Network-level failure that survived every retry."""


class WireFamily(ABC):
    """One provider API shape: how to address, authenticate, build and read a call."""

    name: str = ""

    @abstractmethod
    def endpoint(self, base_url: str, model: str) -> str:
        """Return the full URL for a single-turn generation call."""
        ...

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Return the headers that authenticate the call."""
        ...

    def auth_params(self, api_key: str) -> dict[str, str]:
        """Return query parameters that authenticate the call (none by default)."""
        return {}

    @abstractmethod
    def build_request(self, model: str, prompt: str, max_tokens: int) -> dict[str, Any]:
        """Build the JSON body for one user turn.

        Args:
            model: Model identifier as the provider expects it.
            prompt: The full prompt text to send.
            max_tokens: Cap on generated tokens.
        """
        ...

    @abstractmethod
    def extract_text(self, data: dict[str, Any]) -> str:
        """Pull the generated text out of a decoded response body.

        Returns an empty string when the payload carries no text.
        """
        ...

    def error_message(self, data: Any) -> str | None:
        """Return the provider-supplied error message, if the payload carries one."""
        if not isinstance(data, dict) or not data.get("error"):
            return None
        error = data["error"]
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
