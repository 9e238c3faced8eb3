"""LLM invocation: one call signature over every wire family, with retry and fan-out."""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from config.config_loader import InvocationConfig
from concord.models import CallResult, CallState, ModelSelection
from concord.providers.anthropic import MessagesFamily
from concord.providers.base import MissingCredential, ProviderError, TransportError, WireFamily
from concord.providers.gemini import GenerateContentFamily
from concord.providers.openai_compat import OpenAICompatibleFamily
from concord.providers.openrouter import RouterFamily
from concord.providers.registry import ROUTER, ROUTER_ID, direct_model_id, get_provider, router_model_id

logger = logging.getLogger(__name__)

FAMILIES: dict[str, WireFamily] = {
    "openai": OpenAICompatibleFamily(),
    "anthropic": MessagesFamily(),
    "google": GenerateContentFamily(),
}

ProgressCallback = Callable[..., None]
PromptSource = Callable[[ModelSelection], str] | str


@dataclass
class PreparedCall:
    provider: str
    family: WireFamily
    url: str
    headers: dict[str, str]
    params: dict[str, str]
    body: dict[str, Any]


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def prepare_call(
    config: ModelSelection,
    prompt: str,
    credentials: Mapping[str, str],
    use_router: bool,
    settings: InvocationConfig,
) -> PreparedCall:
    """Resolve credentials and family, and build the HTTP request for one call.

    Raises:
        UnknownProvider: If config.provider is not in the catalog.
        MissingCredential: If neither a router key (when routing) nor a
            direct key is available.
    """
    info = get_provider(config.provider)
    router_key = (credentials.get(ROUTER_ID) or "").strip()

    if use_router and router_key:
        family: WireFamily = RouterFamily(settings.router_referer, settings.router_title)
        model = router_model_id(config.provider, config.model)
        api_key = router_key
        base_url = ROUTER.base_url
    else:
        api_key = (credentials.get(config.provider) or "").strip()
        if not api_key:
            raise MissingCredential(config.provider)
        family = FAMILIES[info.family]
        model = direct_model_id(config.provider, config.model)
        base_url = info.base_url

    return PreparedCall(
        provider=config.provider,
        family=family,
        url=family.endpoint(base_url, model),
        headers=family.auth_headers(api_key),
        params=family.auth_params(api_key),
        body=family.build_request(model, prompt, settings.max_tokens),
    )


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


async def _send_with_retry(
    client: httpx.AsyncClient,
    call: PreparedCall,
    settings: InvocationConfig,
) -> str:
    """POST the call, retrying 429/5xx and transport failures a bounded number of times."""
    attempts = settings.max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            response = await client.post(
                call.url,
                headers=call.headers,
                params=call.params or None,
                json=call.body,
                timeout=settings.timeout_sec,
            )
        except httpx.TransportError as exc:
            if attempt < attempts:
                logger.warning(
                    "Provider %s transport failure (attempt %d/%d), retrying in %.1fs: %s",
                    call.provider, attempt, attempts, settings.retry_delay_sec, exc,
                )
                await asyncio.sleep(settings.retry_delay_sec)
                continue
            raise TransportError(call.provider, f"Network error after {attempts} attempts: {exc}") from exc

        data = _decode(response)

        if response.is_error:
            message = call.family.error_message(data) or f"HTTP {response.status_code}"
            if _is_retryable_status(response.status_code) and attempt < attempts:
                logger.warning(
                    "Provider %s returned HTTP %d (attempt %d/%d), retrying in %.1fs",
                    call.provider, response.status_code, attempt, attempts, settings.retry_delay_sec,
                )
                await asyncio.sleep(settings.retry_delay_sec)
                continue
            raise ProviderError(call.provider, message, status_code=response.status_code)

        if not isinstance(data, dict):
            raise ProviderError(call.provider, "Malformed response body", status_code=response.status_code)

        error = call.family.error_message(data)
        if error:
            raise ProviderError(call.provider, error, status_code=response.status_code)

        text = call.family.extract_text(data)
        if not text:
            raise ProviderError(call.provider, "Empty response content", status_code=response.status_code)
        return text

    raise AssertionError("unreachable")


async def invoke(
    config: ModelSelection,
    prompt: str,
    credentials: Mapping[str, str],
    use_router: bool = False,
    *,
    client: httpx.AsyncClient | None = None,
    settings: InvocationConfig | None = None,
) -> str:
    """Send one user turn to one model and return its text.

    Raises:
        UnknownProvider: Unknown provider id.
        MissingCredential: No usable key; raised before any network attempt.
        ProviderError: Non-retryable HTTP/payload error, or retryable status
            that persisted through every retry.
        TransportError: Network failure that persisted through every retry.
    """
    settings = settings or InvocationConfig()
    call = prepare_call(config, prompt, credentials, use_router, settings)

    start = time.monotonic()
    if client is None:
        async with httpx.AsyncClient(timeout=settings.timeout_sec) as own_client:
            text = await _send_with_retry(own_client, call, settings)
    else:
        text = await _send_with_retry(client, call, settings)

    logger.info("%s responded in %.2fs (%d chars)", call.provider, time.monotonic() - start, len(text))
    return text


async def _invoke_isolated(
    config: ModelSelection,
    prompt_fn: PromptSource,
    credentials: Mapping[str, str],
    use_router: bool,
    on_progress: ProgressCallback | None,
    client: httpx.AsyncClient,
    settings: InvocationConfig,
) -> CallResult:
    """Call a single provider. Never raises; failures become CallResult(success=False)."""
    provider = config.provider
    if on_progress:
        on_progress(provider, CallState.LOADING)
    try:
        prompt = prompt_fn(config) if callable(prompt_fn) else prompt_fn
        text = await invoke(config, prompt, credentials, use_router, client=client, settings=settings)
    except ProviderError as exc:
        logger.warning("Provider %s failed: %s", provider, exc)
        result = CallResult(success=False, error=exc.message)
    except MissingCredential as exc:
        logger.warning("Provider %s skipped: %s", provider, exc)
        result = CallResult(success=False, error=str(exc))
    except Exception as exc:
        logger.warning("Provider %s unexpected failure: %s", provider, exc)
        result = CallResult(success=False, error=f"Unexpected error: {exc}")
    else:
        result = CallResult(success=True, text=text)

    if on_progress:
        if result.success:
            on_progress(provider, CallState.COMPLETE)
        else:
            on_progress(provider, CallState.ERROR, result.error)
    return result


async def invoke_many(
    configs: Sequence[ModelSelection],
    prompt_fn: PromptSource,
    credentials: Mapping[str, str],
    use_router: bool = False,
    on_progress: ProgressCallback | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: InvocationConfig | None = None,
) -> dict[str, CallResult]:
    """Fan a prompt out to every config concurrently and join when all settle.

    Args:
        configs: One ModelSelection per provider.
        prompt_fn: Prompt text, or a callable building it from the ModelSelection.
        credentials: Provider id -> API key (``openrouter`` for the router).
        use_router: Route through the unified router when its key is present.
        on_progress: Called as ``(provider, CallState, message=None)`` when each
            call starts and when it settles.

    Returns:
        Provider id -> CallResult, one entry per config.

    Raises:
        UnknownProvider: If any config names a provider outside the catalog.
    """
    for config in configs:
        get_provider(config.provider)

    settings = settings or InvocationConfig()
    logger.info("Invoking %d models: %s", len(configs), ", ".join(c.provider for c in configs))

    async def _gather(active: httpx.AsyncClient) -> list[CallResult]:
        return await asyncio.gather(*(
            _invoke_isolated(c, prompt_fn, credentials, use_router, on_progress, active, settings)
            for c in configs
        ))

    if client is None:
        async with httpx.AsyncClient(timeout=settings.timeout_sec) as own_client:
            results = await _gather(own_client)
    else:
        results = await _gather(client)

    return {c.provider: r for c, r in zip(configs, results)}
