"""Provider health checks: ping each selected model before a deliberation."""

import logging
from collections.abc import Mapping, Sequence

import httpx

from config.config_loader import InvocationConfig
from concord.invoke import invoke_many
from concord.models import ModelSelection

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def run_health_checks(
    selections: Sequence[ModelSelection],
    credentials: Mapping[str, str],
    use_router: bool = False,
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, tuple[bool, str]]:
    """Ping all selected models in parallel, without retries.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    settings = InvocationConfig(max_tokens=16, max_retries=0, timeout_sec=_TIMEOUT_SEC)
    results = await invoke_many(
        selections, _PING_PROMPT, credentials, use_router, client=client, settings=settings,
    )
    return {name: (r.success, r.error or "") for name, r in results.items()}
